"""
Offline console demo: chat with the booking bot in a terminal.

Runs the real dialogue engine, availability calculator and commit service
against the in-memory demo salon. No channel credentials, no network
calls. Reply with an option's number or label, or free text.

Usage:
    python console_demo.py
    python console_demo.py --scenario booking
    python console_demo.py --scenario shop
"""

import argparse
from typing import Optional

from bookingbot.app import BookingApp, build_app
from bookingbot.conversation.session_store import InMemorySessionStore
from bookingbot.demo_data import DEMO_TENANT_ID, seed_demo_tenant
from bookingbot.schemas.channel_schema import EventKind, InboundEvent, OutboundResponse
from bookingbot.tools.notifications import LoggingSender

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"


class ConsoleSession:
    """One chat user talking to the demo tenant."""

    MAX_INPUT_LENGTH = 1000

    # Pre-scripted scenarios for --scenario flag
    SCENARIOS: dict[str, list[str]] = {
        "booking": ["book", "1", "1", "1", "1", "1", "skip", "yes"],
        "cancel": ["book", "1", "1", "2", "1", "1", "Window seat please", "yes",
                   "my bookings", "1", "yes"],
        "shop": ["shop", "1", "Buy", "2", "yes"],
        "coupon": ["coupons", "1", "coupons"],
        "restart": ["book", "1", "cancel", "help"],
    }

    def __init__(self, app: Optional[BookingApp] = None, user_id: str = "console-user") -> None:
        if app is None:
            app = build_app(store=InMemorySessionStore(), notification_sender=LoggingSender())
            seed_demo_tenant(app)
        self.app = app
        self.tenant_id = DEMO_TENANT_ID
        self.user_id = user_id

    def bot_say(self, response: OutboundResponse) -> None:
        for block in response.blocks:
            print(f"{GREEN}{BOLD}[Bot]{RESET} {GREEN}{block.text}{RESET}")
            for number, option in enumerate(block.options, start=1):
                print(f"{GREEN}   {number}. {option.label}{RESET}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    def send(self, kind: EventKind, payload: str = "") -> OutboundResponse:
        event = InboundEvent(
            tenant_id=self.tenant_id, user_id=self.user_id, kind=kind, payload=payload,
            display_name="Console User",
        )
        response = self.app.engine.handle(event)
        self.bot_say(response)
        self.system_log(f"State: {self.current_state()}")
        return response

    def current_state(self) -> str:
        session = self.app.store.get(self.tenant_id, self.user_id)
        return session.state.value if session else "none"

    def _banner(self, title: str) -> None:
        tenant = self.app.tenants.get_settings(self.tenant_id)
        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  BOOKING BOT - {title}{RESET}")
        print(f"{BOLD}  Tenant: {tenant.name} ({tenant.tenant_id}){RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")
        print()

    def _summary(self) -> None:
        customer = self.app.customers.find(self.tenant_id, self.user_id)
        bookings = (
            self.app.ledger.find_customer_bookings(self.tenant_id, customer.id) if customer else []
        )
        print(f"\n{BOLD}{'=' * 60}{RESET}")
        for booking in bookings:
            print(f"{DIM}  {booking.reference} {booking.booking_date} "
                  f"{booking.start_time:%H:%M} {booking.service_name} "
                  f"[{booking.status.value}] staff={booking.staff_name or '-'}{RESET}")
        if not bookings:
            print(f"{DIM}  No bookings recorded.{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")

    def run_scenario(self, scenario: str) -> None:
        """Auto-play a pre-scripted scenario for demo purposes."""
        steps = self.SCENARIOS.get(scenario)
        if not steps:
            print(f"{RED}Unknown scenario: {scenario}{RESET}")
            return

        self._banner(f"Scenario: {scenario}")
        self.send(EventKind.FOLLOW)
        for step in steps:
            print(f"\n{BLUE}[User] {RESET}{step}")
            self.send(EventKind.TEXT, step)

        print(f"\n{BOLD}  Scenario '{scenario}' complete.{RESET}")
        self._summary()

    def run(self) -> None:
        self._banner("Console Demo")
        print(f"{YELLOW}  Type 'quit' to exit, or an option number to pick it.{RESET}")
        self.send(EventKind.FOLLOW)

        while True:
            try:
                user_input = input(f"\n{BLUE}[User] {RESET}").strip()
            except EOFError:
                break
            if not user_input:
                continue
            if user_input.lower() in ("quit", "exit", "q"):
                break
            if len(user_input) > self.MAX_INPUT_LENGTH:
                print(f"{RED}Message too long.{RESET}")
                continue
            self.send(EventKind.TEXT, user_input)

        print(f"\n{DIM}Session ended.{RESET}")
        self._summary()


def main() -> None:
    parser = argparse.ArgumentParser(description="Offline console demo")
    parser.add_argument(
        "--scenario",
        choices=sorted(ConsoleSession.SCENARIOS),
        default=None,
        help="Auto-play a pre-scripted scenario instead of interactive mode",
    )
    args = parser.parse_args()

    session = ConsoleSession()
    try:
        if args.scenario:
            session.run_scenario(args.scenario)
        else:
            session.run()
    finally:
        session.app.shutdown()


if __name__ == "__main__":
    main()
