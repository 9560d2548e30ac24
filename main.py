"""
Booking bot entry point.

Usage:
    Console chat:    python main.py console
    Replay webhook:  python main.py replay <webhook.json> [tenant_id]

``replay`` feeds a saved channel webhook body through the signature check,
the event worker pool and the dialogue engine, printing every reply. It is
the quickest way to reproduce a conversation captured from production logs.
"""

import logging
import sys
from pathlib import Path

from bookingbot.config import settings

logger = logging.getLogger(__name__)


def _run_console_mode() -> None:
    """Start the offline console demo (no channel credentials required)."""
    from console_demo import ConsoleSession

    session = ConsoleSession()
    try:
        session.run()
    finally:
        session.app.shutdown()


def _run_replay_mode(path: str, tenant_id: str) -> int:
    from bookingbot.app import build_app
    from bookingbot.channel.dispatcher import EventDispatcher
    from bookingbot.channel.webhook import compute_signature
    from bookingbot.demo_data import seed_demo_tenant

    app = build_app()
    seed_demo_tenant(app, tenant_id)
    body = Path(path).read_bytes()
    # Saved bodies are replayed as if freshly signed by the channel.
    secret = settings.channel.channel_secret
    signature = compute_signature(secret, body) if secret else None

    dispatcher = EventDispatcher(app.engine)
    try:
        futures = dispatcher.dispatch_webhook(tenant_id, body, signature)
        for future in futures:
            response = future.result()
            for block in response.blocks:
                print(block.text)
                for option in block.options:
                    print(f"  - {option.label}")
        logger.info("Replayed %d events from %s", len(futures), path)
        return 0
    except ValueError as exc:
        logger.error("Cannot replay %s: %s", path, exc)
        return 1
    finally:
        dispatcher.shutdown()
        app.shutdown()


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "console":
        _run_console_mode()
    elif len(sys.argv) > 2 and sys.argv[1] == "replay":
        tenant = sys.argv[3] if len(sys.argv) > 3 else "demo-salon"
        sys.exit(_run_replay_mode(sys.argv[2], tenant))
    else:
        print(__doc__)
        sys.exit(2)
