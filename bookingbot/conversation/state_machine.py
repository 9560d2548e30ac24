"""
Transition table for the chat booking dialogue.

Each state's definition carries its complete input alphabet: a mapping
from input kind to the action the engine runs and the states that action
may land in. Anything not in the mapping is rejected before any handler
runs, which is what keeps partial selections intact on bad input.

Usage:
    machine = DialogueStateMachine()
    transition = machine.resolve(ConversationState.SELECTING_SERVICE, InputKind.SELECT_SERVICE)
    assert transition.action == Action.CHOOSE_SERVICE
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from bookingbot.errors import InvalidInput
from bookingbot.schemas.session_schema import ConversationState

logger = logging.getLogger(__name__)

S = ConversationState


class InputKind(str, Enum):
    """Categories the input parser sorts every inbound event into."""
    START_BOOKING = "start_booking"
    SELECT_CATEGORY = "select_category"
    SELECT_SERVICE = "select_service"
    SELECT_STAFF = "select_staff"
    SELECT_DATE = "select_date"
    SELECT_TIME = "select_time"
    TIME_PAGE = "time_page"
    NOTE_TEXT = "note_text"
    SKIP_NOTE = "skip_note"
    CONFIRM = "confirm"
    BACK = "back"
    CANCEL = "cancel"
    HELP = "help"
    FREE_TEXT = "free_text"
    VIEW_BOOKINGS = "view_bookings"
    REQUEST_CANCEL_BOOKING = "request_cancel_booking"
    BROWSE_PRODUCTS = "browse_products"
    SELECT_PRODUCT = "select_product"
    BUY_PRODUCT = "buy_product"
    SELECT_QUANTITY = "select_quantity"
    BROWSE_COUPONS = "browse_coupons"
    CLAIM_COUPON = "claim_coupon"
    UNKNOWN = "unknown"


class Action(str, Enum):
    """Side effects the dialogue engine performs on a transition."""
    SHOW_MAIN_MENU = "show_main_menu"
    SHOW_HELP = "show_help"
    SESSION_ENDED = "session_ended"
    START_BOOKING = "start_booking"
    RESTART_BOOKING = "restart_booking"
    CHOOSE_CATEGORY = "choose_category"
    CHOOSE_SERVICE = "choose_service"
    CHOOSE_STAFF = "choose_staff"
    CHOOSE_DATE = "choose_date"
    CHOOSE_TIME = "choose_time"
    SHOW_TIME_PAGE = "show_time_page"
    SET_NOTE = "set_note"
    SKIP_NOTE = "skip_note"
    CONFIRM_BOOKING = "confirm_booking"
    GO_BACK = "go_back"
    RESET = "reset"
    BROWSE_PRODUCTS = "browse_products"
    CHOOSE_PRODUCT = "choose_product"
    BUY_PRODUCT = "buy_product"
    CHOOSE_QUANTITY = "choose_quantity"
    CONFIRM_PURCHASE = "confirm_purchase"
    BROWSE_COUPONS = "browse_coupons"
    CLAIM_COUPON = "claim_coupon"
    VIEW_BOOKINGS = "view_bookings"
    REQUEST_CANCEL_BOOKING = "request_cancel_booking"
    CONFIRM_CANCEL_BOOKING = "confirm_cancel_booking"


@dataclass(frozen=True)
class Transition:
    """What an accepted input does: the action and every state it may lead to.

    ``offered_only`` inputs must match an option of the menu last sent.
    """
    action: Action
    targets: tuple[ConversationState, ...]
    offered_only: bool = False


@dataclass(frozen=True)
class StateDefinition:
    state: ConversationState
    description: str
    transitions: Mapping[InputKind, Transition]

    @property
    def accepts(self) -> frozenset[InputKind]:
        return frozenset(self.transitions)


class InvalidTransitionError(InvalidInput):
    """Raised when an input is outside the current state's alphabet."""


def _pick(action: Action, *targets: ConversationState) -> Transition:
    return Transition(action, targets, offered_only=True)


def _to(action: Action, *targets: ConversationState) -> Transition:
    return Transition(action, targets)


def _back(*targets: ConversationState) -> Transition:
    return Transition(Action.GO_BACK, targets)


_CANCEL = Transition(Action.RESET, (S.IDLE,))
_BOOKING_ENTRY = (S.SELECTING_CATEGORY, S.SELECTING_SERVICE)


def _define(
    state: ConversationState, description: str, transitions: dict[InputKind, Transition]
) -> StateDefinition:
    if state != S.IDLE:
        transitions = {**transitions, InputKind.CANCEL: _CANCEL}
    return StateDefinition(state, description, transitions)


STATE_DEFINITIONS: dict[ConversationState, StateDefinition] = {
    d.state: d for d in [
        _define(S.IDLE, "Main menu", {
            InputKind.START_BOOKING: _to(Action.START_BOOKING, *_BOOKING_ENTRY),
            InputKind.BROWSE_PRODUCTS: _to(Action.BROWSE_PRODUCTS, S.BROWSING_PRODUCTS, S.IDLE),
            InputKind.BROWSE_COUPONS: _to(Action.BROWSE_COUPONS, S.BROWSING_COUPONS, S.IDLE),
            InputKind.VIEW_BOOKINGS: _to(Action.VIEW_BOOKINGS, S.VIEWING_BOOKINGS, S.IDLE),
            InputKind.HELP: _to(Action.SHOW_HELP, S.IDLE),
            InputKind.CANCEL: _to(Action.SHOW_MAIN_MENU, S.IDLE),
            InputKind.FREE_TEXT: _to(Action.SHOW_MAIN_MENU, S.IDLE),
            # Leftovers from a session that expired or was reset.
            InputKind.SELECT_CATEGORY: _to(Action.RESTART_BOOKING, *_BOOKING_ENTRY),
            InputKind.SELECT_SERVICE: _to(Action.RESTART_BOOKING, *_BOOKING_ENTRY),
            InputKind.SELECT_STAFF: _to(Action.RESTART_BOOKING, *_BOOKING_ENTRY),
            InputKind.SELECT_DATE: _to(Action.RESTART_BOOKING, *_BOOKING_ENTRY),
            InputKind.SELECT_TIME: _to(Action.RESTART_BOOKING, *_BOOKING_ENTRY),
            InputKind.TIME_PAGE: _to(Action.RESTART_BOOKING, *_BOOKING_ENTRY),
            InputKind.SKIP_NOTE: _to(Action.RESTART_BOOKING, *_BOOKING_ENTRY),
            InputKind.CONFIRM: _to(Action.SESSION_ENDED, S.IDLE),
            InputKind.BACK: _to(Action.SESSION_ENDED, S.IDLE),
            InputKind.SELECT_PRODUCT: _to(Action.SESSION_ENDED, S.IDLE),
            InputKind.BUY_PRODUCT: _to(Action.SESSION_ENDED, S.IDLE),
            InputKind.SELECT_QUANTITY: _to(Action.SESSION_ENDED, S.IDLE),
            InputKind.CLAIM_COUPON: _to(Action.SESSION_ENDED, S.IDLE),
            InputKind.REQUEST_CANCEL_BOOKING: _to(Action.SESSION_ENDED, S.IDLE),
        }),

        # --- Booking flow ---
        _define(S.SELECTING_CATEGORY, "Choose a category", {
            InputKind.SELECT_CATEGORY: _pick(Action.CHOOSE_CATEGORY, S.SELECTING_SERVICE),
            InputKind.BACK: _back(S.IDLE),
        }),
        _define(S.SELECTING_SERVICE, "Choose a service", {
            InputKind.SELECT_SERVICE: _pick(
                Action.CHOOSE_SERVICE, S.SELECTING_STAFF, S.SELECTING_DATE
            ),
            InputKind.BACK: _back(S.SELECTING_CATEGORY, S.IDLE),
        }),
        _define(S.SELECTING_STAFF, "Choose a staff member", {
            InputKind.SELECT_STAFF: _pick(Action.CHOOSE_STAFF, S.SELECTING_DATE),
            InputKind.BACK: _back(S.SELECTING_SERVICE),
        }),
        _define(S.SELECTING_DATE, "Choose a date", {
            InputKind.SELECT_DATE: _pick(Action.CHOOSE_DATE, S.SELECTING_TIME),
            InputKind.BACK: _back(S.SELECTING_STAFF, S.SELECTING_SERVICE),
        }),
        _define(S.SELECTING_TIME, "Choose a time", {
            InputKind.SELECT_TIME: _pick(Action.CHOOSE_TIME, S.INPUTTING_NOTE),
            InputKind.TIME_PAGE: _pick(Action.SHOW_TIME_PAGE, S.SELECTING_TIME),
            InputKind.BACK: _back(S.SELECTING_DATE),
        }),
        _define(S.INPUTTING_NOTE, "Leave a note or skip", {
            InputKind.NOTE_TEXT: _to(Action.SET_NOTE, S.CONFIRMING_BOOKING),
            InputKind.SKIP_NOTE: _to(Action.SKIP_NOTE, S.CONFIRMING_BOOKING),
            InputKind.BACK: _back(S.SELECTING_TIME),
        }),
        _define(S.CONFIRMING_BOOKING, "Confirm the booking", {
            InputKind.CONFIRM: _to(Action.CONFIRM_BOOKING, S.IDLE, S.SELECTING_TIME),
            InputKind.BACK: _back(S.INPUTTING_NOTE),
        }),

        # --- Shop flow ---
        _define(S.BROWSING_PRODUCTS, "Choose a product", {
            InputKind.SELECT_PRODUCT: _pick(Action.CHOOSE_PRODUCT, S.VIEWING_PRODUCT_DETAIL),
            InputKind.BACK: _back(S.IDLE),
        }),
        _define(S.VIEWING_PRODUCT_DETAIL, "Product detail", {
            InputKind.BUY_PRODUCT: _pick(Action.BUY_PRODUCT, S.SELECTING_QUANTITY),
            InputKind.BACK: _back(S.BROWSING_PRODUCTS, S.IDLE),
        }),
        _define(S.SELECTING_QUANTITY, "Choose a quantity", {
            InputKind.SELECT_QUANTITY: _pick(Action.CHOOSE_QUANTITY, S.CONFIRMING_PURCHASE),
            InputKind.BACK: _back(S.VIEWING_PRODUCT_DETAIL),
        }),
        _define(S.CONFIRMING_PURCHASE, "Confirm the purchase", {
            InputKind.CONFIRM: _to(Action.CONFIRM_PURCHASE, S.IDLE, S.BROWSING_PRODUCTS),
            InputKind.BACK: _back(S.SELECTING_QUANTITY),
        }),

        # --- Coupons ---
        _define(S.BROWSING_COUPONS, "Choose a coupon", {
            InputKind.CLAIM_COUPON: _pick(Action.CLAIM_COUPON, S.IDLE),
            InputKind.BACK: _back(S.IDLE),
        }),

        # --- Booking management ---
        _define(S.VIEWING_BOOKINGS, "Your bookings", {
            InputKind.REQUEST_CANCEL_BOOKING: _pick(
                Action.REQUEST_CANCEL_BOOKING, S.CONFIRMING_CANCEL_BOOKING
            ),
            InputKind.BACK: _back(S.IDLE),
        }),
        _define(S.CONFIRMING_CANCEL_BOOKING, "Confirm cancellation", {
            InputKind.CONFIRM: _to(Action.CONFIRM_CANCEL_BOOKING, S.IDLE),
            InputKind.BACK: _back(S.VIEWING_BOOKINGS, S.IDLE),
        }),
    ]
}


class DialogueStateMachine:
    """
    Lookup and validation over the transition table.

    The machine holds no per-session state; the current state lives on the
    session so one machine serves every tenant and user.
    """

    def __init__(self, definitions: Mapping[ConversationState, StateDefinition] = STATE_DEFINITIONS) -> None:
        self._definitions = definitions

    def definition(self, state: ConversationState) -> StateDefinition:
        return self._definitions[state]

    def resolve(self, state: ConversationState, kind: InputKind) -> Transition:
        """
        Find the transition for an input in a state.

        Raises:
            InvalidTransitionError: If ``kind`` is outside the state's alphabet.
        """
        transition = self._definitions[state].transitions.get(kind)
        if transition is None:
            valid = [k.value for k in self.accepted_inputs(state)]
            raise InvalidTransitionError(
                f"No transition from '{state.value}' on '{kind.value}'. Valid inputs: {valid}"
            )
        return transition

    def accepted_inputs(self, state: ConversationState) -> list[InputKind]:
        """Input kinds valid in ``state``, in table order."""
        return list(self._definitions[state].transitions)

    def check_target(
        self, state: ConversationState, transition: Transition, new_state: ConversationState
    ) -> None:
        """Guard against a handler landing somewhere its table entry does not declare."""
        if new_state not in transition.targets:
            raise RuntimeError(
                f"Action '{transition.action.value}' from '{state.value}' moved to "
                f"'{new_state.value}', declared targets: {[t.value for t in transition.targets]}"
            )
        logger.debug(
            "State transition: %s -> %s (action: %s)",
            state.value, new_state.value, transition.action.value,
        )

    def validate(self) -> None:
        """Check table integrity: every state defined, cancel everywhere but IDLE."""
        missing = [s for s in ConversationState if s not in self._definitions]
        if missing:
            raise ValueError(f"States without definition: {[s.value for s in missing]}")
        for state, definition in self._definitions.items():
            if state != S.IDLE and InputKind.CANCEL not in definition.transitions:
                raise ValueError(f"State '{state.value}' does not accept cancel")
            for kind, transition in definition.transitions.items():
                if not transition.targets:
                    raise ValueError(f"'{state.value}' on '{kind.value}' has no target")
