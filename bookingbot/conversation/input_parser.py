"""
Sorts inbound text and postback events into input kinds.

Postback data uses URL query syntax (``action=select_service&serviceId=svc-1``).
Text is matched, in order, against the cancel keywords, the note step's own
rules, the labels of the menu last sent, and finally the global keywords.
Anything left over is free text.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlencode

from bookingbot.conversation.state_machine import InputKind
from bookingbot.schemas.channel_schema import EventKind, InboundEvent, MenuOption
from bookingbot.schemas.session_schema import ConversationState, Session
from bookingbot.utils import normalize_text

logger = logging.getLogger(__name__)

# action name -> (input kind, name of the query parameter carrying the value)
POSTBACK_ACTIONS: dict[str, tuple[InputKind, Optional[str]]] = {
    "start_booking": (InputKind.START_BOOKING, None),
    "select_category": (InputKind.SELECT_CATEGORY, "categoryId"),
    "select_service": (InputKind.SELECT_SERVICE, "serviceId"),
    "select_staff": (InputKind.SELECT_STAFF, "staffId"),
    "select_date": (InputKind.SELECT_DATE, "date"),
    "select_time": (InputKind.SELECT_TIME, "time"),
    "time_page": (InputKind.TIME_PAGE, "page"),
    "skip_note": (InputKind.SKIP_NOTE, None),
    "confirm_booking": (InputKind.CONFIRM, None),
    "go_back": (InputKind.BACK, None),
    "cancel_flow": (InputKind.CANCEL, None),
    "main_menu": (InputKind.CANCEL, None),
    "help": (InputKind.HELP, None),
    "view_bookings": (InputKind.VIEW_BOOKINGS, None),
    "cancel_booking_request": (InputKind.REQUEST_CANCEL_BOOKING, "bookingId"),
    "confirm_cancel_booking": (InputKind.CONFIRM, None),
    "start_shopping": (InputKind.BROWSE_PRODUCTS, None),
    "select_product": (InputKind.SELECT_PRODUCT, "productId"),
    "buy_product": (InputKind.BUY_PRODUCT, "productId"),
    "select_quantity": (InputKind.SELECT_QUANTITY, "quantity"),
    "confirm_purchase": (InputKind.CONFIRM, None),
    "view_coupons": (InputKind.BROWSE_COUPONS, None),
    "claim_coupon": (InputKind.CLAIM_COUPON, "couponId"),
}


@dataclass(frozen=True)
class ParsedInput:
    """One categorised input.

    ``action`` is the postback action name when the input came from (or
    resolved to) a button; ``value`` is its parameter, or the note text.
    """
    kind: InputKind
    value: Optional[str] = None
    action: Optional[str] = None
    text: str = ""

    @property
    def key(self) -> tuple[InputKind, Optional[str], Optional[str]]:
        return (self.kind, self.action, self.value)


def build_postback(action: str, **params: str) -> str:
    """Encode a postback payload, e.g. ``build_postback("select_time", time="10:00")``."""
    return urlencode({"action": action, **params})


def parse_postback(data: str) -> ParsedInput:
    """Decode postback data. Unknown or malformed actions become UNKNOWN."""
    fields = parse_qs(data, keep_blank_values=True)
    action = (fields.get("action") or [""])[0]
    entry = POSTBACK_ACTIONS.get(action)
    if entry is None:
        logger.debug("Unknown postback action %r", action)
        return ParsedInput(InputKind.UNKNOWN, action=action or None)
    kind, param = entry
    value = (fields.get(param) or [""])[0] if param else None
    return ParsedInput(kind, value=value, action=action)


class InputParser:
    """Keyword tables plus the menu-label matcher."""

    CANCEL_KEYWORDS = frozenset({"cancel", "restart", "取消", "重新開始"})
    BACK_KEYWORDS = frozenset({"back", "返回", "上一步"})
    SKIP_KEYWORDS = frozenset({"skip", "no note", "跳過", "略過"})
    CONFIRM_KEYWORDS = frozenset({"yes", "y", "ok", "confirm", "確認", "好"})

    # keyword -> kind, checked after menu labels
    GLOBAL_KEYWORDS: dict[InputKind, frozenset[str]] = {
        InputKind.BACK: BACK_KEYWORDS,
        InputKind.SKIP_NOTE: SKIP_KEYWORDS,
        InputKind.CONFIRM: CONFIRM_KEYWORDS,
        InputKind.START_BOOKING: frozenset({"book", "booking", "預約", "訂位", "預訂"}),
        InputKind.HELP: frozenset({"help", "menu", "幫助", "說明", "選單"}),
        InputKind.BROWSE_PRODUCTS: frozenset({"shop", "products", "商品", "購買"}),
        InputKind.BROWSE_COUPONS: frozenset({"coupon", "coupons", "票券", "優惠券"}),
        InputKind.VIEW_BOOKINGS: frozenset({"my bookings", "bookings", "我的預約"}),
    }

    def parse(self, event: InboundEvent, session: Session) -> ParsedInput:
        if event.kind == EventKind.POSTBACK:
            return parse_postback(event.payload)
        if event.kind == EventKind.TEXT:
            return self.parse_text(event.payload, session)
        return ParsedInput(InputKind.UNKNOWN)

    def parse_text(self, raw: str, session: Session) -> ParsedInput:
        text = raw.strip()
        normalized = normalize_text(text)
        if not normalized:
            return ParsedInput(InputKind.FREE_TEXT, text=text)
        if normalized in self.CANCEL_KEYWORDS:
            return ParsedInput(InputKind.CANCEL, text=text)

        if session.state == ConversationState.INPUTTING_NOTE:
            if normalized in self.BACK_KEYWORDS:
                return ParsedInput(InputKind.BACK, text=text)
            if normalized in self.SKIP_KEYWORDS:
                return ParsedInput(InputKind.SKIP_NOTE, text=text)
            return ParsedInput(InputKind.NOTE_TEXT, value=text, text=text)

        option = self.match_option(normalized, session.offered_options)
        if option is not None:
            parsed = parse_postback(option.id)
            return ParsedInput(parsed.kind, value=parsed.value, action=parsed.action, text=text)

        for kind, keywords in self.GLOBAL_KEYWORDS.items():
            if normalized in keywords:
                return ParsedInput(kind, text=text)
        return ParsedInput(InputKind.FREE_TEXT, value=text, text=text)

    @staticmethod
    def match_option(normalized: str, options: list[MenuOption]) -> Optional[MenuOption]:
        """An offered option whose label equals the text, or whose 1-based number it is."""
        for option in options:
            if normalize_text(option.label) == normalized:
                return option
        if normalized.isdigit():
            index = int(normalized) - 1
            if 0 <= index < len(options):
                return options[index]
        return None
