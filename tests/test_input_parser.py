"""Tests for postback decoding and text classification."""

from datetime import datetime, timezone

import pytest

from bookingbot.conversation.input_parser import InputParser, build_postback, parse_postback
from bookingbot.conversation.state_machine import InputKind
from bookingbot.messages.menus import option
from bookingbot.schemas.channel_schema import EventKind, InboundEvent
from bookingbot.schemas.session_schema import ConversationState, Session

NOW = datetime(2025, 3, 17, 7, 0, tzinfo=timezone.utc)


@pytest.fixture
def parser():
    return InputParser()


def session_in(state: ConversationState, options=None) -> Session:
    session = Session.new("salon-1", "U1", NOW)
    session.state = state
    session.offered_options = options or []
    return session


class TestPostback:
    def test_round_trip_with_value(self):
        parsed = parse_postback(build_postback("select_time", time="10:00"))
        assert parsed.kind == InputKind.SELECT_TIME
        assert parsed.value == "10:00"
        assert parsed.action == "select_time"

    def test_blank_value_kept(self):
        parsed = parse_postback(build_postback("select_staff", staffId=""))
        assert parsed.kind == InputKind.SELECT_STAFF
        assert parsed.value == ""

    def test_action_without_parameter(self):
        parsed = parse_postback("action=skip_note")
        assert parsed.kind == InputKind.SKIP_NOTE
        assert parsed.value is None

    def test_confirm_actions_share_kind(self):
        for action in ("confirm_booking", "confirm_purchase", "confirm_cancel_booking"):
            parsed = parse_postback(build_postback(action))
            assert parsed.kind == InputKind.CONFIRM
            assert parsed.action == action

    def test_unknown_action(self):
        assert parse_postback("action=launch_rocket").kind == InputKind.UNKNOWN

    def test_garbage(self):
        assert parse_postback("not a postback").kind == InputKind.UNKNOWN


class TestText:
    def test_cancel_keyword_anywhere(self, parser):
        for state in ConversationState:
            assert parser.parse_text("Cancel", session_in(state)).kind == InputKind.CANCEL

    def test_chinese_cancel_keyword(self, parser):
        parsed = parser.parse_text("重新開始", session_in(ConversationState.SELECTING_TIME))
        assert parsed.kind == InputKind.CANCEL

    def test_note_state_takes_free_text(self, parser):
        parsed = parser.parse_text("book me with the quiet chair", session_in(ConversationState.INPUTTING_NOTE))
        assert parsed.kind == InputKind.NOTE_TEXT
        assert parsed.value == "book me with the quiet chair"

    def test_note_state_skip(self, parser):
        parsed = parser.parse_text("skip", session_in(ConversationState.INPUTTING_NOTE))
        assert parsed.kind == InputKind.SKIP_NOTE

    def test_note_state_back(self, parser):
        parsed = parser.parse_text("back", session_in(ConversationState.INPUTTING_NOTE))
        assert parsed.kind == InputKind.BACK

    def test_option_label_match(self, parser):
        options = [option("10:00", "select_time", time="10:00"), option("10:30", "select_time", time="10:30")]
        parsed = parser.parse_text("10:30", session_in(ConversationState.SELECTING_TIME, options))
        assert parsed.kind == InputKind.SELECT_TIME
        assert parsed.value == "10:30"
        assert parsed.action == "select_time"

    def test_option_number_match(self, parser):
        options = [option("Haircut", "select_service", serviceId="svc-cut"),
                   option("Colour", "select_service", serviceId="svc-color")]
        parsed = parser.parse_text("2", session_in(ConversationState.SELECTING_SERVICE, options))
        assert parsed.value == "svc-color"

    def test_number_out_of_range_is_free_text(self, parser):
        options = [option("Haircut", "select_service", serviceId="svc-cut")]
        parsed = parser.parse_text("7", session_in(ConversationState.SELECTING_SERVICE, options))
        assert parsed.kind == InputKind.FREE_TEXT

    def test_global_keyword(self, parser):
        parsed = parser.parse_text("My  Bookings", session_in(ConversationState.IDLE))
        assert parsed.kind == InputKind.VIEW_BOOKINGS

    def test_confirm_keyword(self, parser):
        parsed = parser.parse_text("yes", session_in(ConversationState.CONFIRMING_BOOKING))
        assert parsed.kind == InputKind.CONFIRM
        assert parsed.action is None

    def test_unmatched_text(self, parser):
        parsed = parser.parse_text("what a lovely day", session_in(ConversationState.IDLE))
        assert parsed.kind == InputKind.FREE_TEXT


class TestParseEvent:
    def test_follow_event_is_unknown(self, parser):
        event = InboundEvent(tenant_id="salon-1", user_id="U1", kind=EventKind.FOLLOW)
        assert parser.parse(event, session_in(ConversationState.IDLE)).kind == InputKind.UNKNOWN

    def test_postback_event(self, parser):
        event = InboundEvent(
            tenant_id="salon-1", user_id="U1", kind=EventKind.POSTBACK,
            payload=build_postback("start_booking"),
        )
        assert parser.parse(event, session_in(ConversationState.IDLE)).kind == InputKind.START_BOOKING
