from bookingbot.conversation.input_parser import InputParser, ParsedInput
from bookingbot.conversation.session_store import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionStore,
)
from bookingbot.conversation.state_machine import (
    Action,
    DialogueStateMachine,
    InputKind,
    InvalidTransitionError,
)
from bookingbot.schemas.session_schema import ConversationState

__all__ = [
    "DialogueStateMachine",
    "ConversationState",
    "InputKind",
    "Action",
    "InvalidTransitionError",
    "InputParser",
    "ParsedInput",
    "SessionStore",
    "InMemorySessionStore",
    "RedisSessionStore",
]
