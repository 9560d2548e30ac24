"""Inbound events and outbound message blocks exchanged with a chat channel."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class EventKind(str, Enum):
    TEXT = "text"
    POSTBACK = "postback"
    FOLLOW = "follow"
    UNFOLLOW = "unfollow"


class InboundEvent(BaseModel):
    """One end-user event. ``payload`` is the text or the postback data."""
    tenant_id: str
    user_id: str
    kind: EventKind
    payload: str = ""
    reply_token: Optional[str] = None
    display_name: Optional[str] = None


class MenuOption(BaseModel):
    """A button: ``id`` is the machine-readable postback data, ``label`` what the user sees."""
    id: str
    label: str


class MessageBlock(BaseModel):
    text: str
    options: list[MenuOption] = Field(default_factory=list)


class OutboundResponse(BaseModel):
    blocks: list[MessageBlock] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(block.text for block in self.blocks)

    @property
    def options(self) -> list[MenuOption]:
        """Options of the last block carrying a menu."""
        for block in reversed(self.blocks):
            if block.options:
                return list(block.options)
        return []
