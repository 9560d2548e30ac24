"""
LINE-style webhook parsing and signature verification.

The channel signs the raw request body with HMAC-SHA256 keyed by the
channel secret and sends the base64 digest in a header. Events without a
user id, and event types the dialogue does not handle, are skipped.
"""

import base64
import hashlib
import hmac
import json
import logging
from typing import Any, Optional, Union

from bookingbot.schemas.channel_schema import EventKind, InboundEvent

logger = logging.getLogger(__name__)


class InvalidSignature(Exception):
    """The webhook body does not match its signature header."""


def compute_signature(channel_secret: str, body: Union[str, bytes]) -> str:
    raw = body.encode("utf-8") if isinstance(body, str) else body
    digest = hmac.new(channel_secret.encode("utf-8"), raw, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(channel_secret: str, body: Union[str, bytes], signature: Optional[str]) -> bool:
    """Constant-time comparison of the header against the expected digest."""
    if not channel_secret or not signature:
        logger.warning("Signature check failed: missing secret or signature")
        return False
    valid = hmac.compare_digest(compute_signature(channel_secret, body), signature)
    if not valid:
        logger.warning("Signature check failed: digest mismatch")
    return valid


def _to_event(tenant_id: str, raw: dict[str, Any]) -> Optional[InboundEvent]:
    user_id = (raw.get("source") or {}).get("userId")
    if not user_id:
        logger.debug("Skipping %s event without userId", raw.get("type"))
        return None
    event_type = raw.get("type")
    reply_token = raw.get("replyToken")

    if event_type == "message":
        message = raw.get("message") or {}
        # Stickers, images and the like reach the dialogue as empty text.
        text = message.get("text", "") if message.get("type") == "text" else ""
        return InboundEvent(tenant_id=tenant_id, user_id=user_id, kind=EventKind.TEXT,
                            payload=text, reply_token=reply_token)
    if event_type == "postback":
        data = (raw.get("postback") or {}).get("data", "")
        return InboundEvent(tenant_id=tenant_id, user_id=user_id, kind=EventKind.POSTBACK,
                            payload=data, reply_token=reply_token)
    if event_type == "follow":
        return InboundEvent(tenant_id=tenant_id, user_id=user_id, kind=EventKind.FOLLOW,
                            reply_token=reply_token)
    if event_type == "unfollow":
        return InboundEvent(tenant_id=tenant_id, user_id=user_id, kind=EventKind.UNFOLLOW)

    logger.debug("Ignoring unsupported event type %r", event_type)
    return None


def parse_webhook(tenant_id: str, body: Union[str, bytes]) -> list[InboundEvent]:
    """
    Turn a webhook body into inbound events, in delivery order.

    Raises:
        ValueError: If the body is not a JSON object with an ``events`` list.
    """
    payload = json.loads(body)
    if not isinstance(payload, dict) or not isinstance(payload.get("events", []), list):
        raise ValueError("Webhook body must be an object with an 'events' list")
    events = []
    for raw in payload.get("events", []):
        if isinstance(raw, dict):
            event = _to_event(tenant_id, raw)
            if event is not None:
                events.append(event)
    return events
