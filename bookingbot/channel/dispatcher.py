"""
Worker pool running the dialogue engine for inbound channel events.

Each event is handled on its own pool thread; the engine's per-user lock
keeps two events from the same user from overlapping. Responses go to a
reply sender, the only piece that talks back to the channel.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Protocol, Union

from bookingbot.channel.webhook import InvalidSignature, parse_webhook, verify_signature
from bookingbot.config import settings
from bookingbot.conversation.dialogue_engine import DialogueEngine
from bookingbot.schemas.channel_schema import InboundEvent, OutboundResponse

logger = logging.getLogger(__name__)


class ReplySender(Protocol):
    def send(self, event: InboundEvent, response: OutboundResponse) -> None: ...


class LoggingReplySender:
    def send(self, event: InboundEvent, response: OutboundResponse) -> None:
        logger.info("Reply to %s:%s -> %r", event.tenant_id, event.user_id, response.text)


class EventDispatcher:
    def __init__(
        self,
        engine: DialogueEngine,
        sender: Optional[ReplySender] = None,
        workers: Optional[int] = None,
        channel_secret: Optional[str] = None,
    ) -> None:
        self._engine = engine
        self._sender = sender or LoggingReplySender()
        self._secret = channel_secret if channel_secret is not None else settings.channel.channel_secret
        self._executor = ThreadPoolExecutor(
            max_workers=workers or settings.channel.event_workers,
            thread_name_prefix="event",
        )

    def submit(self, event: InboundEvent) -> Future:
        return self._executor.submit(self._run, event)

    def _run(self, event: InboundEvent) -> OutboundResponse:
        try:
            response = self._engine.handle(event)
            if response.blocks:
                self._sender.send(event, response)
            return response
        except Exception:
            logger.exception("Event %s from %s:%s failed", event.kind.value,
                             event.tenant_id, event.user_id)
            raise

    def dispatch_webhook(
        self, tenant_id: str, body: Union[str, bytes], signature: Optional[str] = None
    ) -> list[Future]:
        """
        Verify (when a channel secret is configured), parse and enqueue a webhook.

        Raises:
            InvalidSignature: If the signature does not match.
            ValueError: If the body is malformed.
        """
        if self._secret and not verify_signature(self._secret, body, signature):
            raise InvalidSignature(f"Bad webhook signature for tenant {tenant_id}")
        events = parse_webhook(tenant_id, body)
        logger.debug("Dispatching %d events for tenant %s", len(events), tenant_id)
        return [self.submit(event) for event in events]

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
