"""
Application wiring.

Every collaborator the dialogue engine needs is created here, once, so
that modules never construct each other and tests can swap any piece
(clock, session store, notification sender) without patching imports.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from bookingbot.config import settings
from bookingbot.conversation.dialogue_engine import DialogueEngine
from bookingbot.conversation.session_store import (
    RedisSessionStore,
    SessionStore,
    build_session_store,
)
from bookingbot.locking import KeyedLock, SessionLock
from bookingbot.tools.availability import AvailabilityCalculator
from bookingbot.tools.booking import BookingCommitService, InMemoryBookingLedger
from bookingbot.tools.catalog import InMemoryCatalog
from bookingbot.tools.customer import InMemoryCustomerDirectory
from bookingbot.tools.notifications import NotificationDispatcher, NotificationSender
from bookingbot.tools.shop import InMemoryShop
from bookingbot.tools.staff import InMemoryStaffDirectory
from bookingbot.tools.tenants import InMemoryTenantDirectory

logger = logging.getLogger(__name__)


@dataclass
class BookingApp:
    tenants: InMemoryTenantDirectory
    catalog: InMemoryCatalog
    staff: InMemoryStaffDirectory
    ledger: InMemoryBookingLedger
    calculator: AvailabilityCalculator
    notifier: NotificationDispatcher
    committer: BookingCommitService
    customers: InMemoryCustomerDirectory
    shop: InMemoryShop
    store: SessionStore
    engine: DialogueEngine

    def shutdown(self, wait: bool = True) -> None:
        self.notifier.shutdown(wait=wait)


def build_app(
    clock: Optional[Callable[[], datetime]] = None,
    store: Optional[SessionStore] = None,
    notification_sender: Optional[NotificationSender] = None,
    assignment_policy: Optional[str] = None,
    min_lead_minutes: Optional[int] = None,
) -> BookingApp:
    """Create an empty application. Seed tenants and catalog through the returned parts."""
    tenants = InMemoryTenantDirectory()
    catalog = InMemoryCatalog()
    staff = InMemoryStaffDirectory()
    ledger = InMemoryBookingLedger()
    calculator = AvailabilityCalculator(staff, ledger, clock=clock, min_lead_minutes=min_lead_minutes)
    notifier = NotificationDispatcher(sender=notification_sender)
    committer = BookingCommitService(
        catalog, calculator, ledger, notifier, assignment_policy=assignment_policy, clock=clock
    )
    customers = InMemoryCustomerDirectory(clock=clock)
    shop = InMemoryShop(clock=clock)
    store = store if store is not None else build_session_store(settings.store, clock=clock)
    locks: SessionLock = (
        store.keyed_lock() if isinstance(store, RedisSessionStore) else KeyedLock()
    )
    engine = DialogueEngine(
        tenants=tenants,
        catalog=catalog,
        calculator=calculator,
        committer=committer,
        ledger=ledger,
        customers=customers,
        shop=shop,
        store=store,
        locks=locks,
        clock=clock,
    )
    logger.info(
        "App built (store=%s, locks=%s, policy=%s)",
        type(store).__name__, type(locks).__name__, committer.assignment_policy,
    )
    return BookingApp(
        tenants=tenants,
        catalog=catalog,
        staff=staff,
        ledger=ledger,
        calculator=calculator,
        notifier=notifier,
        committer=committer,
        customers=customers,
        shop=shop,
        store=store,
        engine=engine,
    )
