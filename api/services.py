"""Per-application wiring of the store, event bus and managers."""

import logging
from typing import Optional

from fastapi import HTTPException, Request, status

from conversations import ConversationManager
from database import Store
from escrow import DisputeManager, TransactionManager
from events import EventBus
from fees import FeeSchedule, fee_schedule_from_settings
from listings import ListingManager
from members import MembershipProvider
from reviews import ReviewManager, SellerStatsAggregator

logger = logging.getLogger(__name__)

class Services:
    """Managers sharing one store and one event bus."""

    def __init__(
        self,
        store: Store,
        events: Optional[EventBus] = None,
        fee_schedule: Optional[FeeSchedule] = None
    ):
        self.store = store
        self.events = events or EventBus()
        self.fee_schedule = fee_schedule or fee_schedule_from_settings()
        self.members = MembershipProvider(store)
        self.stats = SellerStatsAggregator(store)
        self.listings = ListingManager(store, self.members, self.events)
        self.conversations = ConversationManager(store, self.members, self.events)
        self.transactions = TransactionManager(
            store, self.members, self.events, self.fee_schedule, self.stats
        )
        self.disputes = DisputeManager(store, self.members, self.events, self.stats)
        self.reviews = ReviewManager(store, self.members, self.events, self.stats)
        logger.info(f"Services ready on {type(store).__name__} with {self.fee_schedule!r}")

def get_services(request: Request) -> Services:
    """FastAPI dependency returning the application's services."""
    services = getattr(request.app.state, 'services', None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up"
        )
    return services
