"""REST API module for the marketplace.

This module provides HTTP endpoints for:
- Creating, searching and managing listings and favorites
- Buyer/seller conversations, with a WebSocket live feed
- Escrow purchases, payment callbacks and disputes
- Reviews and seller statistics
- System health monitoring
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from database import Store, get_store, close as db_close
from events import EventBus
from fees import FeeSchedule

from .errors import register_error_handlers
from .services import Services

logger = logging.getLogger(__name__)

def create_app(
    store: Optional[Store] = None,
    events: Optional[EventBus] = None,
    fee_schedule: Optional[FeeSchedule] = None
) -> FastAPI:
    """Build the API application.

    With an explicit store the services are wired immediately and the
    caller owns the store. Otherwise the store is created from settings at
    startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown events."""
        if store is not None:
            yield
            return

        logger.info("Initializing API...")
        app.state.services = Services(await get_store(), events, fee_schedule)
        yield
        logger.info("Shutting down API...")
        await db_close()

    app = FastAPI(
        title="Community Marketplace API",
        description="Listings, messaging and escrow purchases inside communities",
        version="1.0.0",
        lifespan=lifespan
    )

    if store is not None:
        app.state.services = Services(store, events, fee_schedule)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    @app.get("/")
    async def root():
        return {
            "name": "Community Marketplace API",
            "version": "1.0.0",
            "status": "running"
        }

    # Import and include all routers
    from .listings import router as listings_router
    from .conversations import router as conversations_router
    from .transactions import router as transactions_router
    from .disputes import router as disputes_router
    from .reviews import router as reviews_router
    from .webhooks import router as webhooks_router
    from .websockets import router as websocket_router
    from .system import router as system_router

    app.include_router(listings_router)
    app.include_router(conversations_router)
    app.include_router(transactions_router)
    app.include_router(disputes_router)
    app.include_router(reviews_router)
    app.include_router(webhooks_router)
    app.include_router(websocket_router)
    app.include_router(system_router)

    return app

app = create_app()
