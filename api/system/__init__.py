"""System health endpoints."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
import logging
import time
import psutil

from database import DatabaseError
from api.services import Services, get_services
from api.websockets import manager as websocket_manager

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/system",
    tags=["System"]
)

STARTED_AT = time.time()

class SystemHealth(BaseModel):
    """Model for system health data."""
    status: str
    uptime: float
    cpu_usage: float
    memory_usage: float
    disk_usage: float
    websocket_connections: int
    database_status: str
    store: str

@router.get("/health", response_model=SystemHealth)
async def get_system_health(services: Services = Depends(get_services)) -> SystemHealth:
    """Get system health status.

    Returns:
        SystemHealth object containing host and store metrics
    """
    cpu_percent = psutil.cpu_percent()
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage('/')

    try:
        await services.store.count('community_members')
        db_status = "connected"
    except DatabaseError as e:
        logger.error(f"Health check could not reach the store: {e}")
        db_status = "unavailable"

    healthy = db_status == "connected" and cpu_percent < 80
    return SystemHealth(
        status="healthy" if healthy else "degraded",
        uptime=round(time.time() - STARTED_AT, 2),
        cpu_usage=cpu_percent,
        memory_usage=memory.percent,
        disk_usage=disk.percent,
        websocket_connections=websocket_manager.connection_count,
        database_status=db_status,
        store=type(services.store).__name__
    )

__all__ = ['router']
