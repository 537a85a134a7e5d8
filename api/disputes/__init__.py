"""Dispute API endpoints."""

from fastapi import APIRouter, Depends, Query
from typing import Optional, List
from pydantic import BaseModel
from uuid import UUID
from datetime import datetime

from auth import get_current_user
from api.services import Services, get_services
from api.transactions import TransactionResponse

router = APIRouter(
    prefix="/communities/{community_id}",
    tags=["Disputes"]
)

class StatementRequest(BaseModel):
    statement: str

class ResolveDisputeRequest(BaseModel):
    """Request model for resolving a dispute."""
    resolution: str  # release or refund
    notes: Optional[str] = None

class DisputeResponse(BaseModel):
    """Response model for a dispute."""
    id: UUID
    community_id: UUID
    transaction_id: UUID
    initiated_by: UUID
    reason: str
    description: str
    status: str
    resolved: bool
    resolution_notes: Optional[str] = None
    resolved_by: Optional[UUID] = None
    resolved_at: Optional[datetime] = None
    buyer_statement: Optional[str] = None
    seller_statement: Optional[str] = None
    created_at: datetime

class ResolutionResponse(BaseModel):
    dispute: DisputeResponse
    transaction: TransactionResponse

@router.get("/disputes", response_model=List[DisputeResponse])
async def list_disputes(
    community_id: UUID,
    status: Optional[str] = Query(None),
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Moderation queue of disputes in the community."""
    return await services.disputes.list_disputes(community_id, user_id, status=status)

@router.get("/disputes/{dispute_id}", response_model=DisputeResponse)
async def get_dispute(
    community_id: UUID,
    dispute_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.disputes.get_dispute(community_id, dispute_id, user_id)

@router.post("/disputes/{dispute_id}/statements", response_model=DisputeResponse)
async def add_statement(
    community_id: UUID,
    dispute_id: UUID,
    request: StatementRequest,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Record the caller's side of an open dispute."""
    return await services.disputes.add_statement(community_id, dispute_id, user_id, request.statement)

@router.post("/disputes/{dispute_id}/resolve", response_model=ResolutionResponse)
async def resolve_dispute(
    community_id: UUID,
    dispute_id: UUID,
    request: ResolveDisputeRequest,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Release funds to the seller or refund the buyer."""
    return await services.disputes.resolve_dispute(
        community_id, dispute_id, user_id, request.resolution, notes=request.notes
    )

class OpenDisputeRequest(BaseModel):
    """Request model for opening a dispute."""
    reason: str
    description: str

@router.post(
    "/transactions/{transaction_id}/dispute",
    response_model=DisputeResponse,
    status_code=201
)
async def open_dispute(
    community_id: UUID,
    transaction_id: UUID,
    request: OpenDisputeRequest,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Freeze a held payment until an admin resolves the dispute."""
    return await services.disputes.open_dispute(
        community_id, transaction_id, user_id, request.reason, request.description
    )
