"""Review and seller statistics API endpoints."""

from fastapi import APIRouter, Depends, Query, status
from typing import Optional, List
from decimal import Decimal
from pydantic import BaseModel
from uuid import UUID
from datetime import datetime

from auth import get_current_user
from api.services import Services, get_services

router = APIRouter(
    prefix="/communities/{community_id}",
    tags=["Reviews"]
)

class SubmitReviewRequest(BaseModel):
    """Request model for reviewing a completed transaction."""
    transaction_id: UUID
    rating: int
    title: Optional[str] = None
    content: Optional[str] = None

class ReviewResponse(BaseModel):
    id: UUID
    community_id: UUID
    transaction_id: UUID
    reviewer_id: UUID
    reviewee_id: UUID
    listing_id: Optional[UUID] = None
    rating: int
    title: Optional[str] = None
    content: Optional[str] = None
    is_buyer_review: bool
    created_at: datetime

class SellerStatsResponse(BaseModel):
    """Response model for materialized seller statistics."""
    member_id: UUID
    total_sales: int
    total_revenue: Decimal
    average_rating: Optional[Decimal] = None
    total_reviews: int
    successful_transactions: int
    cancelled_transactions: int
    dispute_rate: Optional[Decimal] = None
    response_rate: Optional[Decimal] = None
    updated_at: Optional[datetime] = None

@router.post("/reviews", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def submit_review(
    community_id: UUID,
    request: SubmitReviewRequest,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Review the other party of a completed transaction."""
    return await services.reviews.submit_review(
        community_id,
        request.transaction_id,
        user_id,
        request.rating,
        content=request.content,
        title=request.title
    )

@router.get("/members/{member_id}/reviews", response_model=List[ReviewResponse])
async def list_reviews(
    community_id: UUID,
    member_id: UUID,
    as_seller: Optional[bool] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.reviews.list_reviews(
        community_id, member_id, user_id, as_seller=as_seller, limit=limit, offset=offset
    )

@router.get("/sellers/{member_id}/stats", response_model=SellerStatsResponse)
async def get_seller_stats(
    community_id: UUID,
    member_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.reviews.get_seller_stats(community_id, member_id, user_id)
