"""Purchase and escrow API endpoints."""

from fastapi import APIRouter, Depends, Query, status
from typing import Optional, List
from decimal import Decimal
from pydantic import BaseModel
from uuid import UUID
from datetime import datetime

from auth import get_current_user
from api.services import Services, get_services

router = APIRouter(
    prefix="/communities/{community_id}/transactions",
    tags=["Transactions"]
)

class PurchaseRequest(BaseModel):
    """Request model for starting a purchase."""
    listing_id: UUID
    quantity: int = 1

class ShipRequest(BaseModel):
    tracking_number: Optional[str] = None
    shipping_carrier: Optional[str] = None

class TransactionResponse(BaseModel):
    """Response model for a transaction."""
    id: UUID
    community_id: UUID
    listing_id: UUID
    buyer_id: UUID
    seller_id: UUID
    quantity: int
    unit_price: Decimal
    shipping_cost: Decimal
    fee_amount: Decimal
    total_price: Decimal
    net_amount: Decimal
    status: str
    escrow_status: str
    payment_reference: Optional[str] = None
    escrow_held_at: Optional[datetime] = None
    buyer_confirmed_at: Optional[datetime] = None
    escrow_released_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    tracking_number: Optional[str] = None
    shipping_carrier: Optional[str] = None
    refund_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

@router.post("", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def initiate_purchase(
    community_id: UUID,
    request: PurchaseRequest,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Start a purchase. Payment is confirmed later through the payment webhook."""
    return await services.transactions.initiate_purchase(
        community_id, request.listing_id, user_id, quantity=request.quantity
    )

@router.get("", response_model=List[TransactionResponse])
async def list_transactions(
    community_id: UUID,
    role: str = Query('buyer', pattern='^(buyer|seller)$'),
    status: Optional[str] = Query(None),
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """List the caller's purchases or sales."""
    if role == 'seller':
        return await services.transactions.list_sales(community_id, user_id, status=status)
    return await services.transactions.list_purchases(community_id, user_id, status=status)

@router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    community_id: UUID,
    transaction_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.transactions.get_transaction(community_id, transaction_id, user_id)

@router.post("/{transaction_id}/ship", response_model=TransactionResponse)
async def mark_shipped(
    community_id: UUID,
    transaction_id: UUID,
    request: ShipRequest,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.transactions.mark_shipped(
        community_id,
        transaction_id,
        user_id,
        tracking_number=request.tracking_number,
        shipping_carrier=request.shipping_carrier
    )

@router.post("/{transaction_id}/confirm", response_model=TransactionResponse)
async def confirm_delivery(
    community_id: UUID,
    transaction_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Buyer confirms receipt, releasing the held funds to the seller."""
    return await services.transactions.confirm_delivery(community_id, transaction_id, user_id)

@router.post("/{transaction_id}/cancel", response_model=TransactionResponse)
async def cancel_purchase(
    community_id: UUID,
    transaction_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.transactions.cancel_purchase(community_id, transaction_id, user_id)
