"""Listings API endpoints."""

from fastapi import APIRouter, Depends, Query, status
from typing import Optional, List
from decimal import Decimal
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime

from auth import get_current_user
from api.services import Services, get_services

router = APIRouter(
    prefix="/communities/{community_id}",
    tags=["Listings"]
)

# Model definitions
class CreateListingRequest(BaseModel):
    """Request model for creating a listing."""
    title: str
    price: Decimal
    description: Optional[str] = None
    category: str = 'other'
    condition: str = 'good'
    quantity: int = 1
    images: List[str] = Field(default_factory=list)
    original_price: Optional[Decimal] = None
    shipping_available: bool = False
    shipping_cost: Decimal = Decimal('0')
    pickup_available: bool = True
    pickup_location: Optional[str] = None
    status: str = 'draft'

class UpdateListingRequest(BaseModel):
    """Request model for updating a listing. Omitted fields are unchanged."""
    title: Optional[str] = None
    price: Optional[Decimal] = None
    description: Optional[str] = None
    category: Optional[str] = None
    condition: Optional[str] = None
    quantity: Optional[int] = None
    images: Optional[List[str]] = None
    original_price: Optional[Decimal] = None
    shipping_available: Optional[bool] = None
    shipping_cost: Optional[Decimal] = None
    pickup_available: Optional[bool] = None
    pickup_location: Optional[str] = None

class ListingResponse(BaseModel):
    """Response model for a listing."""
    id: UUID
    community_id: UUID
    seller_id: UUID
    title: str
    description: Optional[str] = None
    category: str
    condition: str
    price: Decimal
    original_price: Optional[Decimal] = None
    quantity: int
    images: List[str]
    status: str
    shipping_available: bool
    shipping_cost: Decimal
    pickup_available: bool
    pickup_location: Optional[str] = None
    views_count: int
    favorites_count: int
    sold_count: int = 0
    is_featured: bool
    created_at: datetime
    updated_at: datetime

class ListingPage(BaseModel):
    """Response model for search results."""
    listings: List[ListingResponse]
    total_count: int
    total_pages: int
    current_page: int

class FavoriteResponse(BaseModel):
    """Response model for a favorite toggle."""
    listing_id: UUID
    favorited: bool
    favorites_count: int

class ViewResponse(BaseModel):
    views_count: int

@router.post("/listings", response_model=ListingResponse, status_code=status.HTTP_201_CREATED)
async def create_listing(
    community_id: UUID,
    request: CreateListingRequest,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Create a new listing as draft or active."""
    return await services.listings.create_listing(community_id, user_id, **request.model_dump())

@router.get("/listings", response_model=ListingPage)
async def search_listings(
    community_id: UUID,
    q: Optional[str] = Query(None, description="Text to search in title and description"),
    category: Optional[str] = Query(None),
    condition: Optional[str] = Query(None),
    seller_id: Optional[UUID] = Query(None),
    status: Optional[str] = Query('active'),
    min_price: Optional[Decimal] = Query(None),
    max_price: Optional[Decimal] = Query(None),
    sort: str = Query('newest'),
    page: int = Query(1),
    per_page: int = Query(20),
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Search listings with various filters."""
    return await services.listings.search_listings(
        community_id,
        user_id,
        query=q,
        category=category,
        condition=condition,
        seller_id=seller_id,
        status=status,
        min_price=min_price,
        max_price=max_price,
        sort=sort,
        page=page,
        per_page=per_page
    )

@router.get("/listings/{listing_id}", response_model=ListingResponse)
async def get_listing(
    community_id: UUID,
    listing_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Get a listing by ID."""
    return await services.listings.get_listing(community_id, listing_id, user_id)

@router.patch("/listings/{listing_id}", response_model=ListingResponse)
async def update_listing(
    community_id: UUID,
    listing_id: UUID,
    request: UpdateListingRequest,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Update a listing's details."""
    updates = request.model_dump(exclude_unset=True)
    return await services.listings.update_listing(community_id, listing_id, user_id, updates)

@router.delete("/listings/{listing_id}", response_model=ListingResponse)
async def delete_listing(
    community_id: UUID,
    listing_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Soft-delete a listing."""
    return await services.listings.soft_delete(community_id, listing_id, user_id)

@router.post("/listings/{listing_id}/publish", response_model=ListingResponse)
async def publish_listing(
    community_id: UUID,
    listing_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.listings.publish(community_id, listing_id, user_id)

@router.post("/listings/{listing_id}/unpublish", response_model=ListingResponse)
async def unpublish_listing(
    community_id: UUID,
    listing_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.listings.unpublish(community_id, listing_id, user_id)

@router.post("/listings/{listing_id}/mark-sold", response_model=ListingResponse)
async def mark_listing_sold(
    community_id: UUID,
    listing_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.listings.mark_sold(community_id, listing_id, user_id)

@router.post("/listings/{listing_id}/relist", response_model=ListingResponse)
async def relist_listing(
    community_id: UUID,
    listing_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.listings.relist(community_id, listing_id, user_id)

@router.post("/listings/{listing_id}/favorite", response_model=FavoriteResponse)
async def toggle_favorite(
    community_id: UUID,
    listing_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Add the listing to the caller's favorites, or remove it."""
    return await services.listings.toggle_favorite(community_id, listing_id, user_id)

@router.post("/listings/{listing_id}/views", response_model=ViewResponse)
async def record_view(
    community_id: UUID,
    listing_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    await services.members.require_member(community_id, user_id)
    views = await services.listings.record_view(community_id, listing_id)
    return {'views_count': views}

@router.get("/favorites", response_model=List[ListingResponse])
async def get_favorites(
    community_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Listings the caller has favorited."""
    return await services.listings.get_favorites(community_id, user_id)
