"""Listings module for managing marketplace listings.

This module provides functionality for:
- Creating and editing listings
- Publishing, selling, relisting and soft-deleting listings
- Favorites and view counters
- Searching and filtering listings
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from database import Store, get_store
from errors import InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from escrow.states import OPEN_STATUSES
from events import EventProducer, MarketEvent, NullEventProducer, listing_topic
from fees import to_money
from members import Member, MembershipProvider
from .search import build_search, SORTS

logger = logging.getLogger(__name__)

IdLike = Union[str, uuid.UUID]

CATEGORIES = {
    'electronics', 'furniture', 'clothing', 'books', 'sports', 'home',
    'toys', 'art', 'vehicles', 'services', 'other'
}

CONDITIONS = {'new', 'like_new', 'good', 'fair', 'poor'}

STATUSES = {'draft', 'active', 'sold', 'reserved', 'expired', 'deleted'}

# Statuses a listing may be created in
INITIAL_STATUSES = {'draft', 'active'}

# User-mutable fields for listings
MUTABLE_FIELDS = {
    'title',
    'description',
    'category',
    'condition',
    'price',
    'original_price',
    'quantity',
    'images',
    'shipping_available',
    'shipping_cost',
    'pickup_available',
    'pickup_location'
}

# System-managed fields (not directly mutable by users)
SYSTEM_FIELDS = {
    'id',
    'community_id',
    'seller_id',
    'status',
    'views_count',
    'favorites_count',
    'sold_count',
    'is_featured',
    'created_at',
    'updated_at'
}

class ListingError(Exception):
    """Base exception for listing operations."""
    pass

class ListingNotFoundError(ListingError, NotFoundError):
    """Raised when a listing is not found."""
    pass

class InvalidListingError(ListingError, ValidationError):
    """Raised when listing fields are invalid."""
    pass

class ListingStateError(ListingError, InvalidStateError):
    """Raised when a listing is in the wrong status for an operation."""
    pass

class ListingPermissionError(ListingError, PermissionDeniedError):
    """Raised when the caller may not change a listing."""
    pass

def has_delivery_option(listing: Dict[str, Any]) -> bool:
    return bool(listing.get('shipping_available') or listing.get('pickup_available'))

def validate_listing_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and normalize user-supplied listing fields.

    Raises:
        InvalidListingError: If any field is invalid
    """
    cleaned = dict(fields)

    if 'title' in cleaned:
        title = (cleaned['title'] or '').strip()
        if not title:
            raise InvalidListingError("Title is required")
        cleaned['title'] = title

    for name in ('price', 'shipping_cost', 'original_price'):
        if name in cleaned and cleaned[name] is not None:
            try:
                amount = to_money(cleaned[name])
            except ValidationError:
                raise InvalidListingError(f"Invalid {name}: {cleaned[name]!r}")
            if amount < 0:
                raise InvalidListingError(f"{name} must not be negative")
            cleaned[name] = amount
    if 'price' in cleaned and cleaned['price'] is None:
        raise InvalidListingError("Price is required")
    if 'shipping_cost' in cleaned and cleaned['shipping_cost'] is None:
        cleaned['shipping_cost'] = Decimal('0.00')

    if 'quantity' in cleaned:
        quantity = cleaned['quantity']
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidListingError("Quantity must be an integer of at least 1")

    if 'category' in cleaned and cleaned['category'] not in CATEGORIES:
        raise InvalidListingError(f"Invalid category: {cleaned['category']}")

    if 'condition' in cleaned and cleaned['condition'] not in CONDITIONS:
        raise InvalidListingError(f"Invalid condition: {cleaned['condition']}")

    if 'images' in cleaned:
        images = cleaned['images'] or []
        if not all(isinstance(url, str) and url for url in images):
            raise InvalidListingError("Images must be a list of URLs")
        cleaned['images'] = list(images)

    for name in ('shipping_available', 'pickup_available'):
        if name in cleaned and not isinstance(cleaned[name], bool):
            raise InvalidListingError(f"{name} must be a boolean")

    return cleaned

class ListingManager:
    """Manager class for handling listing operations."""

    def __init__(
        self,
        store: Optional[Store] = None,
        members: Optional[MembershipProvider] = None,
        events: Optional[EventProducer] = None
    ):
        """Initialize the listing manager.

        Args:
            store: Optional store. If not provided, will get from database module.
            members: Optional membership provider sharing the store
            events: Optional event producer for change notifications
        """
        self.store = store
        self.members = members
        self.events = events or NullEventProducer()

    async def ensure_store(self):
        """Ensure we have a store and a membership provider."""
        if not self.store:
            self.store = await get_store()
        if not self.members:
            self.members = MembershipProvider(self.store)

    async def _load(
        self,
        community_id: IdLike,
        listing_id: IdLike,
        include_deleted: bool = False,
        store: Optional[Store] = None
    ) -> Dict[str, Any]:
        store = store or self.store
        try:
            listing = await store.get('marketplace_listings', listing_id)
        except ValidationError:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        if (
            not listing
            or str(listing['community_id']) != str(community_id)
            or (listing['status'] == 'deleted' and not include_deleted)
        ):
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        return listing

    def _require_manager(self, listing: Dict[str, Any], member: Member, action: str) -> None:
        if listing['seller_id'] != member.member_id and not member.is_staff:
            raise ListingPermissionError(f"Only the seller or community staff may {action} this listing")

    def _require_seller(self, listing: Dict[str, Any], member: Member, action: str) -> None:
        if listing['seller_id'] != member.member_id:
            raise ListingPermissionError(f"Only the seller may {action} this listing")

    async def _publish_event(self, event_type: str, listing: Dict[str, Any]) -> None:
        await self.events.publish(MarketEvent(
            type=event_type,
            topic=listing_topic(listing['id']),
            community_id=listing['community_id'],
            data={'listing_id': str(listing['id']), 'status': listing['status']}
        ))

    async def _transition(
        self,
        community_id: IdLike,
        listing_id: IdLike,
        user_id: IdLike,
        source: str,
        target: str,
        action: str,
        seller_only: bool = False
    ) -> Dict[str, Any]:
        """Move a listing from one status to another with a conditional update."""
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        listing = await self._load(community_id, listing_id)
        if seller_only:
            self._require_seller(listing, member, action)
        else:
            self._require_manager(listing, member, action)

        if listing['status'] != source:
            raise ListingStateError(
                f"Cannot {action} a listing in status {listing['status']}"
            )

        expected = {'status': source}
        if target == 'active':
            if not has_delivery_option(listing):
                raise InvalidListingError("An active listing needs shipping or pickup")
            # Delivery options must not change underneath the check
            expected['shipping_available'] = listing['shipping_available']
            expected['pickup_available'] = listing['pickup_available']

        updated = await self.store.update(
            'marketplace_listings', listing['id'], {'status': target}, expected=expected
        )
        if not updated:
            current = await self._load(community_id, listing_id, include_deleted=True)
            raise ListingStateError(
                f"Cannot {action} a listing in status {current['status']}"
            )

        logger.info(f"Listing {listing['id']}: {source} -> {target}")
        await self._publish_event('listing.status_changed', updated)
        return updated

    async def create_listing(
        self,
        community_id: IdLike,
        user_id: IdLike,
        title: str,
        price: Any,
        description: Optional[str] = None,
        category: str = 'other',
        condition: str = 'good',
        quantity: int = 1,
        images: Optional[List[str]] = None,
        original_price: Optional[Any] = None,
        shipping_available: bool = False,
        shipping_cost: Any = 0,
        pickup_available: bool = True,
        pickup_location: Optional[str] = None,
        status: str = 'draft'
    ) -> Dict[str, Any]:
        """Create a new listing.

        Args:
            community_id: Community the listing belongs to
            user_id: The seller's user id
            title: Listing title
            price: Unit price, at least 0
            description: Optional description
            category: One of CATEGORIES
            condition: One of CONDITIONS
            quantity: Units available, at least 1
            images: Optional image URLs, the first is the cover
            original_price: Optional price shown struck through
            shipping_available: Whether the seller ships
            shipping_cost: Shipping cost, at least 0
            pickup_available: Whether the buyer may pick up
            pickup_location: Optional pickup location
            status: 'draft' or 'active'

        Returns:
            Dict containing the created listing

        Raises:
            NotAMemberError: If the seller is not an active member
            InvalidListingError: If a field is invalid
        """
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)

        if status not in INITIAL_STATUSES:
            raise InvalidListingError(f"A listing can only be created as draft or active, not {status}")

        fields = validate_listing_fields({
            'title': title,
            'description': description,
            'category': category,
            'condition': condition,
            'price': price,
            'original_price': original_price,
            'quantity': quantity,
            'images': images or [],
            'shipping_available': shipping_available,
            'shipping_cost': shipping_cost,
            'pickup_available': pickup_available,
            'pickup_location': pickup_location
        })
        if status == 'active' and not has_delivery_option(fields):
            raise InvalidListingError("An active listing needs shipping or pickup")

        listing = await self.store.insert('marketplace_listings', {
            **fields,
            'community_id': member.community_id,
            'seller_id': member.member_id,
            'status': status
        })
        logger.info(f"Created {status} listing {listing['id']} for seller {member.member_id}")
        await self._publish_event('listing.created', listing)
        return listing

    async def get_listing(
        self,
        community_id: IdLike,
        listing_id: IdLike,
        user_id: IdLike
    ) -> Dict[str, Any]:
        """Get a listing by ID.

        Drafts are only visible to their seller and community staff.

        Raises:
            NotAMemberError: If the caller is not an active member
            ListingNotFoundError: If the listing doesn't exist in the community
        """
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        listing = await self._load(community_id, listing_id)
        if listing['status'] == 'draft' and listing['seller_id'] != member.member_id and not member.is_staff:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        return listing

    async def update_listing(
        self,
        community_id: IdLike,
        listing_id: IdLike,
        user_id: IdLike,
        updates: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Update a listing's user-mutable fields.

        Price edits only affect future purchases; existing transactions keep
        the amounts frozen when they were initiated.

        Raises:
            ListingNotFoundError: If listing doesn't exist
            ListingPermissionError: If the caller is not the seller
            InvalidListingError: If update contains invalid fields
            ListingStateError: If the listing is sold or changed concurrently
        """
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        listing = await self._load(community_id, listing_id)
        self._require_seller(listing, member, 'edit')

        invalid_fields = set(updates) - MUTABLE_FIELDS
        if invalid_fields:
            raise InvalidListingError(f"Cannot update fields: {', '.join(sorted(invalid_fields))}")
        if not updates:
            return listing

        changes = validate_listing_fields(updates)
        if listing['status'] == 'active' and not has_delivery_option({**listing, **changes}):
            raise InvalidListingError("An active listing needs shipping or pickup")

        updated = await self.store.update(
            'marketplace_listings', listing['id'], changes,
            expected={'status': listing['status']}
        )
        if not updated:
            raise ListingStateError(f"Listing {listing_id} changed status, retry the update")

        logger.info(f"Updated listing {listing['id']}: {', '.join(sorted(changes))}")
        await self._publish_event('listing.updated', updated)
        return updated

    async def publish(self, community_id: IdLike, listing_id: IdLike, user_id: IdLike) -> Dict[str, Any]:
        """Move a draft listing to active."""
        return await self._transition(community_id, listing_id, user_id, 'draft', 'active', 'publish')

    async def unpublish(self, community_id: IdLike, listing_id: IdLike, user_id: IdLike) -> Dict[str, Any]:
        """Move an active listing back to draft."""
        return await self._transition(community_id, listing_id, user_id, 'active', 'draft', 'unpublish')

    async def relist(self, community_id: IdLike, listing_id: IdLike, user_id: IdLike) -> Dict[str, Any]:
        """Move a sold listing back to active."""
        return await self._transition(
            community_id, listing_id, user_id, 'sold', 'active', 'relist', seller_only=True
        )

    async def mark_sold(self, community_id: IdLike, listing_id: IdLike, user_id: IdLike) -> Dict[str, Any]:
        """Mark an active listing as sold.

        Blocked while a purchase of the listing is still open (pending, paid
        or disputed).

        Raises:
            ListingPermissionError: If the caller is not the seller
            ListingStateError: If the listing is not active or has an open purchase
        """
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        listing = await self._load(community_id, listing_id)
        self._require_seller(listing, member, 'mark sold')
        if listing['status'] != 'active':
            raise ListingStateError(f"Cannot mark sold a listing in status {listing['status']}")

        async with self.store.transaction() as tx:
            updated = await tx.update(
                'marketplace_listings', listing['id'], {'status': 'sold'},
                expected={'status': 'active'}
            )
            if not updated:
                current = await self._load(community_id, listing_id, include_deleted=True, store=tx)
                raise ListingStateError(f"Cannot mark sold a listing in status {current['status']}")
            open_count = await tx.count(
                'marketplace_transactions',
                {'listing_id': listing['id'], 'status': list(OPEN_STATUSES)}
            )
            if open_count:
                raise ListingStateError("Listing has an open purchase and cannot be marked sold")

        logger.info(f"Listing {listing['id']}: active -> sold")
        await self._publish_event('listing.status_changed', updated)
        return updated

    async def soft_delete(self, community_id: IdLike, listing_id: IdLike, user_id: IdLike) -> Dict[str, Any]:
        """Soft-delete a listing by setting its status to deleted.

        Raises:
            ListingPermissionError: If the caller is neither the seller nor staff
            ListingStateError: If an open purchase references the listing
        """
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        listing = await self._load(community_id, listing_id)
        self._require_manager(listing, member, 'delete')

        async with self.store.transaction() as tx:
            updated = await tx.update(
                'marketplace_listings', listing['id'], {'status': 'deleted'},
                exclude={'status': 'deleted'}
            )
            if not updated:
                raise ListingNotFoundError(f"Listing {listing_id} not found")
            open_count = await tx.count(
                'marketplace_transactions',
                {'listing_id': listing['id'], 'status': list(OPEN_STATUSES)}
            )
            if open_count:
                raise ListingStateError("Listing has an open purchase and cannot be deleted")

        logger.info(f"Listing {listing['id']} deleted by member {member.member_id}")
        await self._publish_event('listing.deleted', updated)
        return updated

    async def toggle_favorite(
        self,
        community_id: IdLike,
        listing_id: IdLike,
        user_id: IdLike
    ) -> Dict[str, Any]:
        """Add or remove a favorite.

        The favorite row and the listing's favorites_count change together.

        Returns:
            Dict with 'favorited' (new state) and 'favorites_count'
        """
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        listing = await self._load(community_id, listing_id)

        async with self.store.transaction() as tx:
            removed = await tx.delete_where(
                'marketplace_favorites',
                member_id=member.member_id,
                listing_id=listing['id']
            )
            if removed:
                updated = await tx.increment(
                    'marketplace_listings', listing['id'], 'favorites_count', -1, floor=0
                )
            else:
                await tx.insert('marketplace_favorites', {
                    'community_id': member.community_id,
                    'member_id': member.member_id,
                    'listing_id': listing['id']
                })
                updated = await tx.increment(
                    'marketplace_listings', listing['id'], 'favorites_count', 1
                )

        favorited = not removed
        logger.debug(f"Member {member.member_id} {'added' if favorited else 'removed'} favorite {listing['id']}")
        return {
            'listing_id': listing['id'],
            'favorited': favorited,
            'favorites_count': updated['favorites_count']
        }

    async def get_favorites(self, community_id: IdLike, user_id: IdLike) -> List[Dict[str, Any]]:
        """Listings the member has favorited, newest favorite first."""
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        favorites = await self.store.find(
            'marketplace_favorites',
            {'member_id': member.member_id, 'community_id': member.community_id},
            order_by=['-created_at']
        )
        if not favorites:
            return []
        listings = await self.store.find(
            'marketplace_listings',
            {'id': [f['listing_id'] for f in favorites]},
            exclude={'status': 'deleted'}
        )
        by_id = {listing['id']: listing for listing in listings}
        return [by_id[f['listing_id']] for f in favorites if f['listing_id'] in by_id]

    async def record_view(self, community_id: IdLike, listing_id: IdLike) -> int:
        """Increment the listing's view counter. Counts are approximate."""
        await self.ensure_store()
        listing = await self._load(community_id, listing_id)
        updated = await self.store.increment('marketplace_listings', listing['id'], 'views_count')
        return updated['views_count']

    async def search_listings(
        self,
        community_id: IdLike,
        user_id: IdLike,
        query: Optional[str] = None,
        category: Optional[str] = None,
        condition: Optional[str] = None,
        seller_id: Optional[IdLike] = None,
        status: Optional[str] = 'active',
        min_price: Optional[Any] = None,
        max_price: Optional[Any] = None,
        sort: str = 'newest',
        page: int = 1,
        per_page: int = 20
    ) -> Dict[str, Any]:
        """Search listings in a community.

        Featured listings come first, then the requested sort. Listings other
        than active ones are only visible to their seller and to staff.

        Returns:
            Dict containing:
                - listings: Page of matching listings
                - total_count: Total number of matching listings
                - total_pages: Total number of pages
                - current_page: Current page number
        """
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)

        if status is not None and status not in STATUSES:
            raise InvalidListingError(f"Invalid status: {status}")
        if status == 'deleted':
            raise InvalidListingError("Deleted listings cannot be searched")
        if status != 'active' and not member.is_staff:
            if seller_id is not None and str(seller_id) != str(member.member_id):
                raise ListingPermissionError("Only active listings of other sellers are visible")
            seller_id = member.member_id

        criteria = build_search(
            community_id=member.community_id,
            query=query,
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
        total_count = await self.store.count(
            'marketplace_listings',
            criteria['filters'],
            exclude=criteria['exclude'],
            ranges=criteria['ranges'],
            search=criteria['search']
        )
        listings = await self.store.find(
            'marketplace_listings',
            criteria['filters'],
            exclude=criteria['exclude'],
            ranges=criteria['ranges'],
            search=criteria['search'],
            order_by=criteria['order_by'],
            limit=criteria['limit'],
            offset=criteria['offset']
        )
        return {
            'listings': listings,
            'total_count': total_count,
            'total_pages': (total_count + per_page - 1) // per_page,
            'current_page': page
        }

__all__ = [
    'CATEGORIES',
    'CONDITIONS',
    'MUTABLE_FIELDS',
    'SORTS',
    'ListingError',
    'ListingManager',
    'ListingNotFoundError',
    'ListingPermissionError',
    'ListingStateError',
    'InvalidListingError',
    'has_delivery_option',
    'validate_listing_fields'
]
