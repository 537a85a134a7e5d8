""" Search criteria for marketplace listings """
from typing import Any, Dict, Optional
import logging

from errors import ValidationError
from fees import to_money

logger = logging.getLogger(__name__)

MAX_PER_PAGE = 100

# Sort name -> store ordering (featured listings always come first)
SORTS = {
    'newest': ['-created_at'],
    'oldest': ['created_at'],
    'price_asc': ['price', '-created_at'],
    'price_desc': ['-price', '-created_at'],
    'popular': ['-favorites_count', '-views_count', '-created_at'],
}

SEARCH_COLUMNS = ('title', 'description')

def build_search(
        community_id,
        query: Optional[str] = None,
        category: Optional[str] = None,
        condition: Optional[str] = None,
        seller_id=None,
        status: Optional[str] = 'active',
        min_price: Optional[Any] = None,
        max_price: Optional[Any] = None,
        sort: str = 'newest',
        page: int = 1,
        per_page: int = 20
    ) -> Dict[str, Any]:
        """Translate search parameters into store criteria.

        Args:
            community_id: Community to search in
            query: Optional text to search in title and description
            category: Optional category to filter by
            condition: Optional condition to filter by
            seller_id: Optional seller member id to filter by
            status: Listing status to filter by, None for any non-deleted status
            min_price: Optional minimum price
            max_price: Optional maximum price
            sort: One of SORTS
            page: 1-based page number
            per_page: Page size, at most MAX_PER_PAGE

        Returns:
            Dict with 'filters', 'exclude', 'ranges', 'search', 'order_by',
            'limit' and 'offset' for the store's find/count calls
        """
        if sort not in SORTS:
            raise ValidationError(f"Invalid sort: {sort}")
        if page < 1:
            raise ValidationError("Page must be at least 1")
        if per_page < 1 or per_page > MAX_PER_PAGE:
            raise ValidationError(f"per_page must be between 1 and {MAX_PER_PAGE}")

        filters: Dict[str, Any] = {'community_id': community_id}
        if status is not None:
            filters['status'] = status
        if category:
            filters['category'] = category
        if condition:
            filters['condition'] = condition
        if seller_id is not None:
            filters['seller_id'] = seller_id

        ranges = {}
        low = to_money(min_price) if min_price is not None else None
        high = to_money(max_price) if max_price is not None else None
        if low is not None and high is not None and low > high:
            raise ValidationError("min_price must not exceed max_price")
        if low is not None or high is not None:
            ranges['price'] = (low, high)

        search_term = (query or '').strip()

        criteria = {
            'filters': filters,
            'exclude': {'status': 'deleted'},
            'ranges': ranges,
            'search': (SEARCH_COLUMNS, search_term) if search_term else None,
            'order_by': ['-is_featured'] + SORTS[sort],
            'limit': per_page,
            'offset': (page - 1) * per_page
        }
        logger.debug(f"Listing search criteria: {criteria}")
        return criteria
