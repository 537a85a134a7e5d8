"""Error taxonomy shared by every marketplace module.

Each domain module subclasses these for its own cases (for example
``ListingNotFoundError(NotFoundError)``) so callers can catch either the
specific error or the category. The API layer maps categories to HTTP
status codes.
"""

class MarketplaceError(Exception):
    """Base class for marketplace errors."""
    pass

class NotAMemberError(MarketplaceError):
    """Raised when the caller has no active membership in the community."""
    pass

class PermissionDeniedError(MarketplaceError):
    """Raised when the caller has the wrong role or does not own the resource."""
    pass

class InvalidStateError(MarketplaceError):
    """Raised when an operation is illegal for the current status."""
    pass

class NotFoundError(MarketplaceError):
    """Raised when an id does not resolve, or resolves in another community."""
    pass

class ValidationError(MarketplaceError):
    """Raised for malformed input."""
    pass

class DuplicateReviewError(MarketplaceError):
    """Raised when a reviewer reviews the same transaction twice."""
    pass

class ConflictError(MarketplaceError):
    """Raised when a unique constraint race is lost."""
    pass

__all__ = [
    'MarketplaceError',
    'NotAMemberError',
    'PermissionDeniedError',
    'InvalidStateError',
    'NotFoundError',
    'ValidationError',
    'DuplicateReviewError',
    'ConflictError'
]
