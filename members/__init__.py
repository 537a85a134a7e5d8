"""Community membership lookups.

Every marketplace operation starts by resolving the caller to an active
membership in the community. Memberships are read from the
``community_members`` table; this module never writes them outside of
``add_member``, which exists for seeding and tests.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional, Union

from database import Store, get_store
from errors import NotAMemberError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)

ROLES = ('admin', 'moderator', 'member')
STAFF_ROLES = ('admin', 'moderator')

IdLike = Union[str, uuid.UUID]

@dataclass(frozen=True)
class Member:
    """An active membership of a user in one community."""
    member_id: uuid.UUID
    community_id: uuid.UUID
    user_id: uuid.UUID
    role: str = 'member'
    status: str = 'active'
    display_name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == 'admin'

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @classmethod
    def from_row(cls, row: dict) -> 'Member':
        return cls(
            member_id=row['id'],
            community_id=row['community_id'],
            user_id=row['user_id'],
            role=row['role'],
            status=row['status'],
            display_name=row.get('display_name')
        )

class MembershipProvider:
    """Resolves users to community memberships."""

    def __init__(self, store: Optional[Store] = None):
        self.store = store

    async def ensure_store(self):
        """Ensure we have a store."""
        if not self.store:
            self.store = await get_store()

    async def get_active_member(
        self,
        community_id: IdLike,
        user_id: IdLike
    ) -> Optional[Member]:
        """Return the user's active membership, or None."""
        await self.ensure_store()
        row = await self.store.find_one(
            'community_members',
            community_id=community_id,
            user_id=user_id,
            status='active'
        )
        return Member.from_row(row) if row else None

    async def require_member(self, community_id: IdLike, user_id: IdLike) -> Member:
        """Return the user's active membership.

        Raises:
            NotAMemberError: If the user is not an active member
        """
        member = await self.get_active_member(community_id, user_id)
        if member is None:
            raise NotAMemberError(f"User {user_id} is not an active member of community {community_id}")
        return member

    async def get_member(self, community_id: IdLike, member_id: IdLike) -> Optional[Member]:
        """Look up an active membership by its own id."""
        await self.ensure_store()
        try:
            row = await self.store.get('community_members', member_id)
        except ValidationError:
            return None
        if not row or row['status'] != 'active' or str(row['community_id']) != str(community_id):
            return None
        return Member.from_row(row)

    async def add_member(
        self,
        community_id: IdLike,
        user_id: IdLike,
        role: str = 'member',
        display_name: Optional[str] = None,
        status: str = 'active'
    ) -> Member:
        """Insert a membership row."""
        if role not in ROLES:
            raise ValidationError(f"Invalid role: {role}")
        await self.ensure_store()
        row = await self.store.insert('community_members', {
            'community_id': community_id,
            'user_id': user_id,
            'role': role,
            'status': status,
            'display_name': display_name
        })
        logger.info(f"Added {role} {row['id']} to community {community_id}")
        return Member.from_row(row)

def require_staff(member: Member, action: str = 'perform this action') -> None:
    """Raise PermissionDeniedError unless the member is an admin or moderator."""
    if not member.is_staff:
        raise PermissionDeniedError(f"Only community admins or moderators may {action}")

def require_admin(member: Member, action: str = 'perform this action') -> None:
    """Raise PermissionDeniedError unless the member is an admin."""
    if not member.is_admin:
        raise PermissionDeniedError(f"Only community admins may {action}")

__all__ = [
    'Member',
    'MembershipProvider',
    'ROLES',
    'require_admin',
    'require_staff'
]
