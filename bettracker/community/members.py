"""
Tenant members.

Users are created on their first interaction with a tenant and never
deleted; deactivation only flips ``is_active``.
"""
from datetime import datetime
from typing import Callable, Optional

from bettracker.core.protocols import RecordStore
from bettracker.exceptions import InvalidInputError, UserNotFoundError
from bettracker.schema import User, utcnow
from bettracker.utils.observability import Logger

logger = Logger(__name__)


def default_handle(external_user_id: str):
    """(username, display_name) derived from the last six characters of the id."""
    suffix = external_user_id[-6:]
    return f"user_{suffix}", f"User {suffix}"


class MemberDirectory:
    """Get-or-create and flag management for tenant members."""

    def __init__(self, store: RecordStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utcnow

    def get_or_create_user(
        self,
        external_user_id: str,
        tenant_id: str,
        username: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> User:
        if not external_user_id or not tenant_id:
            raise InvalidInputError("external_user_id and tenant_id are required")
        default_username, default_display = default_handle(external_user_id)
        user, created = self.store.get_or_create_user(
            tenant_id,
            external_user_id,
            username or default_username,
            display_name or default_display,
            self.clock(),
        )
        if created:
            logger.log_event("user_created", user_id=user.id, tenant_id=tenant_id)
        return user

    def get_user(self, user_id: int, tenant_id: str) -> User:
        user = self.store.get_user(user_id, tenant_id)
        if user is None:
            raise UserNotFoundError(user_id, tenant_id)
        return user

    def find_user(self, external_user_id: str, tenant_id: str) -> User:
        user = self.store.get_user_by_external_id(external_user_id, tenant_id)
        if user is None:
            raise UserNotFoundError(external_user_id, tenant_id)
        return user

    def _set_flags(self, user_id: int, tenant_id: str, **flags) -> User:
        user = self.store.update_user_flags(user_id, tenant_id, **flags)
        if user is None:
            raise UserNotFoundError(user_id, tenant_id)
        logger.log_event("user_flags_updated", user_id=user_id, tenant_id=tenant_id, **flags)
        return user

    def promote_to_capper(self, user_id: int, tenant_id: str) -> User:
        return self._set_flags(user_id, tenant_id, is_capper=True)

    def set_verified(self, user_id: int, tenant_id: str, verified: bool = True) -> User:
        return self._set_flags(user_id, tenant_id, is_verified=verified)

    def deactivate_user(self, user_id: int, tenant_id: str) -> User:
        return self._set_flags(user_id, tenant_id, is_active=False)
