"""
Identity store interface.

This module defines the abstract base class that identity store backends
implement. The reconciler only talks to stores through these operations.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, List, TypeVar

from ldap_auth.models import (
    IdentityAccount,
    IdentityGroup,
    AccountCreateRequest,
    GroupCreateRequest,
)

logger = logging.getLogger(__name__)

USER_GROUP_CONTENT_TYPE = 'user_group'

T = TypeVar('T')


class IdentityStoreError(Exception):
    """Base exception for identity store errors."""
    pass


class NotFoundError(IdentityStoreError):
    """Raised when a requested account or group does not exist."""
    pass


class PermissionDeniedError(IdentityStoreError):
    """Raised when an operation requires elevated privilege."""
    pass


class IdentityStore(ABC):
    """
    Abstract identity store.

    Mutations that bypass the acting user's permissions must be run through
    run_with_elevated_privilege(), which hands the callback the store handle
    to use for the elevated calls.
    """

    @abstractmethod
    def load_account_by_username(self, username: str) -> IdentityAccount:
        """
        Raises:
            NotFoundError: If no account has this login
        """

    @abstractmethod
    def load_groups_of_account(self, account: IdentityAccount) -> List[IdentityGroup]:
        pass

    @abstractmethod
    def assign_account_to_group(self, account: IdentityAccount, group: IdentityGroup) -> None:
        pass

    @abstractmethod
    def unassign_account_from_group(self, account: IdentityAccount, group: IdentityGroup) -> None:
        pass

    def new_account_create_request(self, login: str, email: str, password: str) -> AccountCreateRequest:
        return AccountCreateRequest(login=login, email=email, password=password)

    @abstractmethod
    def create_account(self, request: AccountCreateRequest, groups: Iterable[IdentityGroup]) -> IdentityAccount:
        pass

    @abstractmethod
    def load_group(self, group_id: Any) -> IdentityGroup:
        """
        Raises:
            NotFoundError: If the group does not exist
        """

    def new_group_create_request(self) -> GroupCreateRequest:
        return GroupCreateRequest()

    @abstractmethod
    def create_group(self, request: GroupCreateRequest, parent: IdentityGroup) -> IdentityGroup:
        pass

    @abstractmethod
    def find_content_by_type_and_field_in(self, content_type: str, field: str,
                                          values: Iterable[Any]) -> List[Any]:
        """
        Return the ids of content items of a type whose field is one of values.

        Matching is exact and case-sensitive.
        """

    @abstractmethod
    def run_with_elevated_privilege(self, fn: Callable[['IdentityStore'], T]) -> T:
        """Call fn with a store handle that bypasses permission checks."""
