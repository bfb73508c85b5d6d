"""
Dictionary-backed identity store, used for dry runs and tests.
"""

import itertools
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from ldap_auth.models import IdentityAccount, IdentityGroup, AccountCreateRequest, GroupCreateRequest
from .base import (
    IdentityStore,
    IdentityStoreError,
    NotFoundError,
    PermissionDeniedError,
    USER_GROUP_CONTENT_TYPE,
)

logger = logging.getLogger(__name__)


class _StoreState:
    def __init__(self):
        self.ids = itertools.count(1)
        self.accounts: Dict[Any, IdentityAccount] = {}
        self.passwords: Dict[Any, str] = {}
        self.groups: Dict[Any, IdentityGroup] = {}
        self.memberships: Dict[Any, List[Any]] = {}
        # (operation, subject, object) tuples in call order
        self.operations: List[tuple] = []


class InMemoryIdentityStore(IdentityStore):
    """
    Identity store kept in process memory.

    Mutations are rejected with PermissionDeniedError unless made through the
    handle passed by run_with_elevated_privilege().
    """

    def __init__(self, _state: Optional[_StoreState] = None, elevated: bool = False):
        self._state = _state or _StoreState()
        self.elevated = elevated

    @property
    def operations(self) -> List[tuple]:
        return self._state.operations

    # Seeding helpers, not part of the store interface

    def add_group(self, name: str, parent_id: Any = None) -> IdentityGroup:
        group = IdentityGroup(id=next(self._state.ids), name=name, parent_id=parent_id)
        self._state.groups[group.id] = group
        return group

    def add_account(self, login: str, email: str = '', group_ids: Iterable[Any] = ()) -> IdentityAccount:
        account = IdentityAccount(id=next(self._state.ids), login=login, email=email)
        self._state.accounts[account.id] = account
        self._state.memberships[account.id] = list(group_ids)
        return account

    def password_of(self, account: IdentityAccount) -> Optional[str]:
        return self._state.passwords.get(account.id)

    # IdentityStore interface

    def load_account_by_username(self, username: str) -> IdentityAccount:
        for account in self._state.accounts.values():
            if account.login == username:
                return account
        raise NotFoundError(f"No account with login {username!r}")

    def load_groups_of_account(self, account: IdentityAccount) -> List[IdentityGroup]:
        group_ids = self._state.memberships.get(account.id, [])
        return [self._state.groups[group_id] for group_id in group_ids]

    def assign_account_to_group(self, account: IdentityAccount, group: IdentityGroup) -> None:
        self._require_elevated('assign account to group')
        memberships = self._memberships_of(account)
        if group.id in memberships:
            raise IdentityStoreError(f"Account {account.login!r} is already in group {group.id}")
        memberships.append(group.id)
        self._state.operations.append(('assign', account.login, group.id))

    def unassign_account_from_group(self, account: IdentityAccount, group: IdentityGroup) -> None:
        self._require_elevated('unassign account from group')
        memberships = self._memberships_of(account)
        if group.id not in memberships:
            raise IdentityStoreError(f"Account {account.login!r} is not in group {group.id}")
        memberships.remove(group.id)
        self._state.operations.append(('unassign', account.login, group.id))

    def create_account(self, request: AccountCreateRequest, groups: Iterable[IdentityGroup]) -> IdentityAccount:
        self._require_elevated('create account')
        groups = list(groups)
        if not groups:
            raise IdentityStoreError("An account must be created in at least one group")
        if any(account.login == request.login for account in self._state.accounts.values()):
            raise IdentityStoreError(f"Login {request.login!r} already exists")
        for group in groups:
            if group.id not in self._state.groups:
                raise NotFoundError(f"Group {group.id} does not exist")

        account = IdentityAccount(
            id=next(self._state.ids),
            login=request.login,
            email=request.email,
            fields=dict(request.fields),
            enabled=request.enabled,
            owner_id=request.owner_id,
        )
        self._state.accounts[account.id] = account
        self._state.passwords[account.id] = request.password
        self._state.memberships[account.id] = [group.id for group in groups]
        self._state.operations.append(('create_account', account.login, tuple(g.id for g in groups)))
        return account

    def load_group(self, group_id: Any) -> IdentityGroup:
        try:
            return self._state.groups[group_id]
        except KeyError:
            raise NotFoundError(f"Group {group_id} does not exist") from None

    def create_group(self, request: GroupCreateRequest, parent: IdentityGroup) -> IdentityGroup:
        self._require_elevated('create group')
        name = request.fields.get('name')
        if not name:
            raise IdentityStoreError("Group name is required")
        if parent.id not in self._state.groups:
            raise NotFoundError(f"Parent group {parent.id} does not exist")
        for group in self._state.groups.values():
            if group.parent_id == parent.id and group.name == name:
                raise IdentityStoreError(f"Group {name!r} already exists under {parent.id}")

        group = self.add_group(name, parent.id)
        self._state.operations.append(('create_group', name, group.id))
        return group

    def find_content_by_type_and_field_in(self, content_type: str, field: str,
                                          values: Iterable[Any]) -> List[Any]:
        if content_type != USER_GROUP_CONTENT_TYPE or field != 'name':
            return []
        wanted = set(values)
        return [group.id for group in self._state.groups.values() if group.name in wanted]

    def run_with_elevated_privilege(self, fn: Callable[[IdentityStore], Any]) -> Any:
        return fn(InMemoryIdentityStore(self._state, elevated=True))

    def _memberships_of(self, account: IdentityAccount) -> List[Any]:
        if account.id not in self._state.accounts:
            raise NotFoundError(f"Account {account.login!r} does not exist")
        return self._state.memberships.setdefault(account.id, [])

    def _require_elevated(self, operation: str):
        if not self.elevated:
            raise PermissionDeniedError(f"Elevated privilege required to {operation}")
