"""
Reconciliation of normalized users into the identity store.

On every login the account is looked up by username. Existing accounts get
their group memberships brought in line with the directory; unknown users
get a new account. Email and mapped attributes are only written when the
account is created.
"""

import logging
import secrets
from typing import Any, Dict, Iterable, List, Optional

from ldap_auth.config import require_options
from ldap_auth.logging_setup import security_logger
from ldap_auth.models import IdentityAccount, IdentityGroup, NormalizedUser
from ldap_auth.stores.base import IdentityStore, NotFoundError, USER_GROUP_CONTENT_TYPE

logger = logging.getLogger(__name__)


def ucfirst(name: str) -> str:
    return name[:1].upper() + name[1:]


class IdentityReconciler:
    """
    Finds or creates accounts and groups in an identity store.

    Args:
        store: Identity store
        options: Converter configuration section (admin_user_id,
            user_group_id)
    """

    REQUIRED_OPTIONS = {
        'admin_user_id': int,
        'user_group_id': int,
    }

    def __init__(self, store: IdentityStore, options: Dict[str, Any]):
        require_options(options, self.REQUIRED_OPTIONS, 'converter')
        self.store = store
        self.admin_user_id = options['admin_user_id']
        self.user_group_id = options['user_group_id']

    def materialize_user(self, user: NormalizedUser) -> IdentityAccount:
        return self.materialize(user.username, user.email, user.attributes, user.groups)

    def materialize(self, username: str, email: str, attributes: Dict[str, Any],
                    group_names: Iterable[str] = ()) -> IdentityAccount:
        """
        Make the identity store reflect one directory user.

        Raises:
            IdentityStoreError: Any store failure, not recovered here
        """
        user_groups = self.resolve_or_create_groups(group_names)

        try:
            account = self.store.load_account_by_username(username)
        except NotFoundError:
            return self._create_account(username, email, attributes, user_groups)

        self.store.run_with_elevated_privilege(
            lambda store: self._sync_memberships(store, account, user_groups)
        )
        return account

    def _sync_memberships(self, store: IdentityStore, account: IdentityAccount,
                          user_groups: Dict[Any, IdentityGroup]) -> None:
        to_assign = dict(user_groups)
        to_unassign = []
        for existing_group in store.load_groups_of_account(account):
            if existing_group.id not in user_groups:
                to_unassign.append(existing_group)
            else:
                to_assign.pop(existing_group.id, None)

        for group in to_assign.values():
            store.assign_account_to_group(account, group)
            security_logger.log_membership_change('assign', account.login, group.id)
        for group in to_unassign:
            store.unassign_account_from_group(account, group)
            security_logger.log_membership_change('unassign', account.login, group.id)

        if to_assign or to_unassign:
            logger.info(f"Updated groups of {account.login}: +{len(to_assign)} -{len(to_unassign)}")

    def _create_account(self, username: str, email: str, attributes: Dict[str, Any],
                        user_groups: Dict[Any, IdentityGroup]) -> IdentityAccount:
        # The directory checks passwords; the local one is never used to log in.
        request = self.store.new_account_create_request(username, email, secrets.token_hex(32))
        for identifier, value in attributes.items():
            request.set_field(identifier, value)
        request.enabled = True
        request.owner_id = self.admin_user_id

        def create(store: IdentityStore) -> IdentityAccount:
            groups = list(user_groups.values())
            if not groups:
                groups = [store.load_group(self.user_group_id)]
            account = store.create_account(request, groups)
            security_logger.log_account_created(account.login, [group.id for group in groups])
            return account

        account = self.store.run_with_elevated_privilege(create)
        logger.info(f"Created account {account.login} (id={account.id})")
        return account

    def resolve_or_create_groups(self, names: Iterable[str]) -> Dict[Any, IdentityGroup]:
        """
        Map group names to store groups, creating the missing ones.

        Names are compared case-insensitively (str.casefold) with existing
        groups. New groups get an upper-cased first letter and are created
        under the default user group.
        """
        names = [name for name in names if name]
        return self.store.run_with_elevated_privilege(lambda store: self._resolve_groups(store, names))

    def _resolve_groups(self, store: IdentityStore, names: List[str]) -> Dict[Any, IdentityGroup]:
        groups = {}
        if not names:
            return groups

        # Index lookups are exact, so also ask for the spelling new groups get.
        candidates = list(dict.fromkeys(names + [ucfirst(name) for name in names]))
        found = [
            store.load_group(content_id)
            for content_id in store.find_content_by_type_and_field_in(USER_GROUP_CONTENT_TYPE, 'name', candidates)
        ]

        # One group per case-folded name: exact spelling, then ucfirst, then any casing.
        missing = []
        seen = set()
        for name in names:
            folded = name.casefold()
            if folded in seen:
                continue
            seen.add(folded)
            group = self._pick_group(found, name)
            if group is None:
                missing.append(name)
            else:
                groups[group.id] = group

        if missing:
            parent_group = store.load_group(self.user_group_id)
            for missing_name in missing:
                request = store.new_group_create_request()
                request.set_field('name', ucfirst(missing_name))
                group = store.create_group(request, parent_group)
                groups[group.id] = group
                security_logger.log_group_created(group.name, group.id)

        return groups

    @staticmethod
    def _pick_group(found: List[IdentityGroup], name: str) -> Optional[IdentityGroup]:
        for wanted in (name, ucfirst(name)):
            for group in found:
                if group.name == wanted:
                    return group
        folded = name.casefold()
        for group in found:
            if group.name.casefold() == folded:
                return group
        return None
