"""
Login service wiring the directory side to the identity store.

This module contains the per-login flow: look the user up in the directory,
verify the password with a bind, then materialize the account and its
group memberships in the identity store.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Any, Optional

from ldap_auth.converter import DirectoryEntryConverter
from ldap_auth.group_resolver import EntryGroupResolver
from ldap_auth.ldap_client import LDAPClient
from ldap_auth.logging_setup import setup_logging
from ldap_auth.models import IdentityAccount, NormalizedUser
from ldap_auth.provider import AuthenticationProvider
from ldap_auth.reconciler import IdentityReconciler
from ldap_auth.stores.base import IdentityStore
from ldap_auth.stores.rest_store import RestIdentityStore

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    user: NormalizedUser
    account: IdentityAccount


class LoginService:
    """
    Runs a complete login against the directory and the identity store.

    Errors are not translated: UserNotFound and BadCredentials come from the
    provider, IdentityStoreError from the reconciler.
    """

    def __init__(self, provider: AuthenticationProvider, reconciler: IdentityReconciler):
        self.provider = provider
        self.reconciler = reconciler

    @classmethod
    def from_config(cls, config: Dict[str, Any], store: Optional[IdentityStore] = None,
                    client: Optional[LDAPClient] = None) -> 'LoginService':
        """
        Build the service from a loaded configuration.

        Args:
            config: Configuration as returned by load_config(); its logging
                section, when present, configures logging once per process
            store: Identity store; a RestIdentityStore is built from the
                identity_store section when omitted
            client: Directory client; built from the ldap section when omitted
        """
        if 'logging' in config:
            setup_logging(config['logging'])

        ldap_config = config['ldap']
        converter_config = config['converter']

        if store is None:
            store = RestIdentityStore(config['identity_store'])
        if client is None:
            client = LDAPClient(ldap_config)

        converter = DirectoryEntryConverter(converter_config, ldap_config.get('default_roles'))
        resolver = EntryGroupResolver(
            client,
            converter,
            ldap_config.get('search_dn'),
            ldap_config.get('search_password'),
        )
        provider = AuthenticationProvider(client, resolver, converter, ldap_config)
        reconciler = IdentityReconciler(store, converter_config)
        return cls(provider, reconciler)

    def login(self, username: str, password: str) -> LoginResult:
        user = self.provider.authenticate(username)
        self.provider.check_credentials(user, password)
        account = self.reconciler.materialize_user(user)
        logger.info(f"User {user.username} logged in with {len(user.groups)} directory groups")
        return LoginResult(user=user, account=account)

    def sync_user(self, username: str) -> LoginResult:
        """Refresh a user's account from the directory without a password check."""
        user = self.provider.authenticate(username)
        account = self.reconciler.materialize_user(user)
        return LoginResult(user=user, account=account)
