"""
Authentication provider: looks a user up in the directory and builds the
normalized user record.

The sequence for each login is bind, escape, search, resolve groups and
convert. A first failed bind is logged and tolerated; a second failure is
reported to the caller as UserNotFound, so callers cannot distinguish a
directory outage from an unknown user.
"""

import logging
from typing import Dict, Any, Optional

from ldap_auth.converter import DirectoryEntryConverter
from ldap_auth.group_resolver import EntryGroupResolver
from ldap_auth.ldap_client import LDAPClient, LDAPConnectionError, ESCAPE_FILTER
from ldap_auth.logging_setup import security_logger
from ldap_auth.models import DirectoryEntry, NormalizedUser

logger = logging.getLogger(__name__)


class UserNotFound(Exception):
    """Raised when no single directory entry matches a username."""

    def __init__(self, message: str, username: Optional[str] = None, ambiguous: bool = False):
        super().__init__(message)
        self.username = username
        self.ambiguous = ambiguous


class BadCredentials(Exception):
    """Raised when the directory rejects the user's password."""
    pass


class InvalidAttributeError(Exception):
    """Raised when a required unique attribute is missing or multi-valued."""
    pass


class AuthenticationProvider:
    """
    Loads users from the directory.

    Args:
        client: Directory client
        group_resolver: Resolves group DNs of the matched entry
        converter: Builds the NormalizedUser
        config: LDAP configuration section (base_dn, search_dn,
            search_password, uid_key, filter, attributes)
    """

    def __init__(self, client: LDAPClient, group_resolver: EntryGroupResolver,
                 converter: DirectoryEntryConverter, config: Dict[str, Any]):
        self.client = client
        self.group_resolver = group_resolver
        self.converter = converter

        self.base_dn = config['base_dn']
        self.search_dn = config.get('search_dn')
        self.search_password = config.get('search_password')
        self.uid_key = config.get('uid_key', 'sAMAccountName')
        self.password_attribute = config.get('password_attribute')
        self.attributes = config.get('attributes') or ['*']

        search_filter = config.get('filter') or '({uid_key}={username})'
        self.default_search = search_filter.replace('{uid_key}', self.uid_key or '')

    def authenticate(self, username: str) -> NormalizedUser:
        """
        Find the directory entry for a username and convert it.

        Raises:
            UserNotFound: No entry, several entries, or directory unreachable
        """
        try:
            self.client.bind(self.search_dn, self.search_password)
        except LDAPConnectionError as e:
            logger.critical(f"Directory bind failed for {self.search_dn or 'anonymous'}: {e}", exc_info=True)

        # Messages name the user as it went into the filter once escaped.
        escaped = username
        try:
            self.client.bind(self.search_dn, self.search_password)
            escaped = self.client.escape(username, '', ESCAPE_FILTER)
            search_filter = self.default_search.replace('{username}', escaped)
            entries = self.client.query(self.base_dn, search_filter, self.attributes).execute()
        except LDAPConnectionError as e:
            security_logger.log_authentication_attempt('ldap', username, False)
            raise UserNotFound(f'User "{escaped}" not found.', username) from e

        count = len(entries)

        if not count:
            security_logger.log_authentication_attempt('ldap', username, False)
            raise UserNotFound(f'User "{escaped}" not found.', username)

        if count > 1:
            security_logger.log_authentication_attempt('ldap', username, False)
            raise UserNotFound('More than one user found', username, ambiguous=True)

        entry = entries[0]
        if self.uid_key is not None:
            try:
                username = self._get_attribute_value(entry, self.uid_key)
            except InvalidAttributeError as e:
                logger.warning(str(e))

        return self._load_user(username, entry)

    def check_credentials(self, user: NormalizedUser, password: str) -> None:
        """
        Verify a password by binding as the user's own entry.

        Raises:
            BadCredentials: Empty password, unknown DN or rejected bind
        """
        if not password:
            security_logger.log_credential_check(user.username, False)
            raise BadCredentials("The presented password must not be empty.")
        if not user.dn:
            security_logger.log_credential_check(user.username, False)
            raise BadCredentials(f'No directory entry known for user "{user.username}".')

        try:
            self.client.bind(user.dn, password)
        except LDAPConnectionError as e:
            security_logger.log_credential_check(user.username, False)
            raise BadCredentials("The presented password is invalid.") from e
        finally:
            self._rebind_service_account()

        security_logger.log_credential_check(user.username, True)

    def supports(self, user: Any) -> bool:
        return isinstance(user, NormalizedUser)

    def _rebind_service_account(self):
        try:
            self.client.bind(self.search_dn, self.search_password)
        except LDAPConnectionError as e:
            logger.warning(f"Could not re-bind service account after credential check: {e}")

    @staticmethod
    def _get_attribute_value(entry: DirectoryEntry, attribute: str) -> str:
        """Fetch a required unique attribute value from an entry."""
        values = entry.get_attribute(attribute)
        if not values:
            raise InvalidAttributeError(f'Missing attribute "{attribute}" for user "{entry.dn}".')
        if len(values) != 1:
            raise InvalidAttributeError(f'Attribute "{attribute}" has multiple values.')
        return str(values[0])

    def _load_user(self, username: str, entry: DirectoryEntry) -> NormalizedUser:
        groups = self.group_resolver.resolve_groups(entry)
        user = self.converter.convert(username, entry, groups)
        security_logger.log_authentication_attempt('ldap', user.username, True)
        return user
