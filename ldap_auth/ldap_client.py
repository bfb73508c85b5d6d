"""
LDAP client for binding to and querying a directory.

This module is a thin adapter over ldap3 exposing the three primitives the
authentication pipeline needs: bind, escape and query.
"""

import logging
import ssl
from typing import Dict, List, Any, Optional
from ldap3 import Server, Connection, SUBTREE, BASE, LEVEL, Tls
from ldap3.core.exceptions import LDAPException, LDAPSocketOpenError, LDAPBindError
from ldap3.utils.conv import escape_filter_chars
from ldap3.utils.dn import escape_rdn

from ldap_auth.models import DirectoryEntry

logger = logging.getLogger(__name__)

ESCAPE_FILTER = 'filter'
ESCAPE_DN = 'dn'

SCOPES = {
    'base': BASE,
    'one': LEVEL,
    'sub': SUBTREE,
}


class LDAPConnectionError(Exception):
    """Raised when the directory cannot be reached or the bind is rejected."""
    pass


class LDAPQueryError(Exception):
    """Raised when LDAP query fails."""
    pass


class LDAPQuery:
    """A prepared search, run with execute()."""

    def __init__(self, client: 'LDAPClient', base_dn: str, search_filter: str,
                 attributes: Optional[List[str]] = None, scope: str = 'sub'):
        self.client = client
        self.base_dn = base_dn
        self.search_filter = search_filter
        self.attributes = attributes or ['*']
        self.scope = scope

    def execute(self) -> List[DirectoryEntry]:
        return self.client._search(self.base_dn, self.search_filter, self.attributes, self.scope)

    def __repr__(self):
        return f"LDAPQuery(base_dn={self.base_dn!r}, filter={self.search_filter!r})"


class LDAPClient:
    """
    Directory client used by the authentication provider.

    A bind opens a fresh connection; searches run on the last bound
    connection.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize LDAP client with configuration.

        Args:
            config: LDAP configuration dictionary
        """
        self.config = config
        self.server_url = config['server_url']

        # SSL/TLS configuration
        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')
        self.cert_file = config.get('cert_file')
        self.key_file = config.get('key_file')

        # Connection settings
        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)

        self.server = None
        self.connection = None
        self.bound_dn = None

    def _get_server(self) -> Server:
        if self.server is not None:
            return self.server

        try:
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                connect_timeout=self.connection_timeout
            )
            logger.debug(f"Created LDAP server object for {self.server_url} (SSL: {self.use_ssl}, StartTLS: {self.start_tls})")
        except LDAPConnectionError:
            raise
        except Exception as e:
            raise LDAPConnectionError(f"Failed to create LDAP server: {e}") from e
        return self.server

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for LDAP connection.

        Returns:
            Tls configuration object or None if not needed
        """
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {}

        if not self.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file
            logger.debug(f"Using CA certificate file: {self.ca_cert_file}")

        # Client certificate for mutual TLS
        if self.cert_file and self.key_file:
            tls_config['local_certificate_file'] = self.cert_file
            tls_config['local_private_key_file'] = self.key_file
            logger.debug("Client certificate configured for mutual TLS")

        try:
            return Tls(**tls_config)
        except Exception as e:
            raise LDAPConnectionError(f"Failed to create TLS configuration: {e}") from e

    def bind(self, dn: Optional[str] = None, password: Optional[str] = None) -> None:
        """
        Bind to the directory, replacing any previous connection.

        Args:
            dn: Bind DN (anonymous bind if None)
            password: Bind password

        Raises:
            LDAPConnectionError: If the server is unreachable or rejects the bind
        """
        self.disconnect()
        server = self._get_server()

        connection = Connection(
            server,
            user=dn,
            password=password,
            auto_bind=False,
            receive_timeout=self.receive_timeout
        )
        try:
            # open() returns nothing; an unreachable server raises LDAPSocketOpenError
            connection.open()

            if self.start_tls and not self.use_ssl:
                if not connection.start_tls():
                    raise LDAPConnectionError(f"Failed to start TLS: {connection.result}")
                logger.debug("StartTLS negotiation successful")

            if not connection.bind():
                raise LDAPBindError(f"Bind failed: {connection.result}")
        except LDAPConnectionError:
            self._safe_unbind(connection)
            raise
        except (LDAPSocketOpenError, LDAPBindError) as e:
            self._safe_unbind(connection)
            raise LDAPConnectionError(str(e)) from e
        except LDAPException as e:
            self._safe_unbind(connection)
            raise LDAPConnectionError(f"LDAP error during bind: {e}") from e

        self.connection = connection
        self.bound_dn = dn
        logger.debug(f"Bound to {self.server_url} as {dn or 'anonymous'}")

    def escape(self, value: str, ignore: str = '', context: str = ESCAPE_FILTER) -> str:
        """
        Escape a value for use in a search filter or a DN.

        Args:
            value: Raw value
            ignore: Characters to leave untouched
            context: ESCAPE_FILTER or ESCAPE_DN
        """
        if context == ESCAPE_DN:
            escape_func = escape_rdn
        elif context == ESCAPE_FILTER:
            escape_func = escape_filter_chars
        else:
            raise ValueError(f"Unknown escape context: {context}")

        if not ignore:
            return escape_func(value)
        return ''.join(char if char in ignore else escape_func(char) for char in value)

    def query(self, base_dn: str, search_filter: str, attributes: Optional[List[str]] = None,
              scope: str = 'sub') -> LDAPQuery:
        """
        Prepare a search below base_dn.

        Args:
            base_dn: Search base
            search_filter: LDAP filter string (already escaped)
            attributes: Attributes to request, all user attributes when None
            scope: 'base', 'one' or 'sub'
        """
        if scope not in SCOPES:
            raise LDAPQueryError(f"Unknown search scope: {scope}")
        return LDAPQuery(self, base_dn, search_filter, attributes, scope)

    def _search(self, base_dn: str, search_filter: str, attributes: List[str],
                scope: str) -> List[DirectoryEntry]:
        if self.connection is None:
            raise LDAPQueryError("Not bound to LDAP server")

        logger.debug(f"Searching with filter: {search_filter} in base: {base_dn}")
        try:
            success = self.connection.search(
                search_base=base_dn,
                search_filter=search_filter,
                search_scope=SCOPES[scope],
                attributes=attributes
            )
        except LDAPSocketOpenError as e:
            raise LDAPConnectionError(f"Connection lost during search: {e}") from e
        except LDAPException as e:
            raise LDAPQueryError(f"LDAP query failed: {e}") from e

        if not success:
            description = (self.connection.result or {}).get('description')
            if description in ('success', 'noSuchObject'):
                return []
            raise LDAPQueryError(f"Search failed: {self.connection.result}")

        entries = []
        for entry in self.connection.entries:
            entries.append(DirectoryEntry(str(entry.entry_dn), entry.entry_attributes_as_dict))

        logger.debug(f"Search returned {len(entries)} entries")
        return entries

    @staticmethod
    def _safe_unbind(connection):
        try:
            connection.unbind()
        except Exception as e:
            logger.debug(f"Ignoring error while closing LDAP connection: {e}")

    def disconnect(self):
        """Close LDAP connection."""
        if self.connection:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except Exception as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self.connection = None
                self.bound_dn = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
