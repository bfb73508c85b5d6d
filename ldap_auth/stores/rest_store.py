"""
Identity store backed by an application's JSON REST API.

Regular calls use the configured ``auth`` credentials. Calls made inside
run_with_elevated_privilege() go through a second client authenticated with
``elevated_auth`` (an administrator account or token).
"""

import json
import ssl
import base64
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from urllib.parse import urlparse, urljoin, urlencode, quote
from http.client import HTTPSConnection, HTTPConnection

from ldap_auth.models import IdentityAccount, IdentityGroup, AccountCreateRequest, GroupCreateRequest
from .base import IdentityStore, IdentityStoreError, NotFoundError, PermissionDeniedError

logger = logging.getLogger(__name__)


class RestIdentityStore(IdentityStore):
    """
    REST client for the identity store.

    Args:
        config: identity_store configuration section (base_url, auth,
            elevated_auth, verify_ssl, ca_cert_file, timeout)
    """

    def __init__(self, config: Dict[str, Any], auth_config: Optional[Dict[str, Any]] = None):
        self.config = config
        self.base_url = config['base_url']
        self.auth_config = auth_config if auth_config is not None else (config.get('auth') or {})
        self.verify_ssl = config.get('verify_ssl', True)
        self.timeout = config.get('timeout', 30)

        self.parsed_url = urlparse(self.base_url)
        self.host = self.parsed_url.netloc
        self.base_path = self.parsed_url.path.rstrip('/')

        self.connection = None
        self.ssl_context = None
        self.auth_headers = {}

        self._setup_ssl_context()
        self._setup_authentication()

    def _setup_ssl_context(self):
        """Set up SSL context based on configuration."""
        if self.parsed_url.scheme != 'https':
            return

        if not self.verify_ssl:
            self.ssl_context = ssl._create_unverified_context()
            logger.warning(f"SSL verification disabled for identity store {self.host}")
            return

        self.ssl_context = ssl.create_default_context()
        ca_cert_file = self.config.get('ca_cert_file')
        if ca_cert_file:
            try:
                self.ssl_context.load_verify_locations(cafile=ca_cert_file)
            except (OSError, ssl.SSLError) as e:
                raise IdentityStoreError(f"Failed to load CA certificates {ca_cert_file}: {e}") from e
            logger.info(f"Loaded CA certificates: {ca_cert_file}")

    def _setup_authentication(self):
        """Set up authentication headers based on configuration."""
        auth_method = self.auth_config.get('method', '').lower()

        if auth_method == 'basic':
            username = self.auth_config.get('username')
            password = self.auth_config.get('password')
            if username and password:
                credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
                self.auth_headers['Authorization'] = f"Basic {credentials}"
            else:
                logger.error("Basic auth configured but missing username or password for identity store")

        elif auth_method in ('token', 'bearer'):
            token = self.auth_config.get('token')
            if token:
                self.auth_headers['Authorization'] = f"Bearer {token}"
            else:
                logger.error("Token auth configured but missing token for identity store")

        elif auth_method:
            logger.warning(f"Unknown authentication method '{auth_method}' for identity store")

    def _get_connection(self) -> Union[HTTPSConnection, HTTPConnection]:
        if self.connection:
            return self.connection

        if self.parsed_url.scheme == 'https':
            self.connection = HTTPSConnection(self.host, context=self.ssl_context, timeout=self.timeout)
        else:
            self.connection = HTTPConnection(self.host, timeout=self.timeout)
        return self.connection

    def request(self, method: str, path: str, body: Optional[Dict] = None) -> Dict[str, Any]:
        """
        Make an HTTP request to the identity store API.

        Raises:
            NotFoundError: HTTP 404
            PermissionDeniedError: HTTP 401 or 403
            IdentityStoreError: Any other failure
        """
        full_path = urljoin(self.base_path + '/', path.lstrip('/'))

        headers = dict(self.auth_headers)
        headers['Accept'] = 'application/json'
        request_body = None
        if body is not None:
            request_body = json.dumps(body)
            headers['Content-Type'] = 'application/json'

        try:
            conn = self._get_connection()
            logger.debug(f"Making {method} request to {self.host}{full_path}")
            conn.request(method, full_path, request_body, headers)
            response = conn.getresponse()
            response_data = response.read().decode('utf-8')
        except (ConnectionError, OSError) as e:
            self.close_connection()
            raise IdentityStoreError(f"Connection error to identity store: {e}") from e

        logger.debug(f"Response status: {response.status} {response.reason}")

        if response.status == 404:
            raise NotFoundError(f"{method} {full_path}: not found")
        if response.status in (401, 403):
            raise PermissionDeniedError(f"{method} {full_path}: HTTP {response.status} {response.reason}")
        if response.status >= 400:
            raise IdentityStoreError(f"{method} {full_path}: HTTP {response.status} {response.reason}")

        try:
            return json.loads(response_data) if response_data else {}
        except json.JSONDecodeError as e:
            raise IdentityStoreError(f"Invalid JSON response from identity store: {e}") from e

    def close_connection(self):
        if self.connection:
            try:
                self.connection.close()
            except Exception as e:
                logger.warning(f"Error closing identity store connection: {e}")
            finally:
                self.connection = None

    @staticmethod
    def _to_account(data: Dict[str, Any]) -> IdentityAccount:
        return IdentityAccount(
            id=data['id'],
            login=data.get('login', ''),
            email=data.get('email', ''),
            fields=data.get('fields') or {},
            enabled=data.get('enabled', True),
            owner_id=data.get('owner_id'),
        )

    @staticmethod
    def _to_group(data: Dict[str, Any]) -> IdentityGroup:
        return IdentityGroup(id=data['id'], name=data.get('name', ''), parent_id=data.get('parent_id'))

    # IdentityStore interface

    def load_account_by_username(self, username: str) -> IdentityAccount:
        response = self.request('GET', '/users?' + urlencode({'login': username}))
        users = response.get('users', [])
        if not users:
            raise NotFoundError(f"No account with login {username!r}")
        return self._to_account(users[0])

    def load_groups_of_account(self, account: IdentityAccount) -> List[IdentityGroup]:
        response = self.request('GET', f"/users/{quote(str(account.id))}/groups")
        return [self._to_group(group) for group in response.get('groups', [])]

    def assign_account_to_group(self, account: IdentityAccount, group: IdentityGroup) -> None:
        self.request('PUT', f"/users/{quote(str(account.id))}/groups/{quote(str(group.id))}")

    def unassign_account_from_group(self, account: IdentityAccount, group: IdentityGroup) -> None:
        self.request('DELETE', f"/users/{quote(str(account.id))}/groups/{quote(str(group.id))}")

    def create_account(self, request: AccountCreateRequest, groups: Iterable[IdentityGroup]) -> IdentityAccount:
        body = {
            'login': request.login,
            'email': request.email,
            'password': request.password,
            'fields': request.fields,
            'enabled': request.enabled,
            'owner_id': request.owner_id,
            'group_ids': [group.id for group in groups],
        }
        return self._to_account(self.request('POST', '/users', body))

    def load_group(self, group_id: Any) -> IdentityGroup:
        return self._to_group(self.request('GET', f"/groups/{quote(str(group_id))}"))

    def create_group(self, request: GroupCreateRequest, parent: IdentityGroup) -> IdentityGroup:
        body = {
            'name': request.fields.get('name'),
            'parent_id': parent.id,
            'fields': request.fields,
        }
        return self._to_group(self.request('POST', '/groups', body))

    def find_content_by_type_and_field_in(self, content_type: str, field: str,
                                          values: Iterable[Any]) -> List[Any]:
        values = list(values)
        if not values:
            return []
        query = urlencode({'type': content_type, 'field': field, 'value': values}, doseq=True)
        response = self.request('GET', f"/content?{query}")
        return list(response.get('ids', []))

    def run_with_elevated_privilege(self, fn: Callable[[IdentityStore], Any]) -> Any:
        elevated_auth = self.config.get('elevated_auth')
        if not elevated_auth:
            logger.debug("No elevated_auth configured, using regular credentials for elevated calls")
            return fn(self)

        elevated = RestIdentityStore(self.config, auth_config=elevated_auth)
        try:
            return fn(elevated)
        finally:
            elevated.close_connection()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close_connection()
