#!/usr/bin/env python3
"""
Integration tests for LoginService.

Runs the complete login flow with a mocked directory client and the
in-memory identity store.
"""

import os
import sys
import unittest
from unittest.mock import Mock, patch

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap3.utils.conv import escape_filter_chars

from ldap_auth.ldap_client import LDAPClient, LDAPConnectionError, ESCAPE_FILTER
from ldap_auth.models import DirectoryEntry
from ldap_auth.provider import UserNotFound, BadCredentials
from ldap_auth.service import LoginService
from ldap_auth.stores.memory import InMemoryIdentityStore
from ldap_auth.stores.rest_store import RestIdentityStore

USER_DN = 'cn=John Doe,ou=users,dc=example,dc=com'


class TestLoginService(unittest.TestCase):

    def setUp(self):
        self.store = InMemoryIdentityStore()
        self.users_group = self.store.add_group('Users')
        self.config = {
            'ldap': {
                'server_url': 'ldaps://ldap.example.com',
                'base_dn': 'ou=users,dc=example,dc=com',
                'search_dn': 'cn=svc,dc=example,dc=com',
                'search_password': 'secret',
                'default_roles': ['ROLE_LDAP'],
                'uid_key': 'sAMAccountName',
                'filter': '({uid_key}={username})',
                'attributes': ['*'],
            },
            'converter': {
                'email_attr': 'mail',
                'admin_user_id': 14,
                'user_group_id': self.users_group.id,
                'attributes': {'first_name': 'givenName'},
                'user_group_attr': 'memberOf',
                'group_name_attr': 'cn',
            },
        }
        self.client = Mock(spec=LDAPClient)
        self.client.escape.side_effect = lambda value, ignore='', context=ESCAPE_FILTER: escape_filter_chars(value)
        self.entry = DirectoryEntry(USER_DN, {
            'sAMAccountName': ['jdoe'],
            'mail': ['jdoe@example.com'],
            'givenName': ['John'],
            'memberOf': ['cn=sales,ou=groups,dc=example,dc=com', 'cn=Support,ou=groups,dc=example,dc=com'],
        })
        self.client.query.return_value.execute.return_value = [self.entry]
        self.service = LoginService.from_config(self.config, store=self.store, client=self.client)

    def test_login_creates_account_and_groups(self):
        result = self.service.login('jdoe', 'userpass')

        self.assertEqual(result.user.username, 'jdoe')
        self.assertIn('ROLE_LDAP', result.user.roles)
        self.assertEqual(result.account.login, 'jdoe')
        self.assertEqual(result.account.fields, {'first_name': 'John'})
        groups = sorted(g.name for g in self.store.load_groups_of_account(result.account))
        self.assertEqual(groups, ['Sales', 'Support'])
        self.client.bind.assert_any_call(USER_DN, 'userpass')

    def test_second_login_updates_memberships(self):
        self.service.login('jdoe', 'userpass')
        self.entry = DirectoryEntry(USER_DN, {
            'sAMAccountName': ['jdoe'],
            'mail': ['jdoe@example.com'],
            'memberOf': ['cn=Support,ou=groups,dc=example,dc=com', 'cn=Admins,ou=groups,dc=example,dc=com'],
        })
        self.client.query.return_value.execute.return_value = [self.entry]

        result = self.service.login('jdoe', 'userpass')

        groups = sorted(g.name for g in self.store.load_groups_of_account(result.account))
        self.assertEqual(groups, ['Admins', 'Support'])

    def test_bad_password_does_not_touch_store(self):
        def bind(dn, password):
            if dn == USER_DN:
                raise LDAPConnectionError('invalidCredentials')

        self.client.bind.side_effect = bind

        with self.assertRaises(BadCredentials):
            self.service.login('jdoe', 'wrong')

        self.assertEqual(self.store.operations, [])

    def test_unknown_user(self):
        self.client.query.return_value.execute.return_value = []

        with self.assertRaises(UserNotFound):
            self.service.login('ghost', 'whatever')

    def test_sync_user_without_password(self):
        result = self.service.sync_user('jdoe')

        self.assertEqual(result.account.login, 'jdoe')
        for call_args in self.client.bind.call_args_list:
            self.assertNotEqual(call_args.args[0], USER_DN)

    @patch('ldap_auth.service.LDAPClient')
    def test_from_config_builds_rest_store(self, mock_client_class):
        self.config['identity_store'] = {'base_url': 'https://cms.example.com/api'}

        service = LoginService.from_config(self.config)

        self.assertIsInstance(service.reconciler.store, RestIdentityStore)
        mock_client_class.assert_called_once_with(self.config['ldap'])

    @patch('ldap_auth.service.setup_logging')
    def test_from_config_applies_logging_section(self, mock_setup_logging):
        self.config['logging'] = {'level': 'DEBUG', 'console_output': False}

        LoginService.from_config(self.config, store=self.store, client=self.client)

        mock_setup_logging.assert_called_once_with(self.config['logging'])

    @patch('ldap_auth.service.setup_logging')
    def test_from_config_without_logging_section(self, mock_setup_logging):
        LoginService.from_config(self.config, store=self.store, client=self.client)

        mock_setup_logging.assert_not_called()


if __name__ == '__main__':
    unittest.main()
