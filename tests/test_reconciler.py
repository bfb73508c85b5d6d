#!/usr/bin/env python3
"""
Tests for IdentityReconciler against the in-memory identity store.

Covers account creation, membership diffing, idempotence and
case-insensitive group reuse.
"""

import os
import sys
import unittest
from unittest.mock import Mock

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_auth.config import ConfigurationError
from ldap_auth.models import NormalizedUser
from ldap_auth.reconciler import IdentityReconciler, ucfirst
from ldap_auth.stores.base import IdentityStoreError, PermissionDeniedError
from ldap_auth.stores.memory import InMemoryIdentityStore


class ReconcilerTestCase(unittest.TestCase):

    def setUp(self):
        self.store = InMemoryIdentityStore()
        self.users_group = self.store.add_group('Users')
        self.reconciler = IdentityReconciler(self.store, {
            'admin_user_id': 14,
            'user_group_id': self.users_group.id,
        })

    def group_names(self, account):
        return sorted(group.name for group in self.store.load_groups_of_account(account))


class TestMaterialize(ReconcilerTestCase):

    def test_creates_new_account(self):
        account = self.reconciler.materialize(
            'jdoe', 'jdoe@example.com', {'first_name': 'John', 'last_name': 'Doe'}, ['Sales'])

        self.assertEqual(account.login, 'jdoe')
        self.assertEqual(account.email, 'jdoe@example.com')
        self.assertEqual(account.fields, {'first_name': 'John', 'last_name': 'Doe'})
        self.assertTrue(account.enabled)
        self.assertEqual(account.owner_id, 14)
        self.assertEqual(self.group_names(account), ['Sales'])

    def test_new_account_gets_random_password(self):
        first = self.reconciler.materialize('jdoe', 'jdoe@example.com', {}, [])
        second = self.reconciler.materialize('asmith', 'asmith@example.com', {}, [])

        first_password = self.store.password_of(first)
        self.assertGreaterEqual(len(first_password), 32)
        self.assertNotEqual(first_password, self.store.password_of(second))

    def test_no_groups_falls_back_to_default_group(self):
        account = self.reconciler.materialize('jdoe', 'jdoe@example.com', {}, [])

        self.assertEqual(self.group_names(account), ['Users'])

    def test_existing_account_memberships_are_diffed(self):
        group_a = self.store.add_group('A', self.users_group.id)
        group_b = self.store.add_group('B', self.users_group.id)
        existing = self.store.add_account('jdoe', 'old@example.com', [group_a.id, group_b.id])

        account = self.reconciler.materialize('jdoe', 'new@example.com', {}, ['B', 'C'])

        self.assertEqual(account.id, existing.id)
        self.assertEqual(self.group_names(account), ['B', 'C'])
        membership_ops = [op for op in self.store.operations if op[0] in ('assign', 'unassign')]
        group_c = [g for g in self.store.load_groups_of_account(account) if g.name == 'C'][0]
        self.assertEqual(membership_ops, [('assign', 'jdoe', group_c.id), ('unassign', 'jdoe', group_a.id)])

    def test_existing_account_fields_are_not_refreshed(self):
        self.store.add_account('jdoe', 'old@example.com', [self.users_group.id])

        account = self.reconciler.materialize('jdoe', 'new@example.com', {'first_name': 'John'}, [])

        self.assertEqual(account.email, 'old@example.com')
        self.assertEqual(account.fields, {})

    def test_existing_account_with_empty_target_leaves_no_groups(self):
        account = self.store.add_account('jdoe', '', [self.users_group.id])

        self.reconciler.materialize('jdoe', '', {}, [])

        self.assertEqual(self.group_names(account), [])

    def test_materialize_is_idempotent(self):
        user = NormalizedUser('jdoe', 'jdoe@example.com', {'first_name': 'John'}, groups=['Sales', 'staff'])

        first = self.reconciler.materialize_user(user)
        operations_after_first = len(self.store.operations)
        second = self.reconciler.materialize_user(user)

        self.assertEqual(first.id, second.id)
        self.assertEqual(self.group_names(second), ['Sales', 'Staff'])
        self.assertEqual(len(self.store.operations), operations_after_first)

    def test_store_failure_propagates(self):
        store = Mock(wraps=self.store)
        store.create_account = Mock(side_effect=IdentityStoreError('duplicate login'))
        store.run_with_elevated_privilege = lambda fn: fn(store)
        reconciler = IdentityReconciler(store, {'admin_user_id': 14, 'user_group_id': self.users_group.id})

        with self.assertRaises(IdentityStoreError):
            reconciler.materialize('jdoe', 'jdoe@example.com', {}, [])

    def test_mutations_require_elevated_privilege(self):
        with self.assertRaises(PermissionDeniedError):
            self.store.create_group(self.store.new_group_create_request(), self.users_group)

    def test_missing_options(self):
        with self.assertRaises(ConfigurationError):
            IdentityReconciler(self.store, {'admin_user_id': 14})


class TestResolveOrCreateGroups(ReconcilerTestCase):

    def test_reuses_existing_group_case_insensitively(self):
        sales = self.store.add_group('Sales', self.users_group.id)

        groups = self.reconciler.resolve_or_create_groups(['sales'])

        self.assertEqual(list(groups), [sales.id])
        self.assertFalse([op for op in self.store.operations if op[0] == 'create_group'])

    def test_creates_missing_groups_under_default_group(self):
        groups = self.reconciler.resolve_or_create_groups(['marketing', 'Sales'])

        names = sorted(group.name for group in groups.values())
        self.assertEqual(names, ['Marketing', 'Sales'])
        for group in groups.values():
            self.assertEqual(group.parent_id, self.users_group.id)

    def test_found_and_created_are_merged(self):
        sales = self.store.add_group('Sales', self.users_group.id)

        groups = self.reconciler.resolve_or_create_groups(['Sales', 'support'])

        self.assertIn(sales.id, groups)
        self.assertEqual(sorted(g.name for g in groups.values()), ['Sales', 'Support'])

    def test_duplicate_names_create_one_group(self):
        groups = self.reconciler.resolve_or_create_groups(['support', 'Support'])

        self.assertEqual([g.name for g in groups.values()], ['Support'])

    def test_one_group_per_name_when_casings_collide(self):
        lower = self.store.add_group('sales', self.users_group.id)
        self.store.add_group('Sales', self.users_group.id)

        groups = self.reconciler.resolve_or_create_groups(['sales'])

        self.assertEqual(list(groups), [lower.id])

    def test_ucfirst_spelling_used_when_exact_missing(self):
        upper = self.store.add_group('Sales', self.users_group.id)
        self.store.add_group('Support', self.users_group.id)

        groups = self.reconciler.resolve_or_create_groups(['sales'])

        self.assertEqual(list(groups), [upper.id])

    def test_materialize_with_colliding_casings_assigns_one_group(self):
        self.store.add_group('sales', self.users_group.id)
        self.store.add_group('Sales', self.users_group.id)

        account = self.reconciler.materialize('jdoe', '', {}, ['sales'])

        self.assertEqual(self.group_names(account), ['sales'])

    def test_empty_names(self):
        self.assertEqual(self.reconciler.resolve_or_create_groups([]), {})

    def test_ucfirst(self):
        self.assertEqual(ucfirst('sales team'), 'Sales team')
        self.assertEqual(ucfirst('éclair'), 'Éclair')
        self.assertEqual(ucfirst(''), '')


if __name__ == '__main__':
    unittest.main()
