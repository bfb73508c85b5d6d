#!/usr/bin/env python3
"""
Validation script for LDAP Auth Sync.

This script validates that all dependencies are installed correctly
and that the core modules import and work together.
"""

import sys
import importlib


def check_dependency(package_name, import_name=None):
    """Check if a package/module can be imported."""
    if import_name is None:
        import_name = package_name

    try:
        importlib.import_module(import_name)
        return True, f"✓ {package_name} available"
    except ImportError as e:
        return False, f"✗ {package_name} missing: {e}"


def validate_dependencies():
    """Validate all required dependencies."""
    print("=== Dependency Validation ===")

    dependencies = [
        ("ldap3", "ldap3"),
        ("PyYAML", "yaml"),
        ("pytest", "pytest"),
        ("pytest-mock", "pytest_mock"),
    ]

    all_ok = True
    for pkg_name, import_name in dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_core_modules():
    """Validate core application modules."""
    print("\n=== Core Module Validation ===")

    modules = [
        "ldap_auth.config",
        "ldap_auth.ldap_client",
        "ldap_auth.group_resolver",
        "ldap_auth.converter",
        "ldap_auth.provider",
        "ldap_auth.reconciler",
        "ldap_auth.service",
        "ldap_auth.stores.memory",
        "ldap_auth.stores.rest_store",
    ]

    all_ok = True
    for module in modules:
        ok, message = check_dependency(module, module)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_functionality():
    """Run a group reconciliation against the in-memory store."""
    print("\n=== Functionality Validation ===")

    try:
        from ldap_auth.stores.memory import InMemoryIdentityStore
        from ldap_auth.reconciler import IdentityReconciler

        store = InMemoryIdentityStore()
        default_group = store.add_group('Users')
        reconciler = IdentityReconciler(store, {'admin_user_id': 14, 'user_group_id': default_group.id})
        account = reconciler.materialize('jdoe', 'jdoe@example.com', {}, ['sales'])
        groups = [group.name for group in store.load_groups_of_account(account)]
        if groups != ['Sales']:
            print(f"  ✗ Unexpected groups after reconciliation: {groups}")
            return False
        print("  ✓ Account and group reconciliation")
        return True

    except Exception as e:
        print(f"  ✗ Functionality test failed: {e}")
        return False


def main():
    """Run all validations."""
    print("LDAP Auth Sync - Installation Validation")
    print("=" * 50)

    all_validations = [
        validate_dependencies(),
        validate_core_modules(),
        validate_functionality(),
    ]

    print("\n=== Summary ===")
    if all(all_validations):
        print("✓ All validations passed")
        return 0
    print("✗ Some validations failed")
    return 1


if __name__ == "__main__":
    sys.exit(main())
