"""
LDAP Auth Sync - Authenticate users against LDAP and synchronize them into an identity store.

This package looks users up in an LDAP directory, resolves their group
memberships to names, and creates or updates the matching account and
groups in the application's identity store on every login.
"""

__version__ = "1.0.0"
__author__ = "LDAP Auth Sync Team"
