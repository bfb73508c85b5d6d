"""
Resolution of group DNs found on a user entry into group names.
"""

import logging
from typing import List, Optional

from ldap3.core.exceptions import LDAPInvalidDnError
from ldap3.utils.dn import parse_dn

from ldap_auth.converter import DirectoryEntryConverter, GROUP_NAME_ATTR
from ldap_auth.ldap_client import LDAPClient, LDAPConnectionError, LDAPQueryError
from ldap_auth.models import DirectoryEntry

logger = logging.getLogger(__name__)


class EntryGroupResolver:
    """
    Turns the membership attribute of an entry into a list of group names.

    When the leading RDN of a group DN already uses the group name attribute
    (e.g. ``cn=Sales,ou=groups,...`` with ``group_name_attr: cn``) the name is
    taken from the DN. Otherwise the group entry is read from the directory.
    Groups that cannot be resolved are skipped.
    """

    def __init__(self, client: LDAPClient, converter: DirectoryEntryConverter,
                 search_dn: Optional[str] = None, search_password: Optional[str] = None):
        self.client = client
        self.converter = converter
        self.search_dn = search_dn
        self.search_password = search_password

    def resolve_groups(self, entry: DirectoryEntry) -> List[str]:
        groups = []
        for group_dn in self.converter.get_entry_groups(entry):
            group_name = self.get_group_name_by_dn(group_dn)
            if group_name is not None:
                groups.append(group_name)
        logger.debug(f"Resolved {len(groups)} groups for {entry.dn}")
        return groups

    def get_group_name_by_dn(self, group_dn: str) -> Optional[str]:
        group_name_attr = self.converter.get_option(GROUP_NAME_ATTR)
        if group_name_attr is None:
            return None

        try:
            attribute_name, attribute_value, _ = parse_dn(group_dn)[0]
        except (LDAPInvalidDnError, IndexError) as e:
            logger.warning(f"Skipping malformed group DN {group_dn!r}: {e}")
            return None

        if attribute_name.lower() == group_name_attr.lower():
            return attribute_value

        try:
            self.client.bind(self.search_dn, self.search_password)
            entries = self.client.query(group_dn, f"({group_name_attr}=*)", [group_name_attr]).execute()
        except (LDAPConnectionError, LDAPQueryError) as e:
            logger.debug(f"Could not read group {group_dn}: {e}")
            return None

        if not entries:
            return None

        values = entries[0].get_attribute(group_name_attr)
        if not values:
            return None
        return str(values[0])
