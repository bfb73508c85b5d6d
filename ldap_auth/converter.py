"""
Conversion of directory entries into normalized user records.
"""

import logging
from typing import Dict, List, Any, Optional, Iterable

from ldap_auth.config import ConfigurationError, require_options
from ldap_auth.models import DirectoryEntry, NormalizedUser, DEFAULT_ROLE

logger = logging.getLogger(__name__)

EMAIL_ATTR_OPTION = 'email_attr'
ATTRIBUTES_OPTION = 'attributes'
ADMIN_USER_ID_OPTION = 'admin_user_id'
USER_GROUP_ID_OPTION = 'user_group_id'
USER_GROUP_ATTR = 'user_group_attr'
GROUP_NAME_ATTR = 'group_name_attr'


class DirectoryEntryConverter:
    """
    Maps a directory entry and its resolved group names to a NormalizedUser.

    Also owns the converter options shared with the group resolver and the
    identity reconciler (email attribute, attribute map, admin and default
    group ids, group attributes).
    """

    REQUIRED_OPTIONS = {
        EMAIL_ATTR_OPTION: str,
        ADMIN_USER_ID_OPTION: int,
        USER_GROUP_ID_OPTION: int,
    }

    def __init__(self, options: Dict[str, Any], default_roles: Optional[Iterable[str]] = None):
        """
        Args:
            options: Converter configuration section
            default_roles: Extra roles granted to every user besides ROLE_USER

        Raises:
            ConfigurationError: If a required option is missing or mistyped
        """
        require_options(options, self.REQUIRED_OPTIONS, 'converter')

        attributes_map = options.get(ATTRIBUTES_OPTION) or {}
        if not isinstance(attributes_map, dict):
            raise ConfigurationError("Option converter.attributes must be a mapping")

        self.options = {
            ATTRIBUTES_OPTION: dict(attributes_map),
            USER_GROUP_ATTR: options.get(USER_GROUP_ATTR),
            GROUP_NAME_ATTR: options.get(GROUP_NAME_ATTR),
            EMAIL_ATTR_OPTION: options[EMAIL_ATTR_OPTION],
            ADMIN_USER_ID_OPTION: options[ADMIN_USER_ID_OPTION],
            USER_GROUP_ID_OPTION: options[USER_GROUP_ID_OPTION],
        }
        self.roles = frozenset([DEFAULT_ROLE, *(default_roles or [])])

    def get_option(self, name: str, default: Any = None) -> Any:
        value = self.options.get(name)
        return default if value is None else value

    def get_entry_groups(self, entry: DirectoryEntry) -> List[str]:
        """Return the group DNs listed in the membership attribute, if any."""
        group_attr = self.options[USER_GROUP_ATTR]
        if not group_attr:
            return []
        return entry.get_attribute(group_attr) or []

    def convert(self, username: str, entry: DirectoryEntry, groups: Optional[List[str]] = None) -> NormalizedUser:
        attributes = {}
        for identifier, ldap_attr in self.options[ATTRIBUTES_OPTION].items():
            attributes[identifier] = self.get_entry_attribute(entry, ldap_attr)

        email = self.get_entry_attribute(entry, self.options[EMAIL_ATTR_OPTION])
        email = '' if email is None else str(email)

        logger.debug(f"Converted entry {entry.dn} to user {username} with {len(groups or [])} groups")
        return NormalizedUser(
            username=username,
            email=email,
            attributes=attributes,
            roles=self.roles,
            groups=tuple(groups or ()),
            dn=entry.dn,
        )

    @staticmethod
    def get_entry_attribute(entry: DirectoryEntry, attribute: str) -> Any:
        """Single values are unwrapped; multiple values stay a list; absent is None."""
        values = entry.get_attribute(attribute)
        if values is not None and len(values) == 1:
            return values[0]
        return values
