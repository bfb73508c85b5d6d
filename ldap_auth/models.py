"""
Value objects shared by the directory side and the identity store side.

DirectoryEntry wraps a raw search result, NormalizedUser is the transfer
object produced per login, and IdentityAccount / IdentityGroup mirror the
records held by the identity store.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, FrozenSet, Tuple

DEFAULT_ROLE = 'ROLE_USER'


class DirectoryEntry:
    """
    A single directory entry: a DN plus multi-valued attributes.

    Attribute names are matched case-insensitively, as in LDAP.
    """

    def __init__(self, dn: str, attributes: Optional[Dict[str, List[Any]]] = None):
        self.dn = dn
        self._attributes = {}
        for name, values in (attributes or {}).items():
            if values is None:
                values = []
            elif not isinstance(values, (list, tuple)):
                values = [values]
            self._attributes[name.lower()] = (name, list(values))

    def has_attribute(self, name: str) -> bool:
        return name.lower() in self._attributes

    def get_attribute(self, name: str) -> Optional[List[Any]]:
        """Return the list of values for an attribute, or None if absent."""
        item = self._attributes.get(name.lower())
        return list(item[1]) if item else None

    @property
    def attributes(self) -> Dict[str, List[Any]]:
        return {name: list(values) for name, values in self._attributes.values()}

    def __repr__(self):
        return f"DirectoryEntry(dn={self.dn!r})"


@dataclass(frozen=True)
class NormalizedUser:
    """User record built from a directory entry for one login attempt."""

    username: str
    email: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    roles: FrozenSet[str] = frozenset({DEFAULT_ROLE})
    groups: Tuple[str, ...] = ()
    dn: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'attributes', dict(self.attributes))
        object.__setattr__(self, 'roles', frozenset(self.roles) | {DEFAULT_ROLE})
        object.__setattr__(self, 'groups', tuple(self.groups))


@dataclass
class IdentityGroup:
    id: Any
    name: str
    parent_id: Any = None


@dataclass
class IdentityAccount:
    id: Any
    login: str
    email: str = ''
    fields: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    owner_id: Any = None


@dataclass
class AccountCreateRequest:
    """Pending account creation, filled in before create_account()."""

    login: str
    email: str
    password: str
    fields: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    owner_id: Any = None

    def set_field(self, identifier: str, value: Any):
        self.fields[identifier] = value


@dataclass
class GroupCreateRequest:
    fields: Dict[str, Any] = field(default_factory=dict)

    def set_field(self, identifier: str, value: Any):
        self.fields[identifier] = value
