""" Directory request models """

from dataclasses import dataclass, field, fields, replace
from typing import Dict, Optional

import ldap3

SCOPES = {
    "base": ldap3.BASE,
    "one": ldap3.LEVEL,
    "sub": ldap3.SUBTREE,
}

OPERATIONS = {
    "add": ldap3.MODIFY_ADD,
    "delete": ldap3.MODIFY_DELETE,
    "replace": ldap3.MODIFY_REPLACE,
}


@dataclass(frozen=True)
class ZombieCredential:
    """Service identity used for health-check binds"""

    username: str = ""
    password: str = ""
    dn: str = ""


@dataclass(frozen=True)
class LdapChange:
    """One operation against one attribute"""

    operation: str
    attribute: str
    values: tuple = field(default_factory=tuple)

    def __post_init__(self):
        if self.operation not in OPERATIONS:
            raise ValueError(
                f"Unknown change operation '{self.operation}', "
                + f"expected one of {sorted(OPERATIONS)}"
            )
        if not self.attribute:
            raise ValueError("A change needs an attribute name")

        values = self.values
        if values is None:
            values = ()
        elif isinstance(values, (str, bytes)) or not isinstance(
            values, (list, tuple)
        ):
            values = (values,)
        object.__setattr__(self, "values", tuple(values))

    def as_ldap3(self) -> tuple:
        """ldap3's (operation, [values]) pair"""
        return (OPERATIONS[self.operation], list(self.values))


@dataclass(frozen=True)
class SearchOptions:
    """Arguments of a single search. Built fresh for every call."""

    filter: str
    attributes: tuple = ()
    scope: str = "sub"
    time_limit: int = 600

    def __post_init__(self):
        if self.scope not in SCOPES:
            raise ValueError(
                f"Unknown search scope '{self.scope}', expected one of {sorted(SCOPES)}"
            )
        object.__setattr__(self, "attributes", tuple(self.attributes or ()))

    @classmethod
    def merge(cls, options: Optional[Dict], **defaults) -> "SearchOptions":
        """Caller options win over defaults. Falsy caller values fall back.

        :raises ValueError: If options holds a key that isn't a search option
        """
        known = {option.name for option in fields(cls)}
        unknown = set(options or {}) - known
        if unknown:
            raise ValueError(
                f"Unknown search options {sorted(unknown)}, "
                + f"expected some of {sorted(known)}"
            )
        base = cls(**{key: value for key, value in defaults.items() if key in known})
        overrides = {key: value for key, value in (options or {}).items() if value}
        return replace(base, **overrides)

    def as_ldap3(self) -> Dict:
        """Keyword arguments for ldap3.Connection.search"""
        return {
            "search_filter": self.filter,
            "search_scope": SCOPES[self.scope],
            "attributes": list(self.attributes) or ldap3.ALL_ATTRIBUTES,
            "time_limit": self.time_limit,
        }
