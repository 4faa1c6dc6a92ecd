"""Adapter for NetIQ eDirectory / NDS"""

from collections.abc import Mapping
import re
from typing import Dict, Optional

from . import DirectoryClient, NotFoundError, filters
from .models import ZombieCredential
from .values import EDirectoryValueCoercer

# Input aliases accepted by modify_user, in order of preference
FIELD_ALIASES = {
    "cn": ("cn", "username"),
    "givenName": ("givenName", "firstname", "firstName", "first"),
    "mail": ("mail", "email"),
    "sn": ("sn", "lastname", "lastName", "last"),
    "userPassword": ("userPassword", "password"),
}

_UNESCAPED_COMMA = re.compile(r"(?<!\\),")


def _parent_dn(dn: str) -> str:
    parts = _UNESCAPED_COMMA.split(dn, maxsplit=1)
    return parts[1] if len(parts) > 1 else ""


def _is_dn(value: str) -> bool:
    """An attr=value RDN followed by at least one parent component"""
    parts = _UNESCAPED_COMMA.split(value, maxsplit=1)
    return len(parts) == 2 and "=" in parts[0] and "=" in parts[1]


def normalize_user_fields(attributes: Dict):
    """Resolve aliases in a modify_user request

    Returns the new common name (or None) and the attributes to replace.
    ``uid`` follows the new common name unless given explicitly, and fields
    that resolve to None are dropped.
    """
    attributes = dict(attributes or {})
    resolved = {}
    for canonical, aliases in FIELD_ALIASES.items():
        candidates = [attributes.pop(alias, None) for alias in aliases]
        resolved[canonical] = next((value for value in candidates if value), None)

    new_cn = resolved.pop("cn")
    attributes["uid"] = attributes.get("uid") or new_cn
    attributes.update(resolved)

    return new_cn, {
        key: value for key, value in attributes.items() if value is not None
    }


class EDirectoryAdapter(DirectoryClient):
    """eDirectory flavour: cn based DNs and the NDS user object classes

    An example config would be::

        directory:
          module: EDirectory
          url: ldaps://edir.example.org
          base_dn: "ou=users,o=example"
          zombie_username: healthcheck
          zombie_password: ${ZOMBIE_PASSWORD}
          zombie_dn: "ou=services,o=example"

    """

    name = "lderp-edir"
    optional_fields = DirectoryClient.optional_fields | {"zombie_dn"}
    coercer_class = EDirectoryValueCoercer
    object_class = [
        "inetOrgPerson",
        "organizationalPerson",
        "Person",
        "ndsLoginProperties",
        "Top",
    ]

    @property
    def zombie(self) -> ZombieCredential:
        return ZombieCredential(
            username=self.config["zombie_username"],
            password=self.config["zombie_password"],
            dn=self.config.get("zombie_dn") or self.base_dn,
        )

    def bind_as_zombie(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        dn: Optional[str] = None,
    ):
        """Bind as the configured zombie, or as the given one"""
        zombie = self.zombie
        return self.bind_as_user(
            self.build_dn(username or zombie.username, dn or zombie.dn),
            password or zombie.password,
        )

    def build_dn(self, identifier: str, base_dn: Optional[str] = None) -> str:
        return f"cn={identifier},{base_dn or self.base_dn}"

    def build_user_entry(self, attributes: Dict) -> Dict:
        entry = dict(attributes)
        entry["objectClass"] = list(self.object_class)
        entry["uid"] = entry.get("cn")
        return entry

    def create_user(self, dn, attributes: Optional[Dict] = None) -> Dict:
        """Add a user. dn may be a full DN, a bare common name, or left out

        ``create_user({"cn": "jdoe", ...})`` places the entry under base_dn.
        """
        if attributes is None and isinstance(dn, Mapping):
            dn, attributes = None, dn
        attributes = dict(attributes or {})
        if not dn:
            dn = attributes.get("cn")
        return super().create_user(self._resolve_dn(dn), attributes)

    def delete_user(self, dn: str) -> Dict:
        """Delete a user by DN or by bare common name"""
        return super().delete_user(self._resolve_dn(dn))

    def _resolve_dn(self, dn_or_cn: str) -> str:
        if not dn_or_cn:
            raise ValueError("A DN or common name is required")
        if _is_dn(dn_or_cn):
            return dn_or_cn
        return self.build_dn(dn_or_cn)

    def find_all_email_addressless(self, prefix: str):
        """Entries whose cn starts with prefix and contains no @"""
        return self.search(
            filters.conjunction(
                filters.starts_with("cn", prefix),
                filters.negate(filters.contains("cn", "@")),
            )
        )

    def modify_user(self, cn: str, attributes: Optional[Dict] = None) -> Dict:
        """Replace a user's attributes and, if the cn changes, rename it

        The rename is a second request sent only after the modify succeeded.
        There is no rollback: when the rename fails the new attribute values
        stay and the rename's DirectoryError is raised.

        :raises NotFoundError: If no user matches cn. Nothing is written.
        """
        new_cn, replacements = normalize_user_fields(attributes)

        user = self.find_user(cn)
        if user is None:
            raise NotFoundError(f"User '{cn}' could not be located")

        changes = [
            self.build_ldap_change("replace", {attribute: value})
            for attribute, value in replacements.items()
        ]
        result = None
        if changes:
            self.logger.info("Modifying user '%s'", user.dn)
            result = self.modify(user.dn, changes)
        else:
            self.logger.debug("No attribute changes for '%s'", user.dn)

        current_cn = user.get("cn") or cn
        if isinstance(current_cn, list):
            current_cn = current_cn[0]
        if not new_cn or new_cn == current_cn:
            return result

        new_dn = self.build_dn(new_cn)
        self.logger.info("Renaming '%s' to '%s'", user.dn, new_dn)
        new_superior = _parent_dn(new_dn)
        if new_superior.lower() == _parent_dn(user.dn).lower():
            self._execute("modify_dn", user.dn, f"cn={new_cn}")
        else:
            self._execute(
                "modify_dn", user.dn, f"cn={new_cn}", new_superior=new_superior
            )
        return result
