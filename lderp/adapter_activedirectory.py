"""Adapter for Microsoft Active Directory"""

from typing import Dict, Optional

from . import DirectoryClient
from .values import ActiveDirectoryValueCoercer


class ActiveDirectoryAdapter(DirectoryClient):
    """Active Directory flavour: down-level logon names and FILETIME stamps

    An example config would be::

        directory:
          module: ActiveDirectory
          url: ldaps://dc01.example.org
          base_dn: "dc=example,dc=org"
          zombie_username: svc-health
          zombie_password: ${ZOMBIE_PASSWORD}

    """

    name = "lderp-ad"
    domain = "AD"
    default_config = DirectoryClient.default_config | {
        "username_attribute": "sAMAccountName",
    }
    coercer_class = ActiveDirectoryValueCoercer
    object_class = ["top", "person", "organizationalPerson", "user"]

    def bind_as_zombie(
        self, username: Optional[str] = None, password: Optional[str] = None
    ):
        """Bind as the configured zombie, or as the given one"""
        zombie = self.zombie
        return self.bind_as_user(
            self.build_dn(username or zombie.username), password or zombie.password
        )

    def build_dn(self, identifier: str) -> str:
        return f"{self.domain}\\{identifier}"

    def build_user_entry(self, attributes: Dict) -> Dict:
        entry = dict(attributes)
        entry["objectClass"] = list(self.object_class)
        if "cn" in entry and "sAMAccountName" not in entry:
            entry["sAMAccountName"] = entry["cn"]
        return entry
