"""Directory service client namespace"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
import logging
import threading
import time
from types import MappingProxyType
from typing import Dict, List, Optional

import ldap3
from ldap3.core.exceptions import LDAPException
from ldap3.core.results import RESULT_SUCCESS

from . import filters
from .models import LdapChange, SearchOptions, ZombieCredential
from .values import ValueCoercer


class LderpException(Exception):
    """Generic lderp exception. Base class for all the others"""


class ConfigException(LderpException):
    """Exception relating to configuration errors"""


class ConfigFileError(ConfigException):
    """Exception caused by a config file that can't be read"""


class ConfigUnexpectedInputType(ConfigException):
    """Exception caused by a config that is not a mapping"""

    def __init__(self, origin_class, config):
        self.origin_class = origin_class
        self.config = config
        self.message = (
            f"{origin_class.__name__} expects a config mapping, "
            + f"got '{type(config).__name__}'"
        )
        super().__init__(self.message)


class ConfigUnexpectedType(ConfigException):
    """Exception caused by configure() method returning an unexpected type"""

    def __init__(self, origin_class, config):
        self.origin_class = origin_class
        self.config = config
        self.message = (
            f"{origin_class.__name__}.configure() returned an "
            + f"unexpected type. Returned config was '{config}'"
        )
        super().__init__(self.message)


class ConfigMissingFields(ConfigException):
    """Exception caused by config having missing fields"""

    def __init__(self, missing_fields, config):
        self.config = config
        self.missing_fields = missing_fields
        self.message = (
            f"Config dict has fields '{config.keys()}', "
            + f"missing fields '{missing_fields}'"
        )
        super().__init__(self.message)


class ConfigUnexpectedFields(ConfigException):
    """Exception caused by config having unexpected fields"""

    def __init__(self, unexpected_fields, config):
        self.config = config
        self.unexpected_fields = unexpected_fields
        self.message = (
            f"Config dict has fields '{config.keys()}', "
            + f"unexpected fields '{unexpected_fields}'"
        )
        super().__init__(self.message)


class BindError(LderpException):
    """Raised when the directory rejects a bind or fails during one"""

    def __init__(self, dn, reason):
        self.dn = dn
        self.reason = reason
        self.message = f"Unable to bind as '{dn}': {reason}"
        super().__init__(self.message)


class NotFoundError(LderpException):
    """Raised when an entry that must exist could not be located"""


class DirectoryError(LderpException):
    """Raised when the directory reports a failed operation"""

    def __init__(self, operation, result):
        self.operation = operation
        self.result = result
        if isinstance(result, Mapping):
            reason = result.get("message") or result.get("description")
        else:
            reason = result
        self.message = f"Directory {operation} failed: {reason}"
        super().__init__(self.message)


class DirectoryClient(ABC):
    """Abstract base class for directory adapters

    Owns the lazily created connection, the generic user operations and the
    filter and value plumbing. Subclasses provide the directory flavour's DN
    convention, user entry layout and zombie bind.
    """

    name = "lderp"
    mandatory_fields = {"url"}
    optional_fields = {
        "base_dn",
        "client",
        "default_attributes",
        "timeout",
        "username_attribute",
        "zombie_password",
        "zombie_username",
    }
    default_config = {
        "base_dn": "",
        "client": {},
        "default_attributes": [],
        "timeout": 600,
        "username_attribute": "cn",
        "zombie_password": "",
        "zombie_username": "",
    }
    coercer_class = ValueCoercer

    def __init__(self, config: Dict, logger: Optional[logging.Logger] = None):
        if not isinstance(config, Mapping):
            raise ConfigUnexpectedInputType(self.__class__, config)

        configured = self.configure(dict(config))
        if not isinstance(configured, Mapping):
            raise ConfigUnexpectedType(self.__class__, configured)

        self.config = MappingProxyType(dict(configured))
        self.logger = logger or logging.getLogger(self.__class__.__module__)
        self.coercer = self.coercer_class()
        self._connection = None
        self._connection_lock = threading.Lock()

    @staticmethod
    def _check_fields(_dict: Dict, mandatory_fields: set, optional_fields: set):
        """Check a dictionary's fields are valid

        :raises ConfigMissingFields: If there are missing fields
        :raises ConfigUnexpectedFields: If there are unexpected fields
        """
        missing_fields = mandatory_fields - set(_dict.keys())
        if missing_fields:
            raise ConfigMissingFields(missing_fields, _dict)
        unexpected_fields = set(_dict.keys()) - mandatory_fields - optional_fields
        if unexpected_fields:
            raise ConfigUnexpectedFields(unexpected_fields, _dict)

    def configure(self, config: Dict) -> Dict:
        """Apply defaults to loaded configs and perform validation"""
        self._check_fields(config, self.mandatory_fields, self.optional_fields)

        return self.default_config | config

    @property
    def base_dn(self) -> str:
        return self.config["base_dn"]

    @property
    def username_attribute(self) -> str:
        return self.config["username_attribute"]

    @property
    def timeout(self) -> int:
        """Session timeout in seconds"""
        return self.config["timeout"]

    @property
    def default_attributes(self) -> List[str]:
        return list(self.config["default_attributes"])

    @property
    def zombie(self) -> ZombieCredential:
        return ZombieCredential(
            username=self.config["zombie_username"],
            password=self.config["zombie_password"],
        )

    def connect(self) -> ldap3.Connection:
        """Create the connection on first use and return it

        Only one connection ever exists per adapter; later calls return the
        same object until destroy() discards it.
        """
        with self._connection_lock:
            if self._connection is None:
                server = ldap3.Server(
                    self.config["url"],
                    get_info=ldap3.NONE,
                    connect_timeout=self.timeout,
                )
                options = {
                    "auto_bind": ldap3.AUTO_BIND_NONE,
                    "receive_timeout": self.timeout,
                }
                options.update(self.config["client"])
                self.logger.debug("Connecting to %s", self.config["url"])
                self._connection = ldap3.Connection(server, **options)
            return self._connection

    @property
    def connection(self) -> ldap3.Connection:
        return self.connect()

    @staticmethod
    def _outcome(connection: ldap3.Connection, returned) -> tuple:
        """(status, result, response) of the request that just ran

        Thread safe strategies such as SAFE_SYNC hand these back as a tuple
        and leave nothing on the connection.
        """
        if getattr(connection.strategy, "thread_safe", False):
            status, result, response, _ = returned
            return status, result, response
        return returned, connection.result, connection.response

    def _request(self, operation: str, *args, **kwargs) -> tuple:
        """Run an ldap3 connection method and return its (result, response)

        :raises DirectoryError: If ldap3 raises or the result code isn't success
        """
        connection = self.connection
        try:
            if connection.closed:
                connection.open()
            returned = getattr(connection, operation)(*args, **kwargs)
        except LDAPException as exc:
            raise DirectoryError(operation, str(exc)) from exc

        _, result, response = self._outcome(connection, returned)
        if not result or result.get("result") != RESULT_SUCCESS:
            raise DirectoryError(operation, result)
        return result, response

    def _execute(self, operation: str, *args, **kwargs) -> Dict:
        """Run an ldap3 connection method and return the directory's result"""
        result, _ = self._request(operation, *args, **kwargs)
        return result

    def bind_as_user(self, dn: str, password: str):
        """Authenticate the shared connection as dn

        :raises BindError: If the credentials are rejected or the bind fails
        """
        connection = self.connection
        connection.authentication = ldap3.SIMPLE
        connection.user = dn
        connection.password = password
        try:
            bound, result, _ = self._outcome(connection, connection.bind())
        except LDAPException as exc:
            raise BindError(dn, exc) from exc
        if not bound:
            raise BindError(dn, (result or {}).get("description"))
        self.logger.debug("Bound as '%s'", dn)
        return self

    @abstractmethod
    def bind_as_zombie(self, *args, **kwargs):
        """Bind as the configured service identity"""
        raise NotImplementedError(
            f"{self.__class__.__name__}.bind_as_zombie must be overridden by subclass"
        )

    @abstractmethod
    def build_dn(self, identifier: str, *args, **kwargs) -> str:
        """Turn a username or common name into this directory's DN"""
        raise NotImplementedError(
            f"{self.__class__.__name__}.build_dn must be overridden by subclass"
        )

    @abstractmethod
    def build_user_entry(self, attributes: Dict) -> Dict:
        """Turn a flat attribute mapping into the entry this directory expects"""
        raise NotImplementedError(
            f"{self.__class__.__name__}.build_user_entry must be overridden by subclass"
        )

    @staticmethod
    def build_ldap_change(operation: str, modification: Dict) -> LdapChange:
        """Build a single-attribute change from an operation and {name: value}"""
        if len(modification) != 1:
            raise ValueError(
                f"A change modifies exactly one attribute, got {list(modification)}"
            )
        ((attribute, values),) = modification.items()
        return LdapChange(operation, attribute, values)

    def check_status(self) -> Dict:
        """Report whether the directory accepts the zombie credential"""
        start = time.perf_counter()
        try:
            self.bind_as_zombie()
            bind_status = True
        except (BindError, DirectoryError) as exc:
            self.logger.debug("Status bind failed: %s", exc)
            bind_status = False
        latency = (time.perf_counter() - start) * 1000
        return {
            "online": bind_status,
            "subsystems": {"bind": bind_status},
            "latency": f"{latency:.3f}ms",
        }

    def create_user(self, dn: str, attributes: Dict) -> Dict:
        """Add a user entry at dn"""
        entry = dict(self.build_user_entry(attributes))
        object_class = entry.pop("objectClass", None)
        self.logger.info("Creating user '%s'", dn)
        return self._execute("add", dn, object_class, entry)

    def delete_user(self, dn: str) -> Dict:
        """Delete the entry at dn"""
        self.logger.info("Deleting user '%s'", dn)
        return self._execute("delete", dn)

    def destroy(self) -> bool:
        """Close and forget the connection. Never raises."""
        with self._connection_lock:
            connection, self._connection = self._connection, None
        if connection is None or connection.closed:
            return True
        try:
            connection.unbind()
        except LDAPException as exc:
            self.logger.warning("Failed to close directory connection: %s", exc)
            return False
        return True

    def find(self, where: Optional[Dict] = None) -> List:
        """Search by key/value pairs, a raw {"filter": ...} or everything"""
        if not where:
            search_filter = filters.equals(self.username_attribute, "*")
        elif where.get("filter"):
            search_filter = where["filter"]
        else:
            search_filter = filters.from_where(where)
        return self.search(search_filter)

    def find_user(self, username: str):
        """Return the first entry whose username attribute matches, or None"""
        entries = self.search(filters.equals(self.username_attribute, username))
        if not entries:
            return None
        return entries[0]

    def get_personal_name_by_username(self, username: str) -> Optional[Dict]:
        """Return {"first": givenName, "last": sn} for username, or None"""
        entry = self.find_user(username)
        if entry is None:
            return None
        return {"first": entry.get("givenName"), "last": entry.get("sn")}

    def modify(self, dn: str, changes: List[LdapChange]) -> Dict:
        """Submit changes against dn as a single modify request"""
        ldap_changes = {}
        for change in changes:
            ldap_changes.setdefault(change.attribute, []).append(change.as_ldap3())
        self.logger.debug("Modifying '%s': %s", dn, sorted(ldap_changes))
        return self._execute("modify", dn, ldap_changes)

    def search(self, search_filter: str, options: Optional[Dict] = None) -> List:
        """Search below base_dn and return every entry, coerced"""
        search_options = SearchOptions.merge(
            options,
            filter=search_filter,
            attributes=self.default_attributes,
            time_limit=self.timeout,
        )
        self.logger.debug("Searching '%s' for %s", self.base_dn, search_options.filter)
        _, response = self._request(
            "search", self.base_dn, **search_options.as_ldap3()
        )

        entries = [
            self.coercer.format_entry(item["dn"], item.get("attributes", {}))
            for item in response or []
            if item.get("type") == "searchResEntry"
        ]
        self.logger.debug("Found %d entries", len(entries))
        return entries

    def unbind(self) -> bool:
        """Release the authenticated session. Never raises."""
        connection = self._connection
        if connection is None:
            return True
        try:
            connection.unbind()
        except LDAPException as exc:
            self.logger.warning("Failed to unbind: %s", exc)
            return False
        return True
