""" Basic functionality tests for the base directory client """

from types import MappingProxyType

import ldap3
from ldap3.core.exceptions import LDAPSocketOpenError
import pytest

import lderp
from lderp.models import LdapChange

from .mock_directory import MockDirectory


class DummyClient(lderp.DirectoryClient):
    """Barebones directory client, so the base class can be instantiated"""

    def bind_as_zombie(self, username=None, password=None):
        zombie = self.zombie
        return self.bind_as_user(
            self.build_dn(username or zombie.username), password or zombie.password
        )

    def build_dn(self, identifier):
        return f"uid={identifier},{self.base_dn}"

    def build_user_entry(self, attributes):
        return {"objectClass": ["person"], **attributes}


class CallsUpClient(lderp.DirectoryClient):
    """Client whose overrides defer to the abstract base bodies"""

    # pylint: disable=useless-parent-delegation

    def bind_as_zombie(self, *args, **kwargs):
        return super().bind_as_zombie(*args, **kwargs)

    def build_dn(self, identifier, *args, **kwargs):
        return super().build_dn(identifier, *args, **kwargs)

    def build_user_entry(self, attributes):
        return super().build_user_entry(attributes)


BASIC_CONFIG = {
    "url": "ldap://ldap.example.org",
    "base_dn": "dc=example,dc=org",
    "zombie_username": "zombie",
    "zombie_password": "secret",
}

USERS = [
    {
        "dn": "uid=jdoe,dc=example,dc=org",
        "attributes": {
            "cn": ["jdoe"],
            "givenName": ["Jane"],
            "sn": ["Doe"],
            "mail": ["jane@example.org", "jdoe@example.org"],
            "loginDisabled": ["false"],
        },
    },
    {
        "dn": "uid=jsmith,dc=example,dc=org",
        "attributes": {"cn": ["jsmith"], "givenName": ["John"], "sn": ["Smith"]},
    },
]


@pytest.fixture(name="directory")
def fixture_directory():
    """Fixture to create a mock directory holding two users"""
    return MockDirectory([dict(user) for user in USERS])


@pytest.fixture(name="client")
def fixture_client(mocker, directory):
    """Fixture to create a client talking to the mock directory"""
    client = DummyClient(BASIC_CONFIG)
    mocker.patch.object(client, "connect", return_value=directory.connection)
    # pylint: disable=protected-access
    client._connection = directory.connection
    return client


def test_config_basic():
    """A client with only a url gets the documented defaults"""
    client = DummyClient({"url": "ldap://ldap.example.org"})
    assert client.base_dn == ""
    assert client.username_attribute == "cn"
    assert client.timeout == 600
    assert client.default_attributes == []
    assert client.name == "lderp"


def test_config_is_read_only():
    """The stored config can't be changed after construction"""
    client = DummyClient(BASIC_CONFIG)
    assert isinstance(client.config, MappingProxyType)
    with pytest.raises(TypeError):
        client.config["base_dn"] = "dc=other"


def test_config_not_a_mapping():
    """A config that isn't a mapping is rejected"""
    with pytest.raises(lderp.ConfigUnexpectedInputType) as excinfo:
        DummyClient(())
    assert excinfo.value.config == ()


def test_config_missing_url():
    """The url is mandatory"""
    with pytest.raises(lderp.ConfigMissingFields) as excinfo:
        DummyClient({"base_dn": "dc=example,dc=org"})
    assert excinfo.value.missing_fields == {"url"}


def test_config_unexpected_fields():
    """Unknown config keys are rejected"""
    with pytest.raises(lderp.ConfigUnexpectedFields) as excinfo:
        DummyClient({"url": "ldap://ldap.example.org", "hostname": "nope"})
    assert excinfo.value.unexpected_fields == {"hostname"}


def test_bad_configure_function():
    """configure() returning something other than a mapping is an error"""

    class BadConfigureClient(DummyClient):
        """Client with a configure function that doesn't return a mapping"""

        def configure(self, config):
            return ""

    with pytest.raises(lderp.ConfigUnexpectedType) as excinfo:
        BadConfigureClient(BASIC_CONFIG)
    assert excinfo.value.config == ""


def test_abstract_client_cannot_be_instantiated():
    """The base class leaves the directory specific hooks abstract"""
    with pytest.raises(TypeError):
        lderp.DirectoryClient(BASIC_CONFIG)  # pylint: disable=abstract-class-instantiated


@pytest.mark.parametrize(
    "method, args",
    [
        ("bind_as_zombie", ()),
        ("build_dn", ("jdoe",)),
        ("build_user_entry", ({"cn": "jdoe"},)),
    ],
)
def test_abstract_bodies_raise(method, args):
    """Calling up to an abstract hook raises NotImplementedError"""
    client = CallsUpClient(BASIC_CONFIG)
    with pytest.raises(NotImplementedError) as excinfo:
        getattr(client, method)(*args)
    assert f"CallsUpClient.{method} must be overridden by subclass" in str(
        excinfo.value
    )


def test_connect_is_lazy_and_single(mocker):
    """The connection is only created on first use, and only once"""
    server = mocker.patch("lderp.ldap3.Server")
    connection = mocker.patch("lderp.ldap3.Connection")
    client = DummyClient(BASIC_CONFIG | {"client": {"read_only": True}})

    connection.assert_not_called()
    first = client.connection
    second = client.connect()

    assert first is second
    server.assert_called_once_with(
        "ldap://ldap.example.org", get_info=ldap3.NONE, connect_timeout=600
    )
    connection.assert_called_once_with(
        server.return_value,
        auto_bind=ldap3.AUTO_BIND_NONE,
        receive_timeout=600,
        read_only=True,
    )


def test_bind_as_user(client, directory):
    """A successful bind returns the client"""
    assert client.bind_as_user("uid=jdoe,dc=example,dc=org", "secret") is client
    assert directory.connection.user == "uid=jdoe,dc=example,dc=org"
    assert directory.connection.authentication == ldap3.SIMPLE
    directory.connection.bind.assert_called_once()


def test_bind_as_user_rejected(client):
    """Wrong credentials raise BindError"""
    with pytest.raises(lderp.BindError) as excinfo:
        client.bind_as_user("uid=jdoe,dc=example,dc=org", "wrong")
    assert excinfo.value.dn == "uid=jdoe,dc=example,dc=org"
    assert excinfo.value.reason == "invalidCredentials"


def test_bind_as_user_connection_error(client, directory):
    """Errors raised by ldap3 during a bind become BindError"""
    directory.unreachable = True
    with pytest.raises(lderp.BindError) as excinfo:
        client.bind_as_user("uid=jdoe,dc=example,dc=org", "secret")
    assert isinstance(excinfo.value.__cause__, LDAPSocketOpenError)


def test_check_status_online(client):
    """The zombie can bind, so the directory is online"""
    status = client.check_status()
    assert status["online"] is True
    assert status["subsystems"] == {"bind": True}
    assert status["latency"].endswith("ms")


def test_check_status_offline(client, directory):
    """An unreachable directory is reported, not raised"""
    directory.unreachable = True
    status = client.check_status()
    assert status["online"] is False
    assert status["subsystems"] == {"bind": False}


def test_find_everything(client, directory):
    """An empty where searches for every user"""
    entries = client.find({})
    assert [entry.dn for entry in entries] == [user["dn"] for user in USERS]
    assert directory.connection.search.call_args.kwargs["search_filter"] == "(cn=*)"


def test_find_single_pair(client, directory):
    """A single pair isn't wrapped in an AND"""
    entries = client.find({"givenName": "John"})
    assert [entry.cn for entry in entries] == ["jsmith"]
    assert (
        directory.connection.search.call_args.kwargs["search_filter"]
        == "(givenName=John)"
    )


def test_find_multiple_pairs(client, directory):
    """Several pairs are ANDed together"""
    client.find({"givenName": "Jane", "sn": "Doe"})
    assert (
        directory.connection.search.call_args.kwargs["search_filter"]
        == "(&(givenName=Jane)(sn=Doe))"
    )


def test_find_raw_filter(client, directory):
    """A filter key is used verbatim"""
    client.find({"filter": "(|(sn=Doe)(sn=Smith))"})
    assert (
        directory.connection.search.call_args.kwargs["search_filter"]
        == "(|(sn=Doe)(sn=Smith))"
    )


def test_find_user(client):
    """find_user returns the first match, coerced"""
    user = client.find_user("jdoe")
    assert user.dn == "uid=jdoe,dc=example,dc=org"
    assert user.givenName == "Jane"
    assert user.mail == ["jane@example.org", "jdoe@example.org"]
    assert user.loginDisabled is False


def test_find_user_missing(client):
    """find_user returns None rather than raising when nothing matches"""
    assert client.find_user("nobody") is None


def test_get_personal_name_by_username(client):
    """Names are taken from givenName and sn"""
    assert client.get_personal_name_by_username("jsmith") == {
        "first": "John",
        "last": "Smith",
    }
    assert client.get_personal_name_by_username("nobody") is None


def test_search_defaults(client, directory):
    """Search runs below base_dn with the configured defaults"""
    client.search("(cn=*)")
    directory.connection.search.assert_called_once_with(
        "dc=example,dc=org",
        search_filter="(cn=*)",
        search_scope=ldap3.SUBTREE,
        attributes=ldap3.ALL_ATTRIBUTES,
        time_limit=600,
    )


def test_search_options(client, directory):
    """Options given per call override the defaults"""
    client.search(
        "(cn=*)", {"attributes": ["cn"], "scope": "one", "time_limit": 5}
    )
    kwargs = directory.connection.search.call_args.kwargs
    assert kwargs["attributes"] == ["cn"]
    assert kwargs["search_scope"] == ldap3.LEVEL
    assert kwargs["time_limit"] == 5


def test_search_skips_references(client):
    """Only entries are returned, referrals are dropped"""
    assert len(client.search("(cn=*)")) == 2


def test_search_error(client, directory):
    """A failed search raises DirectoryError"""
    directory.fail("search", "timeLimitExceeded", 3)
    with pytest.raises(lderp.DirectoryError) as excinfo:
        client.search("(cn=*)")
    assert excinfo.value.operation == "search"
    assert excinfo.value.result["description"] == "timeLimitExceeded"


def test_create_user(client, directory):
    """create_user adds the entry built by build_user_entry"""
    result = client.create_user("uid=new,dc=example,dc=org", {"cn": "new"})
    assert result["result"] == 0
    directory.connection.add.assert_called_once_with(
        "uid=new,dc=example,dc=org", ["person"], {"cn": "new"}
    )


def test_create_user_exists(client, directory):
    """Directory errors from add are raised"""
    directory.fail("add", "entryAlreadyExists", 68)
    with pytest.raises(lderp.DirectoryError):
        client.create_user("uid=jdoe,dc=example,dc=org", {"cn": "jdoe"})


def test_delete_user(client, directory):
    """delete_user deletes the given DN"""
    client.delete_user("uid=jdoe,dc=example,dc=org")
    directory.connection.delete.assert_called_once_with("uid=jdoe,dc=example,dc=org")


def test_delete_user_socket_error(client, directory):
    """Errors raised by ldap3 are chained into DirectoryError"""
    directory.unreachable = True
    with pytest.raises(lderp.DirectoryError) as excinfo:
        client.delete_user("uid=jdoe,dc=example,dc=org")
    assert isinstance(excinfo.value.__cause__, LDAPSocketOpenError)


def test_modify(client, directory):
    """Changes are grouped by attribute into ldap3's change dictionary"""
    client.modify(
        "uid=jdoe,dc=example,dc=org",
        [
            LdapChange("replace", "sn", "Doe-Smith"),
            LdapChange("add", "mail", ["j@example.org"]),
            LdapChange("delete", "mail", ["jdoe@example.org"]),
        ],
    )
    directory.connection.modify.assert_called_once_with(
        "uid=jdoe,dc=example,dc=org",
        {
            "sn": [(ldap3.MODIFY_REPLACE, ["Doe-Smith"])],
            "mail": [
                (ldap3.MODIFY_ADD, ["j@example.org"]),
                (ldap3.MODIFY_DELETE, ["jdoe@example.org"]),
            ],
        },
    )


def test_build_ldap_change():
    """A change is built from an operation and a single attribute"""
    change = lderp.DirectoryClient.build_ldap_change("replace", {"sn": "Doe"})
    assert change == LdapChange("replace", "sn", ("Doe",))


def test_build_ldap_change_needs_one_attribute():
    """Zero or several attributes are rejected"""
    with pytest.raises(ValueError):
        lderp.DirectoryClient.build_ldap_change("replace", {})
    with pytest.raises(ValueError):
        lderp.DirectoryClient.build_ldap_change("replace", {"sn": "a", "cn": "b"})


def test_unbind_without_connection():
    """Unbinding before anything was connected is fine"""
    client = DummyClient(BASIC_CONFIG)
    assert client.unbind() is True
    assert client.destroy() is True


def test_unbind(client, directory):
    """A clean unbind reports success"""
    assert client.unbind() is True
    directory.connection.unbind.assert_called_once()


def test_unbind_failure(client, directory):
    """Unbind failures are reported as False, never raised"""
    directory.connection.unbind.side_effect = LDAPSocketOpenError("gone")
    assert client.unbind() is False


def test_destroy(client, directory):
    """destroy closes the connection and forgets it"""
    assert client.destroy() is True
    directory.connection.unbind.assert_called_once()
    assert client._connection is None  # pylint: disable=protected-access


def test_destroy_failure(client, directory):
    """destroy failures are reported as False, never raised"""
    directory.connection.unbind.side_effect = LDAPSocketOpenError("gone")
    assert client.destroy() is False
    assert client._connection is None  # pylint: disable=protected-access


@pytest.fixture(name="thread_safe_directory")
def fixture_thread_safe_directory():
    """Fixture to create a mock directory answering like SAFE_SYNC"""
    return MockDirectory([dict(user) for user in USERS], thread_safe=True)


@pytest.fixture(name="thread_safe_client")
def fixture_thread_safe_client(mocker, thread_safe_directory):
    """Fixture to create a client on a thread safe connection"""
    client = DummyClient(BASIC_CONFIG)
    mocker.patch.object(
        client, "connect", return_value=thread_safe_directory.connection
    )
    return client


def test_thread_safe_bind_rejected(thread_safe_client):
    """A rejected bind is noticed when ldap3 returns a status tuple"""
    with pytest.raises(lderp.BindError) as excinfo:
        thread_safe_client.bind_as_user("uid=jdoe,dc=example,dc=org", "wrong")
    assert excinfo.value.reason == "invalidCredentials"


def test_thread_safe_bind(thread_safe_client):
    """A good bind works when ldap3 returns a status tuple"""
    client = thread_safe_client.bind_as_user("uid=jdoe,dc=example,dc=org", "secret")
    assert client is thread_safe_client


def test_thread_safe_search(thread_safe_client):
    """Entries are read from the returned response, not the connection"""
    thread_safe_client.bind_as_user("uid=jdoe,dc=example,dc=org", "secret")
    user = thread_safe_client.find_user("jdoe")
    assert user.dn == "uid=jdoe,dc=example,dc=org"
    assert len(thread_safe_client.find({})) == 2


def test_thread_safe_write_error(thread_safe_client, thread_safe_directory):
    """Failed writes are noticed when ldap3 returns a status tuple"""
    thread_safe_directory.fail("delete", "noSuchObject", 32)
    with pytest.raises(lderp.DirectoryError) as excinfo:
        thread_safe_client.delete_user("uid=nobody,dc=example,dc=org")
    assert excinfo.value.result["description"] == "noSuchObject"


def test_search_unknown_option(client, directory):
    """An unknown option fails before anything is sent"""
    with pytest.raises(ValueError):
        client.search("(cn=*)", {"timeLimit": 5})
    directory.connection.search.assert_not_called()
