import pytest

from stratum.environment import Environment, profiles_match
from stratum.errors import ConfigurationError


def test_properties_take_precedence_over_environ():
    environment = Environment({"host": "explicit"}, environ={"host": "env", "port": "80"})

    assert environment.get_property("host") == "explicit"
    assert environment.get_property("port") == "80"
    assert environment.get_property("missing", "fallback") == "fallback"


def test_resolves_placeholders_with_defaults():
    environment = Environment({"host": "db.local"}, environ={})

    assert (
        environment.resolve_placeholders("${host}:${port:5432}/app")
        == "db.local:5432/app"
    )


def test_resolves_nested_placeholders():
    environment = Environment({"url": "postgres://${host}", "host": "db"}, environ={})

    assert environment.resolve_placeholders("${url}") == "postgres://db"


def test_unresolvable_placeholder_raises():
    with pytest.raises(ConfigurationError, match="Could not resolve placeholder 'nope'"):
        Environment(environ={}).resolve_placeholders("${nope}")


def test_circular_placeholders_raise():
    environment = Environment({"a": "${b}", "b": "${a}"}, environ={})

    with pytest.raises(ConfigurationError, match="Circular placeholder reference: a -> b -> a"):
        environment.resolve_placeholders("${a}")


def test_active_profiles_read_from_property():
    environment = Environment(environ={"STRATUM_PROFILES_ACTIVE": "dev, local,"})

    assert environment.active_profiles == {"dev", "local"}


def test_explicit_active_profiles():
    environment = Environment(active_profiles=["prod"], environ={"STRATUM_PROFILES_ACTIVE": "dev"})

    assert environment.active_profiles == {"prod"}
    assert environment.accepts(["prod", "uat"])
    assert not environment.accepts(["!prod"])


def test_profiles_match():
    def components_in(*profiles):
        return {
            name
            for name, stated in [
                ("globally_defined", []),
                ("test_only", ["test"]),
                ("not_test", ["!test"]),
                ("prod_or_uat", ["prod", "uat"]),
            ]
            if profiles_match(stated, set(profiles))
        }

    assert components_in() == {"globally_defined", "not_test"}
    assert components_in("test") == {"globally_defined", "test_only"}
    assert components_in("prod") == {"globally_defined", "not_test", "prod_or_uat"}
    assert components_in("uat") == {"globally_defined", "not_test", "prod_or_uat"}
    assert components_in("empty") == {"globally_defined", "not_test"}
