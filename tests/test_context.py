import gc
import threading
from typing import Annotated

import pytest

from stratum.context import ApplicationContext, ContextState
from stratum.domain import ComponentDefinition
from stratum.environment import Environment
from stratum.errors import (
    AlreadyRefreshingError,
    ConfigurationError,
    ComponentCreationError,
    ContextClosedError,
    ContextStateError,
    CyclicDependencyError,
    DefinitionParseError,
    DuplicateDefinitionError,
    NoSuchComponentError,
    ResourceNotFoundError,
    TypeMismatchError,
    UnresolvedDependencyError,
)
from stratum.resources import FileSystemResourceLocator, PackageResourceLocator
from tests.fixtures import EVENTS, Database, Person, Repository

PERSON_ALICE = """
components:
  person:
    class: tests.fixtures:Person
    args: {name: Alice, age: 30}
"""

PERSON_BOB = """
components:
  person:
    class: tests.fixtures:Person
    args: {name: Bob}
"""


@pytest.fixture
def make_context(locator, environment):
    contexts = []

    def make(locations=(), parent=None, refresh=True, **kwargs):
        kwargs.setdefault("locator", locator)
        kwargs.setdefault("environment", environment)
        context = ApplicationContext(locations, parent, refresh, **kwargs)
        contexts.append(context)
        return context

    yield make

    for context in contexts:
        if context.state is ContextState.ACTIVE:
            context.close()


def test_later_location_overrides_without_merging(make_context, write_config):
    write_config("base.cfg", PERSON_ALICE)
    write_config("override.cfg", PERSON_BOB)

    context = make_context(["base.cfg", "override.cfg"])

    person = context.get_component("person")
    assert person.name == "Bob"
    assert person.age is None
    assert context.state is ContextState.ACTIVE


def test_single_location_string(make_context, write_config):
    write_config("base.cfg", PERSON_ALICE)

    context = make_context("base.cfg")

    assert context.config_locations == ("base.cfg",)
    assert context["person"].name == "Alice"


def test_relative_location_depends_on_locator_policy(make_context, write_config):
    write_config("cfg/app.yaml", PERSON_ALICE)

    on_disk = make_context(["cfg/app.yaml"])
    packaged = make_context(["cfg/app.yaml"], locator=PackageResourceLocator("tests.sample_configs"))

    assert on_disk.get_component("person").name == "Alice"
    assert packaged.get_component("person").name == "Carol"


def test_refresh_without_locations_fails(make_context):
    context = make_context(refresh=False)

    with pytest.raises(ConfigurationError, match="no configuration locations"):
        context.refresh()
    assert context.state is ContextState.UNREFRESHED


def test_deferred_refresh_allows_further_setup(make_context, write_config):
    write_config("base.cfg", PERSON_ALICE)
    context = make_context(refresh=False)
    context.add_config_location("base.cfg")

    @context.provides()
    def make_greeting(person: Annotated[Person, "person"]) -> str:
        return f"Hello {person.name}"

    context.refresh()

    assert context.get_component("greeting") == "Hello Alice"


def test_files_override_programmatic_definitions(make_context, write_config):
    write_config("override.cfg", PERSON_BOB)
    context = make_context(refresh=False)
    context.register_definition(ComponentDefinition("person", Person, args=("Zed",)))
    context.set_config_locations("override.cfg")

    context.refresh()

    assert context.get_component("person").name == "Bob"


def test_config_locations_resolve_placeholders(make_context, write_config):
    write_config("envs/prod.cfg", PERSON_ALICE)

    context = make_context(["envs/${env}.cfg"], environment=Environment({"env": "prod"}, environ={}))

    assert context.config_locations == ("envs/prod.cfg",)


def test_configuration_is_immutable_once_active(make_context, write_config):
    write_config("base.cfg", PERSON_ALICE)
    context = make_context(["base.cfg"])

    with pytest.raises(ContextStateError, match="can no longer change"):
        context.add_config_location("other.cfg")
    with pytest.raises(ContextStateError):
        context.register_definition(ComponentDefinition("x", Person))


def test_missing_location_aborts_refresh(make_context, write_config):
    write_config("base.cfg", PERSON_ALICE)

    context = make_context(refresh=False)
    context.set_config_locations("base.cfg", "missing.cfg")

    with pytest.raises(ResourceNotFoundError, match="missing.cfg"):
        context.refresh()

    assert context.state is ContextState.UNREFRESHED
    with pytest.raises(ContextStateError, match="has not been refreshed"):
        context.get_component("person")


def test_cycle_leaves_context_unrefreshed(make_context, write_config):
    write_config(
        "cycle.cfg",
        """
        components:
          a:
            class: tests.fixtures:Recorder
            args: [a, {ref: b}]
          b:
            class: tests.fixtures:Recorder
            args: [b, {ref: a}]
          c:
            class: tests.fixtures:Recorder
            args: [c]
        """,
    )
    context = make_context(["cycle.cfg"], refresh=False)

    with pytest.raises(CyclicDependencyError):
        context.refresh()

    assert context.state is ContextState.UNREFRESHED
    assert EVENTS == []


def test_failed_refresh_can_be_retried(make_context, write_config):
    write_config("app.cfg", "components: {broken: {class: tests.fixtures:Exploding}}\n")
    context = make_context(["app.cfg"], refresh=False)

    with pytest.raises(ComponentCreationError):
        context.refresh()

    write_config("app.cfg", PERSON_ALICE)
    context.refresh()

    assert context.get_component("person").name == "Alice"


def test_second_refresh_replaces_graph(make_context, write_config):
    write_config(
        "app.cfg",
        """
        components:
          database: {class: tests.fixtures:Database}
          extra: {class: tests.fixtures:Person}
        """,
    )
    context = make_context(["app.cfg"])
    first_database = context.get_component("database")

    write_config("app.cfg", "components: {database: {class: tests.fixtures:Database}}\n")
    context.refresh()

    assert context.get_component("database") is not first_database
    assert first_database.closed
    assert not context.contains_component("extra")
    with pytest.raises(NoSuchComponentError):
        context.get_component("extra")


def test_failed_second_refresh_keeps_previous_graph(make_context, write_config):
    write_config("app.cfg", PERSON_ALICE)
    context = make_context(["app.cfg"])
    person = context.get_component("person")

    write_config("app.cfg", "components: [\n")
    with pytest.raises(DefinitionParseError):
        context.refresh()

    assert context.state is ContextState.ACTIVE
    assert context.get_component("person") is person


def test_duplicate_definitions_rejected_when_overriding_disabled(make_context, write_config):
    write_config("base.cfg", PERSON_ALICE)
    write_config("override.cfg", PERSON_BOB)

    with pytest.raises(DuplicateDefinitionError):
        make_context(["base.cfg", "override.cfg"], allow_definition_overriding=False)


def test_wildcard_location(make_context, write_config):
    write_config("conf/1-base.cfg", PERSON_ALICE)
    write_config("conf/2-override.cfg", PERSON_BOB)

    context = make_context(["conf/*.cfg"])

    assert context.get_component("person").name == "Bob"


def test_wildcard_matching_nothing_in_strict_mode(tmp_path, write_config, environment):
    write_config("base.cfg", PERSON_ALICE)

    with pytest.raises(ResourceNotFoundError):
        ApplicationContext(
            ["base.cfg", "conf/*.cfg"],
            locator=FileSystemResourceLocator(tmp_path, strict_wildcards=True),
            environment=environment,
        )


def test_lookup_by_type_and_expected_type(make_context, write_config):
    write_config(
        "app.cfg",
        """
        components:
          database: {class: tests.fixtures:Database}
          repository:
            class: tests.fixtures:Repository
            args: [{ref: database}]
        """,
    )
    context = make_context(["app.cfg"])

    assert context.get_component(Repository).database is context.get_component(Database)
    assert context.get_component("database", Database) is context[Database]
    assert context.get_components_of_type(Database) == {"database": context["database"]}
    with pytest.raises(TypeMismatchError, match="Component 'database' is a Database, expected Person"):
        context.get_component("database", Person)


def test_lookup_by_ambiguous_type(make_context, write_config):
    write_config(
        "app.cfg",
        """
        components:
          one: {class: tests.fixtures:Database}
          two: {class: tests.fixtures:Database}
        """,
    )
    context = make_context(["app.cfg"])

    with pytest.raises(NoSuchComponentError, match="No unique component found for type Database"):
        context.get_component(Database)


def test_unknown_component(make_context, write_config):
    write_config("base.cfg", PERSON_ALICE)
    context = make_context(["base.cfg"])

    with pytest.raises(NoSuchComponentError, match="No component named 'nobody'"):
        context.get_component("nobody")
    with pytest.raises(KeyError):
        context["nobody"]
    assert "nobody" not in context
    assert "person" in context


def test_child_resolves_from_parent(make_context, write_config):
    write_config("parent.cfg", "components: {database: {class: tests.fixtures:Database}}\n")
    write_config(
        "child.cfg",
        """
        components:
          repository:
            class: tests.fixtures:Repository
            args: [{ref: database}]
        """,
    )
    parent = make_context(["parent.cfg"])
    child = make_context(["child.cfg"], parent=parent)

    assert child.get_component("repository").database is parent.get_component("database")
    assert child.get_component("database") is parent.get_component("database")
    assert child.get_component(Database) is parent.get_component(Database)
    assert child.contains_component("database")
    assert not child.contains_local_component("database")
    assert child.component_names() == ["repository"]


def test_child_definitions_shadow_parent(make_context, write_config):
    write_config("parent.cfg", PERSON_ALICE)
    write_config("child.cfg", PERSON_BOB)
    parent = make_context(["parent.cfg"])
    child = make_context(["child.cfg"], parent=parent)

    assert child.get_component("person").name == "Bob"
    assert parent.get_component("person").name == "Alice"


def test_parent_does_not_see_child(make_context, write_config):
    write_config("parent.cfg", PERSON_ALICE)
    write_config("child.cfg", "components: {database: {class: tests.fixtures:Database}}\n")
    parent = make_context(["parent.cfg"])
    make_context(["child.cfg"], parent=parent)

    with pytest.raises(NoSuchComponentError):
        parent.get_component("database")


def test_missing_dependency_without_parent(make_context, write_config):
    write_config(
        "child.cfg",
        """
        components:
          repository:
            class: tests.fixtures:Repository
            args: [{ref: database}]
        """,
    )

    with pytest.raises(UnresolvedDependencyError):
        make_context(["child.cfg"])


def test_child_does_not_keep_parent_alive(write_config, locator, environment):
    write_config("parent.cfg", PERSON_ALICE)
    write_config("child.cfg", "components: {database: {class: tests.fixtures:Database}}\n")
    parent = ApplicationContext(["parent.cfg"], locator=locator, environment=environment)
    child = ApplicationContext(["child.cfg"], parent, locator=locator, environment=environment)

    del parent
    gc.collect()

    with pytest.raises(ContextStateError, match="no longer exists"):
        child.get_component("person")


def test_close_destroys_singletons_in_reverse_order(make_context, write_config):
    write_config(
        "app.cfg",
        """
        components:
          service:
            class: tests.fixtures:Recorder
            args: [service, {ref: repository}]
          repository:
            class: tests.fixtures:Recorder
            args: [repository, {ref: db}]
          db:
            class: tests.fixtures:Recorder
            args: [db]
          prototype:
            class: tests.fixtures:Recorder
            args: [prototype]
            scope: prototype
        """,
    )
    context = make_context(["app.cfg"])
    context.get_component("prototype")
    EVENTS.clear()

    context.close()

    assert EVENTS == ["close service", "close repository", "close db"]
    assert context.state is ContextState.CLOSED


def test_closed_context_rejects_use(make_context, write_config):
    write_config("base.cfg", PERSON_ALICE)
    context = make_context(["base.cfg"])
    context.close()

    with pytest.raises(ContextClosedError):
        context.get_component("person")
    with pytest.raises(ContextClosedError):
        context.refresh()
    with pytest.raises(ContextClosedError):
        context.add_config_location("other.cfg")
    context.close()


def test_close_before_refresh_fails(make_context):
    context = make_context(refresh=False)

    with pytest.raises(ContextStateError, match="before it is refreshed"):
        context.close()


def test_context_manager_closes(write_config, locator, environment):
    write_config("app.cfg", "components: {database: {class: tests.fixtures:Database}}\n")

    with ApplicationContext("app.cfg", locator=locator, environment=environment) as context:
        database = context.get_component("database")

    assert database.closed
    assert context.state is ContextState.CLOSED


def test_concurrent_refresh_rejected(make_context, write_config):
    started = threading.Event()
    release = threading.Event()
    errors = []

    write_config("app.cfg", "components: {blocker: {class: tests.fixtures:Person}}\n")
    context = make_context(refresh=False)
    context.add_config_location("app.cfg")

    @context.provides(name="slow")
    def make_slow() -> str:
        started.set()
        release.wait(5)
        return "slow"

    def run():
        try:
            context.refresh()
        except Exception as e:  # pragma: no cover
            errors.append(e)

    thread = threading.Thread(target=run)
    thread.start()
    assert started.wait(5)

    with pytest.raises(AlreadyRefreshingError):
        context.refresh()

    release.set()
    thread.join(5)
    assert errors == []
    assert context.get_component("slow") == "slow"


def test_concurrent_lookups_share_lazy_singleton(make_context, write_config):
    write_config(
        "app.cfg",
        """
        components:
          counter:
            class: tests.fixtures:Counter
            lazy: true
        """,
    )
    context = make_context(["app.cfg"])
    results = []

    def look_up():
        results.append(context.get_component("counter"))

    threads = [threading.Thread(target=look_up) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    assert len(results) == 8
    assert all(result is results[0] for result in results)
    assert results[0].number == 1


def test_get_definition(make_context, write_config):
    write_config("base.cfg", PERSON_ALICE)
    context = make_context(["base.cfg"])

    definition = context.get_definition("person")

    assert definition.kwargs == {"name": "Alice", "age": 30}
    assert definition.source.endswith("base.cfg")


def test_post_processors(make_context, write_config):
    write_config("base.cfg", PERSON_ALICE)
    seen = []

    def remember(materialised):
        seen.append((materialised.name, materialised.component.name))
        return materialised

    make_context(["base.cfg"], post_processors=[remember])

    assert seen == [("person", "Alice")]


@pytest.mark.parametrize("transition, message", [("close", "closed"), ("refresh", "refreshed")])
def test_lifecycle_change_from_inside_own_lookup_fails(make_context, write_config, transition, message):
    write_config("base.cfg", PERSON_ALICE)
    context = make_context(refresh=False)
    context.add_config_location("base.cfg")

    @context.provides(name="meddler", scope="prototype")
    def make_meddler() -> str:
        getattr(context, transition)()
        return "meddler"

    context.refresh()
    person = context.get_component("person")

    with pytest.raises(ComponentCreationError, match=f"cannot be {message} from inside one of its own lookups"):
        context.get_component("meddler")

    assert context.state is ContextState.ACTIVE
    assert context.get_component("person") is person


def test_configuration_cannot_change_during_refresh(make_context, write_config):
    write_config("base.cfg", PERSON_ALICE)
    context = make_context(refresh=False)
    context.add_config_location("base.cfg")

    @context.provides(name="meddler")
    def make_meddler() -> str:
        context.add_config_location("other.cfg")
        return "meddler"

    with pytest.raises(ComponentCreationError, match="is being refreshed"):
        context.refresh()

    assert context.config_locations == ("base.cfg",)
    assert context.state is ContextState.UNREFRESHED


@pytest.fixture
def slow_context(make_context, write_config):
    """An active context whose lazy 'slow' component blocks until released."""
    write_config("app.cfg", "components: {database: {class: tests.fixtures:Database}}\n")
    context = make_context(refresh=False)
    context.add_config_location("app.cfg")
    context.started = threading.Event()
    context.release = threading.Event()

    @context.provides(name="slow", lazy=True)
    def make_slow() -> str:
        context.started.set()
        context.release.wait(5)
        return "slow"

    context.refresh()
    return context


def test_close_waits_for_lookups_in_progress(slow_context):
    database = slow_context.get_component("database")
    lookup = threading.Thread(target=slow_context.get_component, args=("slow",))
    lookup.start()
    assert slow_context.started.wait(5)

    closer = threading.Thread(target=slow_context.close)
    closer.start()
    closer.join(0.2)

    assert closer.is_alive()
    assert not database.closed

    slow_context.release.set()
    lookup.join(5)
    closer.join(5)

    assert database.closed
    assert slow_context.state is ContextState.CLOSED


def test_refresh_destroys_previous_graph_after_lookups_finish(slow_context):
    database = slow_context.get_component("database")
    lookup = threading.Thread(target=slow_context.get_component, args=("slow",))
    lookup.start()
    assert slow_context.started.wait(5)

    refresher = threading.Thread(target=slow_context.refresh)
    refresher.start()
    refresher.join(0.2)

    assert refresher.is_alive()
    assert not database.closed

    slow_context.release.set()
    lookup.join(5)
    refresher.join(5)

    assert database.closed
    assert slow_context.get_component("database") is not database
