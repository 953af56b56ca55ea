"""The application context: configuration locations in, component graph out.

An :class:`ApplicationContext` is configured with an ordered list of
configuration locations and, optionally, a parent context. Calling
:meth:`ApplicationContext.refresh` runs the whole bootstrap:

1. a fresh :class:`~stratum.registry.DefinitionRegistry` is created and
   programmatic definitions are registered into it;
2. each location is resolved by the :class:`~stratum.resources.ResourceLocator`
   and loaded by the :class:`~stratum.reader.DefinitionReader`, in order, so a
   later location overrides definitions of the same name from an earlier one;
3. the :class:`~stratum.graph.GraphBuilder` validates the definitions and
   instantiates non-lazy singletons;
4. the new registry and graph replace the previous ones, if any.

A refresh is all or nothing: if any step fails, the error propagates and the
context is left as it was.

Example:
    >>> with ApplicationContext(["base.yaml", "override.yaml"]) as context:
    ...     person = context.get_component("person")
"""

import enum
import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Iterator, Optional, Union

from stratum.component_builder import ComponentBuilder, PostProcessor
from stratum.definitions import definition_from_callable
from stratum.domain import ComponentDefinition
from stratum.environment import Environment
from stratum.errors import (
    AlreadyRefreshingError,
    ConfigurationError,
    ContextClosedError,
    ContextStateError,
    NoSuchComponentError,
    TypeMismatchError,
)
from stratum.graph import ComponentGraph, GraphBuilder
from stratum.reader import DefinitionReader
from stratum.registry import DefinitionRegistry
from stratum.resources import FileSystemResourceLocator, ResourceLocator

__all__ = ["ApplicationContext", "ContextState", "ComponentKey"]

logger = logging.getLogger(__name__)

ComponentKey = Union[str, type]
"""Components can be retrieved either by their name (or an alias) or by their type.

Example:
    >>> context["database"]     # Lookup by name
    >>> context[Database]       # Lookup by type, which must match exactly one component
"""


class ContextState(enum.Enum):
    UNREFRESHED = "unrefreshed"
    ACTIVE = "active"
    CLOSED = "closed"


class _Snapshot:
    """A built graph plus the number of lookups currently reading it."""

    def __init__(self, graph: ComponentGraph):
        self.graph = graph
        self.in_flight = 0


class _ParentView:
    """Forwards a graph's lookups to a parent context it does not keep alive."""

    def __init__(self, child: "ApplicationContext"):
        self._child = weakref.ref(child)

    def _parent(self) -> "ApplicationContext":
        child = self._child()
        if child is None:
            raise ContextStateError("The context owning this graph no longer exists")
        return child.parent

    def get_component(self, key: "ComponentKey") -> Any:
        return self._parent().get_component(key)

    def contains_component(self, name: str) -> bool:
        return self._parent().contains_component(name)


class ApplicationContext:
    """Layered component container bootstrapped from configuration locations.

    Args:
        config_locations: A location or an ordered sequence of locations.
            ``${...}`` placeholders are resolved against the environment.
        parent: A context consulted for components not defined here. The
            child does not keep the parent alive.
        refresh: If True, :meth:`refresh` runs at the end of construction.
            Pass False to add locations or definitions first.
        locator: Resolves locations; a :class:`FileSystemResourceLocator`
            relative to the working directory by default.
        reader: Loads definitions; built from ``locator`` and ``environment``
            by default.
        environment: Placeholder values and active profiles.
        allow_definition_overriding: If False, a name defined twice fails the
            refresh with :class:`~stratum.errors.DuplicateDefinitionError`.
        strict_wildcards: If True, a wildcard location matching nothing fails
            the refresh. Only applies to the default locator.
        post_processors: Applied, in order, to every component created.
        name: Used in log messages.
    """

    def __init__(
        self,
        config_locations: Union[str, Iterable[str]] = (),
        parent: Optional["ApplicationContext"] = None,
        refresh: bool = True,
        *,
        locator: Optional[ResourceLocator] = None,
        reader: Optional[DefinitionReader] = None,
        environment: Optional[Environment] = None,
        allow_definition_overriding: bool = True,
        strict_wildcards: bool = False,
        post_processors: Iterable[PostProcessor] = (),
        name: Optional[str] = None,
    ):
        self.name = name or f"{type(self).__name__}@{id(self):x}"
        if reader is not None:
            self.environment = environment or reader.environment
            self.locator = locator or reader.locator
            self.reader = reader
        else:
            self.environment = environment or Environment()
            self.locator = locator or FileSystemResourceLocator(strict_wildcards=strict_wildcards)
            self.reader = DefinitionReader(locator=self.locator, environment=self.environment)
        self.allow_definition_overriding = allow_definition_overriding

        self._parent_ref = weakref.ref(parent) if parent is not None else None
        self._post_processors = list(post_processors)
        self._config_locations: list[str] = []
        self._definitions: list[ComponentDefinition] = []

        self._state = ContextState.UNREFRESHED
        self._snapshot: Optional[_Snapshot] = None
        self._refresh_lock = threading.Lock()
        self._condition = threading.Condition()
        self._local = threading.local()

        if isinstance(config_locations, str):
            config_locations = [config_locations]
        self.set_config_locations(*config_locations)

        if refresh:
            self.refresh()

    @property
    def state(self) -> ContextState:
        return self._state

    @property
    def parent(self) -> Optional["ApplicationContext"]:
        """The parent context, or None if none was configured.

        Raises:
            ContextStateError: If the parent has been garbage collected.
        """
        if self._parent_ref is None:
            return None
        parent = self._parent_ref()
        if parent is None:
            raise ContextStateError(f"Parent of {self.name} no longer exists")
        return parent

    @property
    def config_locations(self) -> tuple[str, ...]:
        return tuple(self._config_locations)

    def set_config_locations(self, *locations: str):
        """Replace the configuration locations.

        Raises:
            ContextStateError: If the context has been refreshed or closed.
            ConfigurationError: If a placeholder in a location cannot be resolved.
        """
        self._check_configurable()
        self._config_locations = [
            self.environment.resolve_placeholders(location.strip()) for location in locations
        ]

    def add_config_location(self, location: str):
        """Append a configuration location, loaded after those already set."""
        self._check_configurable()
        self._config_locations.append(self.environment.resolve_placeholders(location.strip()))

    def register_definition(self, definition: ComponentDefinition):
        """Add a definition that is registered before any location is loaded."""
        self._check_configurable()
        self._definitions.append(definition)

    def provides(self, name: Optional[str] = None, **options) -> Callable:
        """Decorator to register a class or function as a component factory.

        Args:
            name: Optional component name; defaults to the class name, or the
                function name with any 'make_' prefix removed.
            **options: Passed on to
                :func:`~stratum.definitions.definition_from_callable`
                (``scope``, ``lazy``, ``depends_on``, ``profiles``...).

        Example:
            @context.provides(scope="prototype")
            def make_session(database: Annotated[Database, "db"]) -> Session:
                return Session(database)
        """

        def decorator(obj):
            self.register_definition(definition_from_callable(obj, name, **options))
            return obj

        return decorator

    def refresh(self):
        """Load all definitions and build the component graph.

        Raises:
            AlreadyRefreshingError: If another thread is refreshing this context.
            ContextClosedError: If the context has been closed.
            ConfigurationError: If there is nothing to load.
            ContextStateError: If called from inside a lookup on this context.
            StratumError: Whatever loading or building raised; the context is
                left unchanged.
        """
        if not self._refresh_lock.acquire(blocking=False):
            raise AlreadyRefreshingError(f"{self.name} is already being refreshed")
        try:
            if self._state is ContextState.CLOSED:
                raise ContextClosedError(f"{self.name} has been closed")
            self._check_not_in_lookup("refreshed")
            locations = list(self._config_locations)
            definitions = list(self._definitions)
            if not locations and not definitions:
                raise ConfigurationError(
                    f"{self.name} has no configuration locations or definitions to load"
                )

            logger.info("Refreshing %s", self.name)
            registry = DefinitionRegistry(self.allow_definition_overriding)
            for definition in definitions:
                registry.register(definition)
            self.reader.load_locations(registry, locations)

            parent = _ParentView(self) if self.parent is not None else None
            graph = GraphBuilder(
                registry, parent, ComponentBuilder(self._post_processors)
            ).build()
            self._publish(graph)
            logger.info(
                "Refreshed %s: %d components defined, %d built eagerly",
                self.name,
                len(registry),
                len(graph.singletons()),
            )
        finally:
            self._refresh_lock.release()

    def _publish(self, graph: ComponentGraph):
        with self._condition:
            if self._state is ContextState.CLOSED:
                graph.destroy()
                raise ContextClosedError(f"{self.name} was closed during refresh")
            previous = self._snapshot
            self._snapshot = _Snapshot(graph)
            self._state = ContextState.ACTIVE
            if previous is not None:
                self._condition.wait_for(lambda: previous.in_flight == 0)

        if previous is not None:
            logger.debug("Destroying components of the previous refresh of %s", self.name)
            previous.graph.destroy()

    def close(self):
        """Destroy all singletons, in reverse creation order, and close the context.

        Waits for lookups in progress to finish. Closing twice is a no-op.

        Raises:
            ContextStateError: If the context was never refreshed, or if
                called from inside a lookup on this context.
        """
        with self._condition:
            if self._state is ContextState.CLOSED:
                return
            if self._state is ContextState.UNREFRESHED:
                raise ContextStateError(f"{self.name} cannot be closed before it is refreshed")
            self._check_not_in_lookup("closed")

            logger.info("Closing %s", self.name)
            snapshot = self._snapshot
            self._snapshot = None
            self._state = ContextState.CLOSED
            self._condition.wait_for(lambda: snapshot.in_flight == 0)

        snapshot.graph.destroy()

    @contextmanager
    def _lookup(self) -> Iterator[ComponentGraph]:
        with self._condition:
            if self._state is ContextState.CLOSED:
                raise ContextClosedError(f"{self.name} has been closed")
            if self._snapshot is None:
                raise ContextStateError(f"{self.name} has not been refreshed")
            snapshot = self._snapshot
            snapshot.in_flight += 1
        self._local.depth = self._lookup_depth() + 1
        try:
            yield snapshot.graph
        finally:
            self._local.depth -= 1
            with self._condition:
                snapshot.in_flight -= 1
                self._condition.notify_all()

    def _lookup_depth(self) -> int:
        return getattr(self._local, "depth", 0)

    def _check_not_in_lookup(self, transition: str):
        # Waiting for in-flight lookups would wait for this thread's own.
        if self._lookup_depth():
            raise ContextStateError(
                f"{self.name} cannot be {transition} from inside one of its own lookups"
            )

    def get_component(self, key: ComponentKey, expected_type: Optional[type] = None) -> Any:
        """Return a component by name, alias or type.

        Names are looked up here first, then in the parent. A type must match
        exactly one component here; if none matches, the parent is asked.

        Raises:
            NoSuchComponentError: If neither this context nor its ancestors
                provide the component, or a type matches several components.
            TypeMismatchError: If the component is not an ``expected_type``.
            ContextStateError: If the context has not been refreshed.
            ContextClosedError: If the context has been closed.
        """
        with self._lookup() as graph:
            if isinstance(key, str):
                component = self._get_by_name(graph, key)
            elif isinstance(key, type):
                component = self._get_by_type(graph, key)
            else:
                raise TypeError(f"Component key must be a name or a type, not {key!r}")

        if expected_type is not None and not isinstance(component, expected_type):
            raise TypeMismatchError(_key_name(key), expected_type, type(component))
        return component

    def _get_by_name(self, graph: ComponentGraph, name: str) -> Any:
        if graph.contains(name):
            return graph.get(name)
        parent = self.parent
        if parent is None:
            raise NoSuchComponentError(name)
        return parent.get_component(name)

    def _get_by_type(self, graph: ComponentGraph, component_type: type) -> Any:
        candidates = graph.names_of_type(component_type)
        if len(candidates) > 1:
            raise NoSuchComponentError(
                component_type,
                f"No unique component found for type {component_type.__qualname__}: {candidates}",
            )
        if candidates:
            return graph.get(candidates[0])
        parent = self.parent
        if parent is None:
            raise NoSuchComponentError(
                component_type, f"No component of type {component_type.__qualname__}"
            )
        return parent.get_component(component_type)

    def get_components_of_type(self, component_type: type) -> dict[str, Any]:
        """All components defined in this context (not its ancestors) of a type."""
        with self._lookup() as graph:
            return {name: graph.get(name) for name in graph.names_of_type(component_type)}

    def contains_component(self, name: str) -> bool:
        """True if this context or one of its ancestors defines ``name``."""
        if self.contains_local_component(name):
            return True
        parent = self.parent
        return parent is not None and parent.contains_component(name)

    def contains_local_component(self, name: str) -> bool:
        with self._lookup() as graph:
            return graph.contains(name)

    def component_names(self) -> list[str]:
        """Names defined in this context, in registration order."""
        with self._lookup() as graph:
            return graph.names()

    def get_definition(self, name: str) -> ComponentDefinition:
        with self._lookup() as graph:
            return graph.registry.get(name)

    def _check_configurable(self):
        if self._state is ContextState.CLOSED:
            raise ContextClosedError(f"{self.name} has been closed")
        if self._state is ContextState.ACTIVE:
            raise ContextStateError(f"{self.name} is active; its configuration can no longer change")
        if self._refresh_lock.locked():
            raise ContextStateError(f"{self.name} is being refreshed; its configuration cannot change")

    def __getitem__(self, key: ComponentKey) -> Any:
        return self.get_component(key)

    def __contains__(self, name: str) -> bool:
        return self.contains_component(name)

    def __enter__(self) -> "ApplicationContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._state is ContextState.ACTIVE:
            self.close()

    def __repr__(self) -> str:
        return f"<{self.name} {self._state.value}>"


def _key_name(key: ComponentKey) -> str:
    return key if isinstance(key, str) else key.__qualname__
