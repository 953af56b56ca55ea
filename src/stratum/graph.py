"""Validating definitions and materialising them into a component graph.

Building happens in two passes over a :class:`DefinitionRegistry`:

1. every definition, whatever its scope or laziness, is checked with a
   depth-first walk over its references. Unknown names and cycles are
   reported here, so a context never becomes active with a graph that
   would fail later on lookup;
2. singletons that are not lazy are instantiated in registration order,
   each after the components it depends on.

Lazy singletons are built on first lookup; prototypes on every lookup.
"""

import enum
import logging
import threading
from typing import Any, Optional

from stratum.component_builder import ComponentBuilder
from stratum.definitions import provided_types, resolve_factory
from stratum.domain import ComponentDefinition, MaterialisedComponent
from stratum.errors import (
    ComponentCreationError,
    CyclicDependencyError,
    DefinitionError,
    NoSuchComponentError,
    UnresolvedDependencyError,
)
from stratum.registry import DefinitionRegistry

__all__ = ["ComponentGraph", "GraphBuilder"]

logger = logging.getLogger(__name__)


class _Mark(enum.Enum):
    VISITING = "visiting"
    DONE = "done"


class ComponentGraph:
    """Materialised components of one context, keyed by name.

    Lookups are safe from several threads: built singletons are read without
    locking and lazy singletons are created under a lock.

    Args:
        registry: The frozen registry the graph was built from.
        parent: A context consulted for names not defined locally.
        component_builder: Creates instances from definitions.
    """

    def __init__(
        self,
        registry: DefinitionRegistry,
        parent=None,
        component_builder: Optional[ComponentBuilder] = None,
    ):
        self.registry = registry
        self._parent = parent
        self._component_builder = component_builder or ComponentBuilder()
        self._singletons: dict[str, MaterialisedComponent] = {}
        self._lock = threading.RLock()

    def get(self, name: str) -> Any:
        """Return the component registered under ``name`` or one of its aliases.

        Raises:
            NoSuchComponentError: If the name is not defined in this graph.
            ComponentCreationError: If a lazy singleton or prototype fails to build.
        """
        return self.materialise(name).component

    def materialise(self, name: str) -> MaterialisedComponent:
        if name not in self.registry:
            raise NoSuchComponentError(name)
        canonical = self.registry.canonical_name(name)

        existing = self._singletons.get(canonical)
        if existing is not None:
            return existing

        definition = self.registry.get(canonical)
        if not definition.is_singleton:
            return self._create(definition)

        with self._lock:
            existing = self._singletons.get(canonical)
            if existing is None:
                existing = self._create(definition)
                self._singletons[canonical] = existing
        return existing

    def contains(self, name: str) -> bool:
        return name in self.registry

    def names(self) -> list[str]:
        return list(self.registry)

    def singletons(self) -> list[MaterialisedComponent]:
        """Singletons built so far, in creation order."""
        return list(self._singletons.values())

    def declared_types(self, name: str) -> tuple[type, ...]:
        """Types the component can be looked up by, without building it."""
        canonical = self.registry.canonical_name(name)
        built = self._singletons.get(canonical)
        if built is not None:
            return built.declared_types
        definition = self.registry.get(canonical)
        if definition.declared_types:
            return definition.declared_types
        return provided_types(resolve_factory(definition.factory))

    def names_of_type(self, component_type: type) -> list[str]:
        return [
            name
            for name in self.registry
            if any(issubclass(t, component_type) for t in self.declared_types(name))
        ]

    def destroy(self):
        """Release singletons in reverse creation order.

        Each singleton's ``destroy_method`` is called if it has one, otherwise
        its ``close`` method if it has one. A failing callback is logged and
        does not stop the remaining components being released.
        """
        with self._lock:
            singletons = list(self._singletons.values())
            self._singletons.clear()

        for materialised in reversed(singletons):
            _destroy(materialised)

    def _create(self, definition: ComponentDefinition) -> MaterialisedComponent:
        for name in definition.depends_on:
            self._resolve(name)
        logger.debug("Creating %s component '%s'", definition.scope.value, definition.name)
        return self._component_builder.build(definition, self._resolve)

    def _resolve(self, name: str) -> Any:
        if name in self.registry:
            return self.get(name)
        if self._parent is None:
            raise NoSuchComponentError(name)
        return self._parent.get_component(name)


class GraphBuilder:
    """Validate a registry and eagerly build its non-lazy singletons.

    Args:
        registry: Definitions to build. It is frozen by :meth:`build`.
        parent: A context whose components satisfy names not defined locally.
        component_builder: Creates instances from definitions.
    """

    def __init__(
        self,
        registry: DefinitionRegistry,
        parent=None,
        component_builder: Optional[ComponentBuilder] = None,
    ):
        self._registry = registry
        self._parent = parent
        self._component_builder = component_builder

    def build(self) -> ComponentGraph:
        """Build the graph.

        Raises:
            UnresolvedDependencyError: If a definition refers to an unknown name.
            CyclicDependencyError: If definitions depend on each other in a cycle.
            ComponentCreationError: If a factory cannot be imported, or creating
                an eager singleton fails. Singletons already built are destroyed
                before the error propagates.
        """
        self.validate()
        self._registry.freeze()
        graph = ComponentGraph(self._registry, self._parent, self._component_builder)

        try:
            for name, definition in self._registry.all():
                if definition.is_eager:
                    graph.get(name)
        except Exception:
            graph.destroy()
            raise

        logger.debug(
            "Built %d of %d components eagerly", len(graph.singletons()), len(self._registry)
        )
        return graph

    def validate(self):
        """Check that every reference resolves and no dependencies form a cycle."""
        marks: dict[str, _Mark] = {}
        for name, definition in self._registry.all():
            try:
                resolve_factory(definition.factory)
            except DefinitionError as e:
                raise ComponentCreationError(name, str(e)) from e
            self._visit(name, marks)

    def _visit(self, root: str, marks: dict[str, _Mark]):
        if root in marks:
            return

        marks[root] = _Mark.VISITING
        stack = [(root, iter(self._registry.get(root).dependencies()))]

        while stack:
            name, pending = stack[-1]
            dependency = next(pending, None)
            if dependency is None:
                marks[name] = _Mark.DONE
                stack.pop()
                continue

            if dependency not in self._registry:
                if self._parent is not None and self._parent.contains_component(dependency):
                    continue
                raise UnresolvedDependencyError(dependency, name)

            canonical = self._registry.canonical_name(dependency)
            mark = marks.get(canonical)
            if mark is _Mark.VISITING:
                path = [entry for entry, _ in stack]
                raise CyclicDependencyError(path[path.index(canonical):] + [canonical])
            if mark is None:
                marks[canonical] = _Mark.VISITING
                stack.append((canonical, iter(self._registry.get(canonical).dependencies())))


def _destroy(materialised: MaterialisedComponent):
    component_obj = materialised.component
    method_name = materialised.definition.destroy_method
    if method_name:
        callback = getattr(component_obj, method_name, None)
        if not callable(callback):
            logger.warning(
                "Component '%s' has no callable destroy method '%s'",
                materialised.name,
                method_name,
            )
            return
    else:
        callback = getattr(component_obj, "close", None)
        if not callable(callback):
            return

    logger.debug("Destroying component '%s'", materialised.name)
    try:
        callback()
    except Exception:
        logger.warning("Destroying component '%s' failed", materialised.name, exc_info=True)
