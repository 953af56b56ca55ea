"""Domain models used throughout the framework."""

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional, Union
from uuid import UUID

__all__ = [
    "Scope",
    "Reference",
    "ComponentDefinition",
    "MaterialisedComponent",
]


class Scope(enum.Enum):
    """How many instances a context hands out for one definition."""

    SINGLETON = "singleton"
    """One shared instance per context."""

    PROTOTYPE = "prototype"
    """A new instance on every lookup, never built eagerly."""


@dataclass(frozen=True)
class Reference:
    """A value standing for the component registered under ``name``.

    References may appear anywhere a definition holds a value: constructor
    arguments, properties, and inside lists, tuples and dicts.
    """

    name: str


@dataclass(frozen=True)
class ComponentDefinition:
    """Blueprint for one managed component.

    Attributes:
        name: Identifier of the component, unique within a registry.
        factory: The callable creating the instance, or a ``"module:attr"``
            string naming it.
        args: Positional arguments passed to the factory.
        kwargs: Keyword arguments passed to the factory.
        properties: Attributes assigned on the instance after construction.
        scope: Singleton or prototype.
        lazy: If True, a singleton is built on first lookup instead of during refresh.
        depends_on: Components that must be built first without being injected.
        init_method: Name of a method called once the instance is configured.
        destroy_method: Name of a method called when the context is closed.
        profiles: Profile expressions under which the definition is active.
        aliases: Alternative names for the component.
        source: Description of where the definition was read from.
        declared_types: Types the component satisfies, when known up front.
    """

    name: str
    factory: Union[Callable, str]
    args: tuple = ()
    kwargs: dict[str, Any] = field(default_factory=dict)
    properties: dict[str, Any] = field(default_factory=dict)
    scope: Scope = Scope.SINGLETON
    lazy: bool = False
    depends_on: tuple[str, ...] = ()
    init_method: Optional[str] = None
    destroy_method: Optional[str] = None
    profiles: tuple[str, ...] = ()
    aliases: tuple[str, ...] = ()
    source: Optional[str] = None
    declared_types: tuple[type, ...] = ()

    @property
    def is_singleton(self) -> bool:
        return self.scope is Scope.SINGLETON

    @property
    def is_eager(self) -> bool:
        return self.is_singleton and not self.lazy

    def dependencies(self) -> list[str]:
        """Names this definition needs, in first-seen order and without repeats."""
        seen: dict[str, None] = {}
        values = [*self.args, *self.kwargs.values(), *self.properties.values()]
        for reference in _references_in(values):
            seen.setdefault(reference.name)
        for name in self.depends_on:
            seen.setdefault(name)
        return list(seen)


def _references_in(value: Any) -> Iterator[Reference]:
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _references_in(item)
    elif isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            yield from _references_in(item)


@dataclass(frozen=True)
class MaterialisedComponent:
    """
    Represents a resolved and instantiated component.

    Attributes:
        id: The unique id of this component instance.
        name: The component name.
        declared_types: Types this component can satisfy.
        component: The instantiated component object.
        dependencies: Names of the components this one was built from.
        definition: The definition the component was built from.
    """

    id: UUID
    name: str
    declared_types: tuple[type, ...]
    component: Any
    dependencies: list[str]
    definition: ComponentDefinition
