"""Utilities for constructing MaterialisedComponent objects.

This module provides the ComponentBuilder class, which is responsible for
invoking definition factories, wiring the resulting objects, and wrapping
them as MaterialisedComponent instances. It supports a post-processor
pattern that allows components to be inspected or replaced after creation.
"""

import uuid
from functools import reduce
from typing import Any, Callable, Iterable

from stratum.definitions import provided_types, resolve_factory
from stratum.domain import ComponentDefinition, MaterialisedComponent, Reference
from stratum.errors import ComponentCreationError, DefinitionError

__all__ = ["ComponentBuilder", "PostProcessor"]

PostProcessor = Callable[[MaterialisedComponent], MaterialisedComponent]


class ComponentBuilder:
    """Build :class:`MaterialisedComponent` instances from definitions."""

    def __init__(self, post_processors: Iterable[PostProcessor] = ()):
        self._post_processors = list(post_processors)

    def build(
        self, definition: ComponentDefinition, resolve: Callable[[str], Any]
    ) -> MaterialisedComponent:
        """Invoke a definition's factory, wire the result and apply post-processors.

        Args:
            definition: The definition being instantiated.
            resolve: Returns the component registered under a name; used for
                every :class:`Reference` in the definition's values.

        Returns:
            The resulting :class:`MaterialisedComponent`.

        Raises:
            ComponentCreationError: If the factory cannot be imported or
                fails, or wiring the instance fails.
        """
        name = definition.name
        try:
            factory = resolve_factory(definition.factory)
        except DefinitionError as e:
            raise ComponentCreationError(name, str(e)) from e

        args = [_resolve_value(value, resolve) for value in definition.args]
        kwargs = {key: _resolve_value(value, resolve) for key, value in definition.kwargs.items()}
        properties = {
            key: _resolve_value(value, resolve) for key, value in definition.properties.items()
        }

        try:
            component_obj = factory(*args, **kwargs)
        except Exception as e:
            raise ComponentCreationError(name, f"factory raised {e!r}") from e

        for key, value in properties.items():
            try:
                setattr(component_obj, key, value)
            except (AttributeError, TypeError) as e:
                raise ComponentCreationError(name, f"cannot set property '{key}': {e}") from e

        if definition.init_method:
            _call_lifecycle_method(name, component_obj, definition.init_method)

        declared_types = tuple(
            dict.fromkeys(
                (definition.declared_types or provided_types(factory))
                + tuple(t for t in type(component_obj).__mro__ if t is not object)
            )
        )
        untransformed = MaterialisedComponent(
            uuid.uuid4(),
            name,
            declared_types,
            component_obj,
            definition.dependencies(),
            definition,
        )
        return reduce(
            lambda component, post_processor: post_processor(component),
            self._post_processors,
            untransformed,
        )


def _resolve_value(value: Any, resolve: Callable[[str], Any]) -> Any:
    if isinstance(value, Reference):
        return resolve(value.name)
    if isinstance(value, dict):
        return {key: _resolve_value(item, resolve) for key, item in value.items()}
    if isinstance(value, list):
        return [_resolve_value(item, resolve) for item in value]
    if isinstance(value, tuple):
        return tuple(_resolve_value(item, resolve) for item in value)
    return value


def _call_lifecycle_method(name: str, component_obj: Any, method_name: str):
    method = getattr(component_obj, method_name, None)
    if not callable(method):
        raise ComponentCreationError(name, f"no callable init method '{method_name}'")
    try:
        method()
    except Exception as e:
        raise ComponentCreationError(name, f"init method '{method_name}' raised {e!r}") from e
