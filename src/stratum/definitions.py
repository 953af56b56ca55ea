"""Building component definitions from plain classes and functions.

Dependencies are read from the callable's signature:

* ``Annotated[T, "name"]`` refers to the component registered as ``name``;
* any other required parameter refers to the component named after the
  parameter itself;
* parameters with default values are left to their defaults unless they are
  ``Annotated``.
"""

import inspect
import pkgutil
from typing import Annotated, Any, Callable, Optional, Union, get_args, get_origin, get_type_hints

from stratum.domain import ComponentDefinition, Reference, Scope
from stratum.errors import DefinitionError

__all__ = [
    "definition_from_callable",
    "inferred_name",
    "provided_types",
    "resolve_factory",
]


def inferred_name(target: Any) -> str:
    """Derive component name from class or function name, removing 'make_' prefix if present.

    Example:
        >>> inferred_name(Database)       # Returns "Database"
        >>> inferred_name(make_database)  # Returns "database"
        >>> inferred_name(my_service)     # Returns "my_service"
    """
    if inspect.isclass(target):
        return target.__name__

    if target.__name__.startswith("make_"):
        return target.__name__[5:]
    else:
        return target.__name__


def definition_from_callable(
    target: Callable,
    name: Optional[str] = None,
    scope: Union[Scope, str] = Scope.SINGLETON,
    lazy: bool = False,
    depends_on: tuple[str, ...] = (),
    init_method: Optional[str] = None,
    destroy_method: Optional[str] = None,
    profiles: tuple[str, ...] = (),
    aliases: tuple[str, ...] = (),
) -> ComponentDefinition:
    """Create a definition whose factory is ``target``.

    Args:
        target: A class or function.
        name: Component name; defaults to :func:`inferred_name`.

    Raises:
        DefinitionError: If ``target`` is neither a class nor a function.
    """
    if not (inspect.isclass(target) or inspect.isfunction(target)):
        raise DefinitionError(f"{target!r} is not a class or function")

    return ComponentDefinition(
        name=name or inferred_name(target),
        factory=target,
        kwargs=_injected_parameters(target),
        scope=Scope(scope),
        lazy=lazy,
        depends_on=tuple(depends_on),
        init_method=init_method,
        destroy_method=destroy_method,
        profiles=tuple(profiles),
        aliases=tuple(aliases),
        declared_types=provided_types(target),
    )


def provided_types(factory: Callable) -> tuple[type, ...]:
    """Types a factory's products can be looked up by.

    For classes this is the class and its bases, excluding ``object``. For
    functions it is the return annotation, if it is a class.
    """
    if inspect.isclass(factory):
        return tuple(t for t in factory.__mro__ if t is not object)
    try:
        return_type = get_type_hints(factory).get("return")
    except (NameError, TypeError):
        return ()
    return (return_type,) if inspect.isclass(return_type) else ()


def resolve_factory(factory: Union[Callable, str]) -> Callable:
    """Return the callable a definition's factory names.

    Raises:
        DefinitionError: If a ``"module:attr"`` reference cannot be imported,
            or the result is not callable.
    """
    if isinstance(factory, str):
        try:
            factory = pkgutil.resolve_name(factory)
        except (ImportError, AttributeError, ValueError) as e:
            raise DefinitionError(f"Cannot import factory '{factory}': {e}") from e
    if not callable(factory):
        raise DefinitionError(f"Factory {factory!r} is not callable")
    return factory


def _injected_parameters(target: Callable) -> dict[str, Reference]:
    sig = inspect.signature(target)
    annotated = target.__init__ if inspect.isclass(target) else target
    try:
        hints = get_type_hints(annotated, include_extras=True)
    except (NameError, TypeError) as e:
        raise DefinitionError(f"Cannot read annotations of {target!r}: {e}") from e
    injected = {}

    for name, param in sig.parameters.items():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD, param.POSITIONAL_ONLY):
            continue
        component_name = _annotated_name(hints.get(name))
        if component_name is None and param.default is not param.empty:
            continue
        injected[name] = Reference(component_name or name)

    return injected


def _annotated_name(annotation) -> Optional[str]:
    if get_origin(annotation) is not Annotated:
        return None
    _, *metadata = get_args(annotation)
    return next((m for m in metadata if isinstance(m, str)), None)
