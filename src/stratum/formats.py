"""Definition source formats.

A format turns the bytes of one resource into component definitions plus the
locations that resource imports. It knows nothing about registries, other
resources or the environment; the :mod:`stratum.reader` takes care of those.

The YAML format reads documents shaped like::

    imports:
      - common.yaml
    components:
      person:
        class: myapp.model:Person
        args: [Alice]
        properties:
          age: 30
          friend: {ref: bob}
        scope: singleton
        lazy: false
        depends_on: [database]
        init_method: start
        destroy_method: stop
        profiles: [dev]
        aliases: [human]
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

from stratum.domain import ComponentDefinition, Reference, Scope
from stratum.errors import DefinitionParseError

__all__ = ["ParsedSource", "DefinitionFormat", "YamlDefinitionFormat"]


@dataclass(frozen=True)
class ParsedSource:
    """The content of one definition source.

    Attributes:
        definitions: Definitions in the order the source declares them.
        imports: Locations of other sources, in declaration order.
    """

    definitions: list[ComponentDefinition] = field(default_factory=list)
    imports: list[str] = field(default_factory=list)


class DefinitionFormat(ABC):
    """Parses one resource's bytes into a :class:`ParsedSource`."""

    @abstractmethod
    def parse(self, data: bytes, location: str) -> ParsedSource:
        """Parse ``data`` read from ``location``.

        Raises:
            DefinitionParseError: If the data is malformed.
        """


_TOP_LEVEL_KEYS = {"imports", "components"}
_COMPONENT_KEYS = {
    "class",
    "factory",
    "args",
    "properties",
    "scope",
    "lazy",
    "depends_on",
    "init_method",
    "destroy_method",
    "profiles",
    "aliases",
}


class YamlDefinitionFormat(DefinitionFormat):
    """Reads definitions from YAML documents using PyYAML's safe loader."""

    def parse(self, data: bytes, location: str) -> ParsedSource:
        root, document = _load(data, location)
        if document is None:
            return ParsedSource()
        if not isinstance(document, dict):
            raise DefinitionParseError(location, "document must be a mapping", 1)

        unknown = set(document) - _TOP_LEVEL_KEYS
        if unknown:
            raise DefinitionParseError(
                location, f"unknown top-level keys {sorted(map(str, unknown))}", 1
            )

        lines = _component_lines(root)
        components = document.get("components") or {}
        if not isinstance(components, dict):
            raise DefinitionParseError(location, "'components' must be a mapping")

        definitions = [
            _ComponentParser(location, str(name), lines.get(str(name))).parse(body)
            for name, body in components.items()
        ]
        return ParsedSource(definitions, _string_list(document.get("imports"), "imports", location))


class _ComponentParser:
    def __init__(self, location: str, name: str, line: Optional[int]):
        self._location = location
        self._name = name
        self._line = line

    def error(self, message: str) -> DefinitionParseError:
        return DefinitionParseError(
            self._location, f"component '{self._name}': {message}", self._line
        )

    def parse(self, body: Any) -> ComponentDefinition:
        if not isinstance(body, dict):
            raise self.error("definition must be a mapping")
        unknown = set(body) - _COMPONENT_KEYS
        if unknown:
            raise self.error(f"unknown keys {sorted(map(str, unknown))}")

        if ("class" in body) == ("factory" in body):
            raise self.error("exactly one of 'class' or 'factory' is required")
        factory = body.get("class", body.get("factory"))
        if not isinstance(factory, str) or not factory:
            raise self.error("'class'/'factory' must be a 'module:attribute' string")

        args, kwargs = self._arguments(body.get("args"))
        properties = body.get("properties") or {}
        if not isinstance(properties, dict):
            raise self.error("'properties' must be a mapping")

        try:
            scope = Scope(body.get("scope", Scope.SINGLETON.value))
        except ValueError:
            raise self.error(
                f"unknown scope {body['scope']!r}, expected one of "
                f"{[s.value for s in Scope]}"
            ) from None

        lazy = body.get("lazy", False)
        if not isinstance(lazy, bool):
            raise self.error("'lazy' must be true or false")

        return ComponentDefinition(
            name=self._name,
            factory=factory,
            args=args,
            kwargs=kwargs,
            properties={str(k): self._value(v) for k, v in properties.items()},
            scope=scope,
            lazy=lazy,
            depends_on=self._names(body, "depends_on"),
            init_method=self._method(body, "init_method"),
            destroy_method=self._method(body, "destroy_method"),
            profiles=self._names(body, "profiles"),
            aliases=self._names(body, "aliases"),
            source=self._location,
        )

    def _arguments(self, raw: Any) -> tuple[tuple, dict[str, Any]]:
        if raw is None:
            return (), {}
        if isinstance(raw, list):
            return tuple(self._value(v) for v in raw), {}
        if isinstance(raw, dict):
            return (), {str(k): self._value(v) for k, v in raw.items()}
        raise self.error("'args' must be a list or a mapping")

    def _value(self, raw: Any) -> Any:
        if isinstance(raw, dict):
            if set(raw) == {"ref"}:
                if not isinstance(raw["ref"], str):
                    raise self.error("'ref' must name a component")
                return Reference(raw["ref"])
            return {k: self._value(v) for k, v in raw.items()}
        if isinstance(raw, list):
            return [self._value(v) for v in raw]
        return raw

    def _names(self, body: dict, key: str) -> tuple[str, ...]:
        try:
            return tuple(_string_list(body.get(key), key, self._location))
        except DefinitionParseError:
            raise self.error(f"'{key}' must be a string or a list of strings") from None

    def _method(self, body: dict, key: str) -> Optional[str]:
        value = body.get(key)
        if value is not None and not isinstance(value, str):
            raise self.error(f"'{key}' must be a method name")
        return value


def _load(data: bytes, location: str) -> tuple[Optional[yaml.Node], Any]:
    try:
        loader = yaml.SafeLoader(data)
    except yaml.reader.ReaderError as e:
        raise DefinitionParseError(location, f"{e.reason} at byte {e.position}") from e

    try:
        root = loader.get_single_node()
        document = loader.construct_document(root) if root is not None else None
        return root, document
    except yaml.MarkedYAMLError as e:
        mark = e.problem_mark or e.context_mark
        raise DefinitionParseError(
            location,
            e.problem or str(e),
            mark.line + 1 if mark else None,
            mark.column + 1 if mark else None,
        ) from e
    except yaml.YAMLError as e:
        raise DefinitionParseError(location, str(e)) from e
    finally:
        loader.dispose()


def _component_lines(root: Optional[yaml.Node]) -> dict[str, int]:
    if not isinstance(root, yaml.MappingNode):
        return {}
    for key_node, value_node in root.value:
        if key_node.value == "components" and isinstance(value_node, yaml.MappingNode):
            return {
                str(name_node.value): name_node.start_mark.line + 1
                for name_node, _ in value_node.value
            }
    return {}


def _string_list(raw: Any, key: str, location: str) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, list) and all(isinstance(item, str) for item in raw):
        return list(raw)
    raise DefinitionParseError(location, f"'{key}' must be a string or a list of strings")
