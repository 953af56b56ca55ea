"""Loading definition sources into a registry.

The reader drives one :class:`~stratum.formats.DefinitionFormat` over
resources supplied by a :class:`~stratum.resources.ResourceLocator`. It owns
everything that is not specific to a format:

* imports, resolved relative to the importing resource and loaded before
  the importing resource's own definitions, so a source overrides what it
  imports;
* detection of import cycles (a diamond, where two sources import the same
  third one, is allowed);
* profile filtering and ``${...}`` placeholder resolution.
"""

import dataclasses
import logging
import threading
from typing import Any, Iterable, Optional

from stratum.domain import ComponentDefinition
from stratum.environment import Environment
from stratum.errors import ConfigurationError, CyclicImportError, DefinitionParseError
from stratum.formats import DefinitionFormat, YamlDefinitionFormat
from stratum.registry import DefinitionRegistry
from stratum.resources import FileSystemResourceLocator, Resource, ResourceLocator

__all__ = ["DefinitionReader"]

logger = logging.getLogger(__name__)


class DefinitionReader:
    """Parses resources and registers their definitions.

    Args:
        fmt: The definition format; YAML by default.
        locator: Resolves configuration locations and prefixed imports.
        environment: Supplies placeholder values and active profiles.
    """

    def __init__(
        self,
        fmt: Optional[DefinitionFormat] = None,
        locator: Optional[ResourceLocator] = None,
        environment: Optional[Environment] = None,
    ):
        self.format = fmt or YamlDefinitionFormat()
        self.locator = locator or FileSystemResourceLocator()
        self.environment = environment or Environment()
        self._local = threading.local()

    def load_locations(self, registry: DefinitionRegistry, locations: Iterable[str]) -> int:
        """Load every resource each location expands to, in order.

        Returns:
            The number of definitions registered.
        """
        count = 0
        for location in locations:
            for resource in self.locator.resolve_all(location):
                count += self.load_into(registry, resource)
        return count

    def load_into(self, registry: DefinitionRegistry, resource: Resource) -> int:
        """Parse ``resource`` and register its definitions, imports first.

        Returns:
            The number of definitions registered, including imported ones.

        Raises:
            CyclicImportError: If the resource is already being loaded further
                up the import chain.
            DefinitionParseError: If the resource is malformed.
            ResourceNotFoundError: If an import cannot be resolved.
        """
        loading = self._loading()
        if resource in loading:
            chain = loading[loading.index(resource):] + [resource]
            raise CyclicImportError([r.location for r in chain])

        loading.append(resource)
        try:
            parsed = self.format.parse(resource.read_bytes(), resource.location)
            count = 0
            for location in parsed.imports:
                for imported in self.locator.resolve_all(
                    self._placeholders(location, resource), relative_to=resource
                ):
                    count += self.load_into(registry, imported)

            for definition in parsed.definitions:
                if not self.environment.accepts(definition.profiles):
                    logger.debug(
                        "Skipping component '%s' from %s: profiles %s not active",
                        definition.name,
                        resource.location,
                        list(definition.profiles),
                    )
                    continue
                registry.register(self._resolve_definition(definition, resource))
                count += 1
        finally:
            loading.pop()

        logger.debug("Loaded %d component definitions from %s", count, resource.description)
        return count

    def _loading(self) -> list[Resource]:
        if not hasattr(self._local, "resources"):
            self._local.resources = []
        return self._local.resources

    def _resolve_definition(
        self, definition: ComponentDefinition, resource: Resource
    ) -> ComponentDefinition:
        def resolve(value: Any) -> Any:
            if isinstance(value, str):
                return self._placeholders(value, resource)
            if isinstance(value, dict):
                return {k: resolve(v) for k, v in value.items()}
            if isinstance(value, (list, tuple)):
                return type(value)(resolve(v) for v in value)
            return value

        return dataclasses.replace(
            definition,
            factory=resolve(definition.factory),
            args=resolve(definition.args),
            kwargs=resolve(definition.kwargs),
            properties=resolve(definition.properties),
        )

    def _placeholders(self, text: str, resource: Resource) -> str:
        try:
            return self.environment.resolve_placeholders(text)
        except ConfigurationError as e:
            raise DefinitionParseError(resource.location, str(e)) from e
