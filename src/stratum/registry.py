"""Registry of component definitions, prior to instantiation."""

import logging
from typing import Iterator

from stratum.domain import ComponentDefinition
from stratum.errors import (
    ConfigurationError,
    ContextStateError,
    DuplicateDefinitionError,
    NoSuchComponentError,
)

__all__ = ["DefinitionRegistry"]

logger = logging.getLogger(__name__)


class DefinitionRegistry:
    """Ordered mapping from component name to definition.

    Registration order is preserved and drives instantiation order. Registering
    a name again replaces the definition but keeps the position it was first
    registered at, so instantiation order stays stable when a later source
    overrides an earlier one.

    Args:
        allow_overriding: If False, registering an existing name raises
            :class:`DuplicateDefinitionError`.
    """

    def __init__(self, allow_overriding: bool = True):
        self.allow_overriding = allow_overriding
        self._definitions: dict[str, ComponentDefinition] = {}
        self._aliases: dict[str, str] = {}
        self._frozen = False

    def register(self, definition: ComponentDefinition):
        """Register a definition, along with its aliases.

        Raises:
            DuplicateDefinitionError: If the name is taken and overriding is disabled.
            ConfigurationError: If the name is already used as an alias.
            ContextStateError: If the registry has been frozen.
        """
        self._check_not_frozen()
        name = definition.name
        if name in self._aliases:
            raise ConfigurationError(
                f"Cannot register definition '{name}': name is an alias for '{self._aliases[name]}'"
            )

        existing = self._definitions.get(name)
        if existing is not None:
            if not self.allow_overriding:
                raise DuplicateDefinitionError(name, existing.source, definition.source)
            logger.info(
                "Overriding definition for component '%s' from %s with definition from %s",
                name,
                existing.source or "code",
                definition.source or "code",
            )
            for alias in existing.aliases:
                if self._aliases.get(alias) == name:
                    del self._aliases[alias]

        self._definitions[name] = definition
        for alias in definition.aliases:
            self.register_alias(alias, name)

    def register_alias(self, alias: str, name: str):
        """Make ``alias`` an alternative name for ``name``.

        Raises:
            ConfigurationError: If the alias is a definition name, or would
                create an alias cycle.
        """
        self._check_not_frozen()
        if alias == name:
            return
        if alias in self._definitions:
            raise ConfigurationError(
                f"Cannot register alias '{alias}' for '{name}': a definition has that name"
            )
        if self.canonical_name(name) == alias:
            raise ConfigurationError(f"Alias cycle between '{alias}' and '{name}'")
        self._aliases[alias] = name

    def canonical_name(self, name: str) -> str:
        """Follow aliases from ``name`` to the name a definition is registered under."""
        seen = {name}
        while name in self._aliases:
            name = self._aliases[name]
            if name in seen:
                raise ConfigurationError(f"Alias cycle involving '{name}'")
            seen.add(name)
        return name

    def get(self, name: str) -> ComponentDefinition:
        """Look up a definition by name or alias.

        Raises:
            NoSuchComponentError: If nothing is registered under ``name``.
        """
        try:
            return self._definitions[self.canonical_name(name)]
        except KeyError:
            raise NoSuchComponentError(name, f"No definition named '{name}'") from None

    def remove(self, name: str):
        """Remove a definition and the aliases pointing at it.

        Raises:
            NoSuchComponentError: If nothing is registered under ``name``.
            ContextStateError: If the registry has been frozen.
        """
        self._check_not_frozen()
        canonical = self.canonical_name(name)
        if canonical not in self._definitions:
            raise NoSuchComponentError(name, f"No definition named '{name}'")
        del self._definitions[canonical]
        self._aliases = {
            alias: target
            for alias, target in self._aliases.items()
            if self.canonical_name(target) != canonical and alias != name
        }

    def all(self) -> list[tuple[str, ComponentDefinition]]:
        """All definitions, in the order their names were first registered."""
        return list(self._definitions.items())

    def aliases(self) -> dict[str, str]:
        return dict(self._aliases)

    def freeze(self):
        """Disallow further changes; done once a component graph is built from it."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_not_frozen(self):
        if self._frozen:
            raise ContextStateError("Definition registry is frozen")

    def __contains__(self, name: str) -> bool:
        return self.canonical_name(name) in self._definitions

    def __iter__(self) -> Iterator[str]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)
