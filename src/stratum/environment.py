"""Property sources, placeholder resolution and profile selection.

An :class:`Environment` answers two questions for the rest of the framework:
what value a ``${name}`` placeholder stands for, and which profiles are
active. Properties given explicitly take precedence over process
environment variables.
"""

import os
import re
from typing import Iterable, Mapping, Optional

from stratum.errors import ConfigurationError

__all__ = ["ACTIVE_PROFILES_PROPERTY", "Environment", "profiles_match"]

ACTIVE_PROFILES_PROPERTY = "STRATUM_PROFILES_ACTIVE"

_PLACEHOLDER = re.compile(r"\$\{([^${}:]+)(?::([^${}]*))?\}")


class Environment:
    """Layered property lookup with active profiles.

    Args:
        properties: Explicit properties, consulted first.
        active_profiles: Active profile names. If None, they are read from the
            comma-separated ``STRATUM_PROFILES_ACTIVE`` property.
        environ: Fallback mapping, ``os.environ`` by default.
    """

    def __init__(
        self,
        properties: Optional[Mapping[str, str]] = None,
        active_profiles: Optional[Iterable[str]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self._properties = dict(properties or {})
        self._environ = os.environ if environ is None else environ
        if active_profiles is None:
            raw = self.get_property(ACTIVE_PROFILES_PROPERTY) or ""
            active_profiles = (p.strip() for p in raw.split(","))
        self.active_profiles = frozenset(p for p in active_profiles if p)

    def get_property(self, name: str, default: Optional[str] = None) -> Optional[str]:
        if name in self._properties:
            return str(self._properties[name])
        return self._environ.get(name, default)

    def resolve_placeholders(self, text: str) -> str:
        """Replace ``${name}`` and ``${name:default}`` placeholders in ``text``.

        Resolved values are themselves resolved, so properties may refer to
        other properties.

        Raises:
            ConfigurationError: If a placeholder has no value and no default,
                or if placeholders refer to each other in a cycle.
        """
        return self._resolve(text, ())

    def _resolve(self, text: str, resolving: tuple[str, ...]) -> str:
        def substitute(match: re.Match) -> str:
            name, default = match.group(1).strip(), match.group(2)
            if name in resolving:
                raise ConfigurationError(
                    f"Circular placeholder reference: {' -> '.join(resolving + (name,))}"
                )
            value = self.get_property(name, default)
            if value is None:
                raise ConfigurationError(
                    f"Could not resolve placeholder '{name}' in value {text!r}"
                )
            return self._resolve(value, resolving + (name,))

        return _PLACEHOLDER.sub(substitute, text)

    def accepts(self, profiles: Iterable[str]) -> bool:
        return profiles_match(list(profiles), self.active_profiles)


def profiles_match(stated: list[str], selected: Iterable[str]) -> bool:
    """Check if a definition's profile expressions match the selected profiles.

    Profile matching supports inclusion and exclusion patterns:
    - Normal profiles ("dev", "prod") must be in the selected set
    - Exclusion profiles ("!test") must NOT be in the selected set
    - Empty stated profiles match all selected profiles

    Example:
        >>> profiles_match(["dev"], {"dev"})          # True
        >>> profiles_match(["!test"], {"dev"})        # True
        >>> profiles_match(["!test"], {"test"})       # False
        >>> profiles_match(["prod"], {"dev"})         # False
    """
    selected = set(selected)
    provided = [p for p in stated if not p.startswith("!")]
    excluded = [p[1:] for p in stated if p.startswith("!")]

    return not any(e in selected for e in excluded) and (
        not provided or any(p in selected for p in provided)
    )
