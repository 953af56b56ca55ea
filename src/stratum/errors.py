"""Exceptions raised while configuring, refreshing and querying a context."""

from typing import Optional, Sequence

__all__ = [
    "StratumError",
    "ConfigurationError",
    "ResourceNotFoundError",
    "DefinitionError",
    "DefinitionParseError",
    "DuplicateDefinitionError",
    "CyclicImportError",
    "DependencyError",
    "UnresolvedDependencyError",
    "CyclicDependencyError",
    "ComponentCreationError",
    "TypeMismatchError",
    "NoSuchComponentError",
    "ContextStateError",
    "ContextClosedError",
    "AlreadyRefreshingError",
]


class StratumError(Exception):
    """Base class for every error raised by the framework."""


class ConfigurationError(StratumError):
    """Raised when a context is missing setup it needs before a refresh."""


class ResourceNotFoundError(StratumError):
    """Raised when a configuration location does not lead to a readable resource."""

    def __init__(self, location: str, reason: Optional[str] = None):
        self.location = location
        message = f"No readable resource at '{location}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class DefinitionError(StratumError):
    """Base class for errors found while reading component definitions."""


class DefinitionParseError(DefinitionError):
    """Raised when a definition source is malformed.

    Attributes:
        location: The location of the offending resource.
        line: 1-based line number, when the format can tell.
        column: 1-based column number, when the format can tell.
    """

    def __init__(
        self,
        location: str,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ):
        self.location = location
        self.line = line
        self.column = column
        position = location
        if line is not None:
            position = f"{position}, line {line}"
            if column is not None:
                position = f"{position}, column {column}"
        super().__init__(f"{position}: {message}")


class DuplicateDefinitionError(DefinitionError):
    """Raised when a name is registered twice and overriding is disabled."""

    def __init__(
        self, name: str, existing_source: Optional[str], new_source: Optional[str]
    ):
        self.name = name
        self.existing_source = existing_source
        self.new_source = new_source
        super().__init__(
            f"Cannot register definition '{name}' from {new_source or 'code'}: "
            f"already defined by {existing_source or 'code'}"
        )


class CyclicImportError(DefinitionError):
    """Raised when a definition source imports itself, directly or indirectly."""

    def __init__(self, chain: Sequence[str]):
        self.chain = list(chain)
        super().__init__(f"Cyclic import: {' -> '.join(self.chain)}")


class DependencyError(StratumError):
    """Raised when a component's dependencies cannot be satisfied."""


class UnresolvedDependencyError(DependencyError):
    """Raised when a component refers to a name nothing provides."""

    def __init__(self, name: str, required_by: str):
        self.name = name
        self.required_by = required_by
        super().__init__(
            f"Component '{required_by}' depends on '{name}', which is not defined"
        )


class CyclicDependencyError(DependencyError):
    """Raised when component dependencies form a cycle."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle: {' -> '.join(self.cycle)}")


class ComponentCreationError(DependencyError):
    """Raised when a factory, property assignment or init method fails."""

    def __init__(self, name: str, message: str):
        self.name = name
        super().__init__(f"Error creating component '{name}': {message}")


class TypeMismatchError(StratumError, TypeError):
    """Raised when a component is not of the type the caller expected."""

    def __init__(self, name: str, expected: type, actual: type):
        self.name = name
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Component '{name}' is a {actual.__qualname__}, "
            f"expected {expected.__qualname__}"
        )


class NoSuchComponentError(StratumError, KeyError):
    """Raised when neither a context nor its ancestors provide a component."""

    def __init__(self, key: object, message: Optional[str] = None):
        self.key = key
        super().__init__(message or f"No component named {key!r}")

    def __str__(self) -> str:
        return str(self.args[0])


class ContextStateError(StratumError):
    """Raised when an operation is not allowed in the context's current state."""


class ContextClosedError(ContextStateError):
    """Raised when a closed context is used."""


class AlreadyRefreshingError(ContextStateError):
    """Raised when refresh is called while another refresh is in progress."""
