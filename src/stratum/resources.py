"""Resources and the strategies that locate them.

A configuration location is an opaque string. What it points at is the
policy of the active :class:`ResourceLocator`:

* ``classpath:pkg.name/path/file.yaml`` always resolves inside the importable
  package ``pkg.name``, whatever the locator.
* ``file:path`` (or ``file:///abs/path``) always resolves to the host file
  system path as given.
* Any other location is handed to the locator's ``_resolve_path``. The file
  system locator treats it as relative to its base directory, stripping any
  leading ``/``; the package locator treats it as relative to its package.

Locations may carry Ant-style patterns (``*``, ``?`` and ``**``), which
:meth:`ResourceLocator.resolve_all` expands to every matching file in
lexicographic order.
"""

import logging
import os
import posixpath
import re
from abc import ABC, abstractmethod
from functools import lru_cache
from importlib import resources as importlib_resources
from operator import itemgetter
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

from stratum.errors import ResourceNotFoundError

__all__ = [
    "CLASSPATH_PREFIX",
    "FILE_PREFIX",
    "Resource",
    "FileSystemResource",
    "PackageResource",
    "ResourceLocator",
    "FileSystemResourceLocator",
    "PackageResourceLocator",
    "is_pattern",
    "ant_match",
]

logger = logging.getLogger(__name__)

CLASSPATH_PREFIX = "classpath:"
FILE_PREFIX = "file:"

_WILDCARDS = ("*", "?")


class Resource(ABC):
    """A readable handle on a definition source."""

    @property
    @abstractmethod
    def location(self) -> str:
        """Canonical location, used for identity and in error messages."""

    @abstractmethod
    def exists(self) -> bool:
        """True if the resource is a readable file."""

    @abstractmethod
    def is_directory(self) -> bool:
        pass

    @abstractmethod
    def open(self) -> BinaryIO:
        """Open the resource for binary reading. Callers close the stream."""

    @abstractmethod
    def relative(self, path: str) -> "Resource":
        """Resolve ``path`` against the directory holding this resource."""

    @abstractmethod
    def walk(self) -> Iterator[tuple[str, "Resource"]]:
        """Yield ``(relative_path, resource)`` for every file below a directory."""

    def read_bytes(self) -> bytes:
        try:
            with self.open() as stream:
                return stream.read()
        except OSError as e:
            raise ResourceNotFoundError(self.location, str(e)) from e

    @property
    def description(self) -> str:
        return f"{type(self).__name__} [{self.location}]"

    def __eq__(self, other: object) -> bool:
        return type(other) is type(self) and other.location == self.location

    def __hash__(self) -> int:
        return hash((type(self), self.location))

    def __repr__(self) -> str:
        return self.description


class FileSystemResource(Resource):
    """A file on the host file system, identified by its path with symlinks resolved."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(os.path.realpath(path))

    @property
    def location(self) -> str:
        return str(self.path)

    def exists(self) -> bool:
        return self.path.is_file() and os.access(self.path, os.R_OK)

    def is_directory(self) -> bool:
        return self.path.is_dir()

    def open(self) -> BinaryIO:
        return self.path.open("rb")

    def relative(self, path: str) -> "FileSystemResource":
        return FileSystemResource(self.path.parent / path)

    def walk(self) -> Iterator[tuple[str, "FileSystemResource"]]:
        for child in self.path.rglob("*"):
            if child.is_file():
                yield child.relative_to(self.path).as_posix(), FileSystemResource(child)


class PackageResource(Resource):
    """A resource shipped inside an importable package.

    This is the counterpart of a classpath resource: the location is stable
    however the package is installed (directory, zip or wheel).
    """

    def __init__(self, package: str, path: str):
        self.package = package
        self.path = posixpath.normpath(path) if path else ""
        if self.path == ".":
            self.path = ""

    @property
    def location(self) -> str:
        return f"{CLASSPATH_PREFIX}{self.package}/{self.path}"

    def _traversable(self):
        try:
            root = importlib_resources.files(self.package)
        except (ModuleNotFoundError, TypeError, ValueError) as e:
            raise ResourceNotFoundError(self.location, str(e)) from e
        return root.joinpath(*self.path.split("/")) if self.path else root

    def exists(self) -> bool:
        try:
            return self._traversable().is_file()
        except ResourceNotFoundError:
            return False

    def is_directory(self) -> bool:
        try:
            return self._traversable().is_dir()
        except ResourceNotFoundError:
            return False

    def open(self) -> BinaryIO:
        return self._traversable().open("rb")

    def relative(self, path: str) -> "PackageResource":
        return PackageResource(
            self.package, posixpath.join(posixpath.dirname(self.path), path)
        )

    def walk(self) -> Iterator[tuple[str, "PackageResource"]]:
        def visit(node, prefix: str):
            for child in node.iterdir():
                child_path = f"{prefix}{child.name}"
                if child.is_dir():
                    yield from visit(child, f"{child_path}/")
                elif child.is_file():
                    yield child_path, PackageResource(
                        self.package, posixpath.join(self.path, child_path)
                    )

        yield from visit(self._traversable(), "")


class ResourceLocator(ABC):
    """Turns configuration locations into resources.

    Subclasses decide what a plain path means by implementing
    :meth:`_resolve_path`; prefixed locations are handled here so every
    locator agrees on them.

    Args:
        strict_wildcards: If True, a pattern matching no resource raises
            :class:`ResourceNotFoundError` instead of expanding to nothing.
    """

    def __init__(self, strict_wildcards: bool = False):
        self.strict_wildcards = strict_wildcards

    def resolve(self, location: str, relative_to: Optional[Resource] = None) -> Resource:
        """Resolve a single location to an existing, readable resource.

        Args:
            location: The location to resolve.
            relative_to: If given, unprefixed locations are resolved against
                the directory holding this resource instead of by the
                locator's own policy.

        Raises:
            ResourceNotFoundError: If nothing readable exists there.
        """
        resource = self._candidate(location, relative_to)
        if not resource.exists():
            raise ResourceNotFoundError(location)
        return resource

    def resolve_all(
        self, location: str, relative_to: Optional[Resource] = None
    ) -> list[Resource]:
        """Resolve a location that may contain Ant-style wildcards.

        Returns:
            The matching resources ordered by their path below the pattern's
            fixed leading directory. A location without wildcards yields
            exactly one resource.

        Raises:
            ResourceNotFoundError: If a plain location does not exist, or a
                pattern matches nothing in strict mode.
        """
        if not is_pattern(location):
            return [self.resolve(location, relative_to)]

        prefix, path = _split_prefix(location)
        root_path, pattern = _split_pattern(path)
        root = self._candidate(prefix + root_path, relative_to)

        matches = []
        if root.is_directory():
            matches = [
                resource
                for relative_path, resource in sorted(root.walk(), key=itemgetter(0))
                if ant_match(pattern, relative_path)
            ]

        if not matches:
            if self.strict_wildcards:
                raise ResourceNotFoundError(location, "pattern matched no resources")
            logger.debug("Pattern '%s' matched no resources", location)
        return matches

    def _candidate(self, location: str, relative_to: Optional[Resource] = None) -> Resource:
        prefix, path = _split_prefix(location)
        if prefix == CLASSPATH_PREFIX:
            package, _, package_path = path.lstrip("/").partition("/")
            return PackageResource(package, package_path)
        if prefix == FILE_PREFIX:
            return FileSystemResource(path)
        if relative_to is not None:
            return relative_to.relative(path.lstrip("/") or ".")
        return self._resolve_path(path)

    @abstractmethod
    def _resolve_path(self, path: str) -> Resource:
        """Interpret an unprefixed location according to this locator's policy."""


class FileSystemResourceLocator(ResourceLocator):
    """Resolves plain locations relative to a base directory.

    A leading ``/`` does not make a location absolute: ``"/conf/app.yaml"``
    and ``"conf/app.yaml"`` name the same file below the base directory.
    Use the ``file:`` prefix for absolute host paths.

    Args:
        base_dir: Directory plain locations are relative to. Defaults to the
            working directory at construction time.
    """

    def __init__(
        self, base_dir: Optional[Union[str, Path]] = None, strict_wildcards: bool = False
    ):
        super().__init__(strict_wildcards)
        self.base_dir = Path(base_dir) if base_dir is not None else Path.cwd()

    def _resolve_path(self, path: str) -> Resource:
        return FileSystemResource(self.base_dir / path.lstrip("/"))


class PackageResourceLocator(ResourceLocator):
    """Resolves plain locations relative to the resource root of a package."""

    def __init__(self, package: str, strict_wildcards: bool = False):
        super().__init__(strict_wildcards)
        self.package = package

    def _resolve_path(self, path: str) -> Resource:
        return PackageResource(self.package, path.lstrip("/"))


def is_pattern(location: str) -> bool:
    return any(wildcard in location for wildcard in _WILDCARDS)


def ant_match(pattern: str, path: str) -> bool:
    """Match a ``/``-separated path against an Ant-style pattern.

    ``*`` matches within one segment, ``?`` matches one character of a
    segment and ``**`` matches zero or more whole segments.

    Example:
        >>> ant_match("**/*.yaml", "a/b/c.yaml")   # True
        >>> ant_match("*.yaml", "a/c.yaml")        # False
    """
    return _compile_pattern(pattern).fullmatch(path) is not None


@lru_cache(maxsize=128)
def _compile_pattern(pattern: str) -> re.Pattern:
    segments = pattern.split("/")
    regex = []
    for index, segment in enumerate(segments):
        last = index == len(segments) - 1
        if segment == "**":
            regex.append(".*" if last else "(?:.*/)?")
            continue
        regex.append(
            "".join(
                "[^/]*" if char == "*" else "[^/]" if char == "?" else re.escape(char)
                for char in segment
            )
        )
        if not last:
            regex.append("/")
    return re.compile("".join(regex))


def _split_prefix(location: str) -> tuple[str, str]:
    if location.startswith(CLASSPATH_PREFIX):
        return CLASSPATH_PREFIX, location[len(CLASSPATH_PREFIX):]
    if location.startswith(FILE_PREFIX):
        path = location[len(FILE_PREFIX):]
        if path.startswith("//"):
            path = path[2:]
        return FILE_PREFIX, path
    return "", location


def _split_pattern(path: str) -> tuple[str, str]:
    first_wildcard = min(path.index(w) for w in _WILDCARDS if w in path)
    root_end = path.rfind("/", 0, first_wildcard) + 1
    return path[:root_end], path[root_end:]
