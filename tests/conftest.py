import textwrap
from pathlib import Path

import pytest

from stratum.environment import Environment
from stratum.resources import FileSystemResourceLocator
from tests import fixtures


@pytest.fixture(autouse=True)
def clear_events():
    fixtures.EVENTS.clear()
    fixtures.Counter.created = 0
    yield
    fixtures.EVENTS.clear()


@pytest.fixture
def write_config(tmp_path: Path):
    """Write a dedented YAML file below tmp_path and return its path."""

    def write(relative_path: str, content: str) -> Path:
        path = tmp_path / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(content))
        return path

    return write


@pytest.fixture
def locator(tmp_path: Path) -> FileSystemResourceLocator:
    return FileSystemResourceLocator(tmp_path)


@pytest.fixture
def environment() -> Environment:
    return Environment(environ={})
