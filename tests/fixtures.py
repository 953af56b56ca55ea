"""Component classes referenced by the YAML definitions used in tests."""

from typing import Annotated

EVENTS: list[str] = []


class Person:
    def __init__(self, name="anonymous", age=None):
        self.name = name
        self.age = age
        self.friend = None


class Database:
    def __init__(self, url="sqlite://"):
        self.url = url
        self.connected = False
        self.closed = False

    def connect(self):
        self.connected = True
        EVENTS.append(f"connect {self.url}")

    def close(self):
        self.closed = True
        EVENTS.append(f"close {self.url}")


class Repository:
    def __init__(self, database: Database):
        self.database = database


class Service:
    def __init__(self, repository: Annotated[Repository, "repository"], label="service"):
        self.repository = repository
        self.label = label
        self.stopped = False

    def stop(self):
        self.stopped = True
        EVENTS.append(f"stop {self.label}")


class Recorder:
    """Records its creation and release in EVENTS."""

    def __init__(self, label, *dependencies):
        self.label = label
        self.dependencies = dependencies
        EVENTS.append(f"create {label}")

    def close(self):
        EVENTS.append(f"close {self.label}")


class Counter:
    created = 0

    def __init__(self):
        Counter.created += 1
        self.number = Counter.created


class Exploding:
    def __init__(self):
        raise RuntimeError("boom")


class FailingClose:
    def close(self):
        raise RuntimeError("cannot close")


def make_greeting(person: Annotated[Person, "person"]) -> str:
    return f"Hello {person.name}"
