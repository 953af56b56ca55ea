"""Stratum layered application contexts.

Stratum bootstraps a component container from configuration locations. Each
location is resolved to a resource by a pluggable locator, parsed into
component definitions, and merged into one registry where a later location
overrides an earlier one. A single explicit refresh then validates the
definitions and builds every non-lazy singleton in dependency order. Contexts
can be layered: a child context falls back to its parent for components it
does not define.

Key Features:
    - Pluggable resource location (file system, package resources, Ant-style wildcards)
    - YAML definition files with imports, profiles and ``${...}`` placeholders
    - Deterministic override semantics across configuration locations
    - Build-time detection of missing and cyclic dependencies
    - All-or-nothing refresh and ordered, reverse-order destruction

Basic Usage:
    >>> from stratum.context import ApplicationContext
    >>>
    >>> context = ApplicationContext(["base.yaml", "override.yaml"])
    >>> person = context.get_component("person")
    >>> context.close()

The framework consists of several core modules:
    - context: The application context and its lifecycle
    - resources: Resources and resource locators
    - formats: Definition file formats
    - reader: Loading definition sources into a registry
    - registry: The ordered definition registry
    - graph: Dependency validation and component instantiation
    - component_builder: Creating and wiring single components
    - definitions: Definitions from plain classes and functions
    - environment: Placeholders and profiles
    - domain: Core domain models
    - errors: Framework-specific exceptions
"""
