"""Shared pytest fixtures for diforge tests."""

import pytest

from diforge import ContainerBuilder, DefinitionRegistry, LockMode


@pytest.fixture()
def builder() -> ContainerBuilder:
    """Default builder with thread locking and explicit wiring."""
    return ContainerBuilder()


@pytest.fixture()
def autowiring_builder() -> ContainerBuilder:
    """Builder that autowires every definition registered through it."""
    return ContainerBuilder(autowire_by_default=True)


@pytest.fixture()
def unlocked_builder() -> ContainerBuilder:
    """Builder producing containers without locks."""
    return ContainerBuilder(lock_mode=LockMode.NONE)


@pytest.fixture()
def registry() -> DefinitionRegistry:
    """Empty definition registry."""
    return DefinitionRegistry()
