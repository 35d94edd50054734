"""Shared pytest fixtures for diweave tests."""

import pytest

from diweave.bindings import BindingRegistry, ProducerDependenciesExtractor
from diweave.container import Container
from diweave.graph import DependencyGraphBuilder
from diweave.lock_mode import LockMode


@pytest.fixture()
def container() -> Container:
    """Default container: singleton lifetime, thread locking."""
    return Container()


@pytest.fixture()
def container_unlocked() -> Container:
    """Container whose singletons are built without construction locks."""
    return Container(lock_mode=LockMode.NONE)


@pytest.fixture()
def registry() -> BindingRegistry:
    """Empty binding registry."""
    return BindingRegistry()


@pytest.fixture()
def graph_builder() -> DependencyGraphBuilder:
    """DependencyGraphBuilder instance."""
    return DependencyGraphBuilder()


@pytest.fixture()
def dependencies_extractor() -> ProducerDependenciesExtractor:
    """ProducerDependenciesExtractor instance."""
    return ProducerDependenciesExtractor()
