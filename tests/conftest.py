"""Shared fixtures for kestrel_delegation tests"""

import pytest

from kestrel_delegation.core.settings import DelegationSettings, SecurityPolicy
from kestrel_delegation.delegation.coordinator import DelegationCoordinator
from kestrel_delegation.storage.memory_store import InMemoryDelegationStore

from tests.fakes import FakeBackendFactory


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the user's environment directories."""
    return DelegationSettings(
        storage_dir=str(tmp_path / "data"),
        max_depth=3,
        max_concurrent=5,
        token_budget_default=50000,
        token_budget_max=200000,
        default_timeout_ms=300000,
        kill_grace_seconds=0.2,
        security=SecurityPolicy(allow_sub_agents=True, allow_binary_agents=True),
    )


@pytest.fixture
def store():
    return InMemoryDelegationStore()


@pytest.fixture
def make_coordinator(settings, store):
    """Build and initialize a coordinator wired to fakes.

    Keyword arguments override any DelegationCoordinator argument.
    """

    async def factory(**kwargs) -> DelegationCoordinator:
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("backend_factory", FakeBackendFactory())
        coordinator = DelegationCoordinator(kwargs.pop("store", store), **kwargs)
        await coordinator.initialize()
        return coordinator

    return factory
