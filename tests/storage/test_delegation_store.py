"""Tests for the Delegation Store implementations.

Every test runs against both the in-memory and the JSON file store.
"""

import asyncio

import pytest

from kestrel_delegation.delegation.types import (
    AgentProfileCreate,
    AgentProfileUpdate,
    DelegationMessage,
    DelegationRecord,
    DelegationStatus,
)
from kestrel_delegation.storage.base import DelegationStore
from kestrel_delegation.storage.json_store import JsonDelegationStore
from kestrel_delegation.storage.memory_store import InMemoryDelegationStore


@pytest.fixture(params=["memory", "json"])
def delegation_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryDelegationStore()
    return JsonDelegationStore(tmp_path)


def make_record(record_id: str, parent=None, depth=0, created_at=1000, **kwargs) -> DelegationRecord:
    return DelegationRecord(
        id=record_id,
        parent_delegation_id=parent,
        profile_id=kwargs.pop("profile_id", "builtin-researcher"),
        task=f"task {record_id}",
        depth=depth,
        created_at=created_at,
        **kwargs,
    )


class TestProfiles:
    """Profile CRUD."""

    def test_implements_protocol(self, delegation_store):
        assert isinstance(delegation_store, DelegationStore)

    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, delegation_store):
        await delegation_store.seed_builtin_profiles()
        await delegation_store.seed_builtin_profiles()

        profiles = await delegation_store.list_profiles()

        assert len(profiles) == 4
        assert all(p.is_builtin for p in profiles)

    @pytest.mark.asyncio
    async def test_builtins_listed_first(self, delegation_store):
        await delegation_store.seed_builtin_profiles()
        await delegation_store.create_profile(AgentProfileCreate(name="aardvark"))

        names = [p.name for p in await delegation_store.list_profiles()]

        assert names[-1] == "aardvark"
        assert names[:4] == sorted(names[:4])

    @pytest.mark.asyncio
    async def test_create_get_update_delete(self, delegation_store):
        created = await delegation_store.create_profile(
            AgentProfileCreate(name="custom", allowed_tools=["search"])
        )

        by_id = await delegation_store.get_profile(created.id)
        by_name = await delegation_store.get_profile_by_name("custom")
        updated = await delegation_store.update_profile(
            created.id, AgentProfileUpdate(max_token_budget=10)
        )

        assert by_id == created
        assert by_name.id == created.id
        assert created.is_builtin is False
        assert updated.max_token_budget == 10
        assert updated.allowed_tools == ["search"]
        assert updated.updated_at >= created.updated_at
        assert await delegation_store.delete_profile(created.id) is True
        assert await delegation_store.get_profile(created.id) is None
        assert await delegation_store.delete_profile(created.id) is False

    @pytest.mark.asyncio
    async def test_builtin_cannot_be_deleted(self, delegation_store):
        await delegation_store.seed_builtin_profiles()

        assert await delegation_store.delete_profile("builtin-coder") is False
        assert await delegation_store.get_profile("builtin-coder") is not None

    @pytest.mark.asyncio
    async def test_update_missing_profile(self, delegation_store):
        assert await delegation_store.update_profile("nope", AgentProfileUpdate(name="x")) is None


class TestDelegations:
    """Delegation record persistence, listing and trees."""

    @pytest.mark.asyncio
    async def test_create_and_update(self, delegation_store):
        await delegation_store.create_delegation(make_record("a"))

        updated = await delegation_store.update_delegation(
            "a", status=DelegationStatus.COMPLETED, result="done", completed_at=2000
        )
        fetched = await delegation_store.get_delegation("a")

        assert updated.status == DelegationStatus.COMPLETED
        assert fetched.result == "done"
        assert fetched.completed_at == 2000
        assert fetched.task == "task a"

    @pytest.mark.asyncio
    async def test_update_missing_returns_none(self, delegation_store):
        assert await delegation_store.update_delegation("ghost", status="failed") is None

    @pytest.mark.asyncio
    async def test_terminal_record_keeps_outcome_but_takes_usage(self, delegation_store):
        """A second finaliser cannot rewrite the outcome, only the token counts."""
        await delegation_store.create_delegation(make_record("a"))
        await delegation_store.update_delegation(
            "a",
            status=DelegationStatus.CANCELLED,
            error="Delegation cancelled",
            tokens_used_prompt=7,
            completed_at=2000,
        )

        updated = await delegation_store.update_delegation(
            "a",
            status=DelegationStatus.COMPLETED,
            result="late answer",
            error=None,
            tokens_used_prompt=17,
            tokens_used_completion=8,
            completed_at=3000,
        )

        assert updated.status == DelegationStatus.CANCELLED
        assert updated.result is None
        assert updated.error == "Delegation cancelled"
        assert updated.completed_at == 2000
        assert (updated.tokens_used_prompt, updated.tokens_used_completion) == (17, 8)
        assert await delegation_store.get_delegation("a") == updated

    @pytest.mark.asyncio
    async def test_running_write_after_cancel_is_ignored(self, delegation_store):
        await delegation_store.create_delegation(make_record("a"))
        await delegation_store.update_delegation("a", status=DelegationStatus.CANCELLED)

        await delegation_store.update_delegation(
            "a", status=DelegationStatus.RUNNING, started_at=1500
        )

        fetched = await delegation_store.get_delegation("a")
        assert fetched.status == DelegationStatus.CANCELLED
        assert fetched.started_at is None

    @pytest.mark.asyncio
    async def test_concurrent_updates_are_serialised(self, delegation_store):
        await delegation_store.create_delegation(make_record("a"))

        await asyncio.gather(
            delegation_store.update_delegation(
                "a", status=DelegationStatus.CANCELLED, error="Delegation cancelled"
            ),
            delegation_store.update_delegation(
                "a", status=DelegationStatus.COMPLETED, result="done"
            ),
        )

        fetched = await delegation_store.get_delegation("a")
        assert fetched.status == DelegationStatus.CANCELLED
        assert fetched.result is None

    @pytest.mark.asyncio
    async def test_returned_records_are_snapshots(self, delegation_store):
        await delegation_store.create_delegation(make_record("a"))

        fetched = await delegation_store.get_delegation("a")
        fetched.result = "mutated locally"

        assert (await delegation_store.get_delegation("a")).result is None

    @pytest.mark.asyncio
    async def test_list_filters_and_pages_newest_first(self, delegation_store):
        for idx in range(5):
            await delegation_store.create_delegation(
                make_record(
                    f"r{idx}",
                    created_at=1000 + idx,
                    status=DelegationStatus.FAILED if idx % 2 else DelegationStatus.COMPLETED,
                    profile_id="builtin-coder" if idx == 4 else "builtin-researcher",
                )
            )

        page, total = await delegation_store.list_delegations(limit=2, offset=1)
        failed, failed_total = await delegation_store.list_delegations(
            status=DelegationStatus.FAILED
        )
        coder, _ = await delegation_store.list_delegations(profile_id="builtin-coder")

        assert total == 5
        assert [r.id for r in page] == ["r3", "r2"]
        assert failed_total == 2
        assert [r.id for r in failed] == ["r3", "r1"]
        assert [r.id for r in coder] == ["r4"]

    @pytest.mark.asyncio
    async def test_active_delegations(self, delegation_store):
        await delegation_store.create_delegation(make_record("p", created_at=3))
        await delegation_store.create_delegation(
            make_record("r", created_at=1, status=DelegationStatus.RUNNING)
        )
        await delegation_store.create_delegation(
            make_record("c", created_at=2, status=DelegationStatus.CANCELLED)
        )

        active = await delegation_store.get_active_delegations()

        assert [r.id for r in active] == ["r", "p"]

    @pytest.mark.asyncio
    async def test_tree_ordered_by_depth_then_creation(self, delegation_store):
        await delegation_store.create_delegation(make_record("root", created_at=1))
        await delegation_store.create_delegation(make_record("b", "root", 1, created_at=5))
        await delegation_store.create_delegation(make_record("a", "root", 1, created_at=3))
        await delegation_store.create_delegation(make_record("a1", "a", 2, created_at=4))
        await delegation_store.create_delegation(make_record("other", created_at=2))

        tree = await delegation_store.get_delegation_tree("root")

        assert [r.id for r in tree] == ["root", "a", "b", "a1"]
        assert await delegation_store.get_delegation_tree("missing") == []


class TestMessages:
    @pytest.mark.asyncio
    async def test_messages_returned_in_order(self, delegation_store):
        for idx, role in enumerate(["system", "user", "assistant"]):
            await delegation_store.store_delegation_message(
                DelegationMessage(
                    delegation_id="d1", role=role, content=f"m{idx}", created_at=100 + idx
                )
            )
        await delegation_store.store_delegation_message(
            DelegationMessage(delegation_id="d2", role="user", content="other")
        )

        messages = await delegation_store.get_delegation_messages("d1")

        assert [m.role for m in messages] == ["system", "user", "assistant"]
        assert await delegation_store.get_delegation_messages("none") == []


@pytest.mark.asyncio
async def test_json_store_from_settings_uses_storage_dir(settings, tmp_path):
    store = JsonDelegationStore.from_settings(settings)

    await store.create_delegation(make_record("a"))

    assert (tmp_path / "data" / "storage" / "delegation" / "a.json").exists()
    assert (await store.get_delegation("a")).task == "task a"
