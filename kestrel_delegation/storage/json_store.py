"""Kestrel Delegation - Delegation store on top of JSON file storage

Layout under <base_dir>/storage:
    profile/<profile_id>.json
    delegation/<delegation_id>.json
    message/<delegation_id>/<message_id>.json
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from pathlib import Path
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError

from kestrel_delegation.core.settings import DelegationSettings, get_settings
from kestrel_delegation.delegation.profiles import get_builtin_profiles
from kestrel_delegation.delegation.types import (
    AgentProfile,
    AgentProfileCreate,
    AgentProfileUpdate,
    DelegationMessage,
    DelegationRecord,
    DelegationStatus,
)

from .base import (
    DEFAULT_PAGE_SIZE,
    apply_profile_update,
    collect_tree,
    filter_and_page,
    merge_delegation_update,
    profile_sort_key,
)
from .store import Storage

logger = logging.getLogger(__name__)


class JsonDelegationStore(Storage):
    """Profile, delegation and transcript storage operations"""

    def __init__(self, base_dir: Path):
        super().__init__(base_dir)
        # serialises read-modify-write of one delegation record
        self._record_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    @classmethod
    def from_settings(
        cls, settings: Optional[DelegationSettings] = None
    ) -> "JsonDelegationStore":
        """Store rooted at the configured storage_dir."""
        return cls((settings or get_settings()).storage_dir_path())

    # ── Profiles ────────────────────────────────────────────────────

    async def seed_builtin_profiles(self) -> None:
        for profile in get_builtin_profiles():
            existing = await self.get_profile(profile.id)
            if existing is not None:
                profile = profile.model_copy(update={"created_at": existing.created_at})
            await self._write_profile(profile)
        logger.debug("Seeded built-in profiles")

    async def get_profile(self, profile_id: str) -> Optional[AgentProfile]:
        data = await self.read(["profile", profile_id])
        return _load(AgentProfile, data)

    async def get_profile_by_name(self, name: str) -> Optional[AgentProfile]:
        for profile in await self.list_profiles():
            if profile.name == name:
                return profile
        return None

    async def list_profiles(self) -> List[AgentProfile]:
        profiles = []
        for key in await self.list(["profile"]):
            profile = _load(AgentProfile, await self.read(key))
            if profile:
                profiles.append(profile)
        profiles.sort(key=profile_sort_key)
        return profiles

    async def create_profile(self, data: AgentProfileCreate) -> AgentProfile:
        profile = AgentProfile(**data.model_dump(), is_builtin=False)
        await self._write_profile(profile)
        return profile

    async def update_profile(
        self, profile_id: str, data: AgentProfileUpdate
    ) -> Optional[AgentProfile]:
        existing = await self.get_profile(profile_id)
        if existing is None:
            return None
        updated = apply_profile_update(existing, data)
        await self._write_profile(updated)
        return updated

    async def delete_profile(self, profile_id: str) -> bool:
        existing = await self.get_profile(profile_id)
        if existing is None or existing.is_builtin:
            return False
        return await self.remove(["profile", profile_id])

    async def _write_profile(self, profile: AgentProfile) -> None:
        await self.write(["profile", profile.id], profile.model_dump(mode="json"))

    # ── Delegations ─────────────────────────────────────────────────

    async def create_delegation(self, record: DelegationRecord) -> DelegationRecord:
        await self.write(["delegation", record.id], record.model_dump(mode="json"))
        return record

    async def update_delegation(
        self, delegation_id: str, **changes: Any
    ) -> Optional[DelegationRecord]:
        lock = self._record_locks.get(delegation_id)
        if lock is None:
            lock = self._record_locks[delegation_id] = asyncio.Lock()
        async with lock:
            existing = await self.get_delegation(delegation_id)
            if existing is None:
                return None
            updated = merge_delegation_update(existing, changes)
            await self.write(["delegation", delegation_id], updated.model_dump(mode="json"))
        return updated

    async def get_delegation(self, delegation_id: str) -> Optional[DelegationRecord]:
        return _load(DelegationRecord, await self.read(["delegation", delegation_id]))

    async def _all_delegations(self) -> List[DelegationRecord]:
        records = []
        for key in await self.list(["delegation"]):
            record = _load(DelegationRecord, await self.read(key))
            if record:
                records.append(record)
        return records

    async def list_delegations(
        self,
        status: Optional[DelegationStatus] = None,
        profile_id: Optional[str] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Tuple[List[DelegationRecord], int]:
        return filter_and_page(await self._all_delegations(), status, profile_id, limit, offset)

    async def get_active_delegations(self) -> List[DelegationRecord]:
        active = [
            r
            for r in await self._all_delegations()
            if r.status in (DelegationStatus.PENDING, DelegationStatus.RUNNING)
        ]
        active.sort(key=lambda r: r.created_at)
        return active

    async def get_delegation_tree(self, root_id: str) -> List[DelegationRecord]:
        return collect_tree(await self._all_delegations(), root_id)

    # ── Messages ────────────────────────────────────────────────────

    async def store_delegation_message(self, message: DelegationMessage) -> DelegationMessage:
        await self.write(
            ["message", message.delegation_id, message.id],
            message.model_dump(mode="json"),
        )
        return message

    async def get_delegation_messages(self, delegation_id: str) -> List[DelegationMessage]:
        messages = []
        for key in await self.list(["message", delegation_id]):
            message = _load(DelegationMessage, await self.read(key))
            if message:
                messages.append(message)
        messages.sort(key=lambda m: m.created_at)
        return messages


def _load(model: Any, data: Optional[dict]) -> Any:
    if data is None:
        return None
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Skipping invalid {model.__name__} document: {e}")
        return None
