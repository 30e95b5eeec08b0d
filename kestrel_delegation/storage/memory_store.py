"""In-memory Delegation Store.

Every read and write goes through a deep model copy, so callers only ever
see fully applied snapshots.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

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

logger = logging.getLogger(__name__)


class InMemoryDelegationStore:
    """Dict-backed store for tests and single-process embedding"""

    def __init__(self) -> None:
        self._profiles: Dict[str, AgentProfile] = {}
        self._delegations: Dict[str, DelegationRecord] = {}
        self._messages: Dict[str, List[DelegationMessage]] = {}

    async def seed_builtin_profiles(self) -> None:
        for profile in get_builtin_profiles():
            self._profiles[profile.id] = profile
        logger.debug(f"Seeded {len(self._profiles)} profiles")

    async def get_profile(self, profile_id: str) -> Optional[AgentProfile]:
        profile = self._profiles.get(profile_id)
        return profile.model_copy(deep=True) if profile else None

    async def get_profile_by_name(self, name: str) -> Optional[AgentProfile]:
        for profile in self._profiles.values():
            if profile.name == name:
                return profile.model_copy(deep=True)
        return None

    async def list_profiles(self) -> List[AgentProfile]:
        profiles = [p.model_copy(deep=True) for p in self._profiles.values()]
        profiles.sort(key=profile_sort_key)
        return profiles

    async def create_profile(self, data: AgentProfileCreate) -> AgentProfile:
        profile = AgentProfile(**data.model_dump(), is_builtin=False)
        self._profiles[profile.id] = profile
        return profile.model_copy(deep=True)

    async def update_profile(
        self, profile_id: str, data: AgentProfileUpdate
    ) -> Optional[AgentProfile]:
        existing = self._profiles.get(profile_id)
        if existing is None:
            return None
        updated = apply_profile_update(existing, data)
        self._profiles[profile_id] = updated
        return updated.model_copy(deep=True)

    async def delete_profile(self, profile_id: str) -> bool:
        existing = self._profiles.get(profile_id)
        if existing is None or existing.is_builtin:
            return False
        del self._profiles[profile_id]
        return True

    async def create_delegation(self, record: DelegationRecord) -> DelegationRecord:
        self._delegations[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def update_delegation(
        self, delegation_id: str, **changes: Any
    ) -> Optional[DelegationRecord]:
        existing = self._delegations.get(delegation_id)
        if existing is None:
            return None
        updated = merge_delegation_update(existing, changes)
        self._delegations[delegation_id] = updated
        return updated.model_copy(deep=True)

    async def get_delegation(self, delegation_id: str) -> Optional[DelegationRecord]:
        record = self._delegations.get(delegation_id)
        return record.model_copy(deep=True) if record else None

    async def list_delegations(
        self,
        status: Optional[DelegationStatus] = None,
        profile_id: Optional[str] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Tuple[List[DelegationRecord], int]:
        page, total = filter_and_page(
            list(self._delegations.values()), status, profile_id, limit, offset
        )
        return [r.model_copy(deep=True) for r in page], total

    async def get_active_delegations(self) -> List[DelegationRecord]:
        active = [
            r.model_copy(deep=True)
            for r in self._delegations.values()
            if r.status in (DelegationStatus.PENDING, DelegationStatus.RUNNING)
        ]
        active.sort(key=lambda r: r.created_at)
        return active

    async def get_delegation_tree(self, root_id: str) -> List[DelegationRecord]:
        tree = collect_tree(list(self._delegations.values()), root_id)
        return [r.model_copy(deep=True) for r in tree]

    async def store_delegation_message(self, message: DelegationMessage) -> DelegationMessage:
        self._messages.setdefault(message.delegation_id, []).append(
            message.model_copy(deep=True)
        )
        return message

    async def get_delegation_messages(self, delegation_id: str) -> List[DelegationMessage]:
        return [m.model_copy(deep=True) for m in self._messages.get(delegation_id, [])]
