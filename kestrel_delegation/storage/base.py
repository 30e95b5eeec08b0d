"""Delegation Store protocol.

The coordinator reads profiles and owns delegation records through this
interface. Implementations must never expose a partially applied write.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from kestrel_delegation.delegation.types import (
    AgentProfile,
    AgentProfileCreate,
    AgentProfileUpdate,
    DelegationMessage,
    DelegationRecord,
    DelegationStatus,
    now_ms,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50


@runtime_checkable
class DelegationStore(Protocol):
    async def seed_builtin_profiles(self) -> None:
        """Insert or refresh the built-in profiles."""
        ...

    async def get_profile(self, profile_id: str) -> Optional[AgentProfile]: ...

    async def get_profile_by_name(self, name: str) -> Optional[AgentProfile]: ...

    async def list_profiles(self) -> List[AgentProfile]:
        """Built-ins first, then by name."""
        ...

    async def create_profile(self, data: AgentProfileCreate) -> AgentProfile: ...

    async def update_profile(
        self, profile_id: str, data: AgentProfileUpdate
    ) -> Optional[AgentProfile]: ...

    async def delete_profile(self, profile_id: str) -> bool:
        """Delete a custom profile. Built-ins are never deleted."""
        ...

    async def create_delegation(self, record: DelegationRecord) -> DelegationRecord: ...

    async def update_delegation(
        self, delegation_id: str, **changes: Any
    ) -> Optional[DelegationRecord]:
        """Apply changes atomically and return the stored record.

        Once a record is terminal its status, result, error and timestamps
        are frozen; other changes (token usage) still apply.
        """
        ...

    async def get_delegation(self, delegation_id: str) -> Optional[DelegationRecord]: ...

    async def list_delegations(
        self,
        status: Optional[DelegationStatus] = None,
        profile_id: Optional[str] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Tuple[List[DelegationRecord], int]:
        """Newest first. Returns the page and the total matching count."""
        ...

    async def get_active_delegations(self) -> List[DelegationRecord]:
        """Pending or running records, oldest first."""
        ...

    async def get_delegation_tree(self, root_id: str) -> List[DelegationRecord]:
        """The root and all its descendants, ordered by depth then creation."""
        ...

    async def store_delegation_message(self, message: DelegationMessage) -> DelegationMessage: ...

    async def get_delegation_messages(self, delegation_id: str) -> List[DelegationMessage]: ...


WRITE_ONCE_FIELDS = frozenset({"status", "result", "error", "started_at", "completed_at"})


def merge_delegation_update(
    existing: DelegationRecord, changes: Dict[str, Any]
) -> DelegationRecord:
    """Apply changes to a record, keeping the write-once fields of a terminal one."""
    if existing.status.is_terminal:
        frozen = WRITE_ONCE_FIELDS & changes.keys()
        if frozen:
            logger.debug(
                f"Delegation {existing.id} is {existing.status.value}, ignoring {sorted(frozen)}"
            )
        changes = {k: v for k, v in changes.items() if k not in WRITE_ONCE_FIELDS}
    return DelegationRecord.model_validate({**existing.model_dump(), **changes})


def profile_sort_key(profile: AgentProfile) -> Tuple[bool, str]:
    return (not profile.is_builtin, profile.name)


def filter_and_page(
    records: List[DelegationRecord],
    status: Optional[DelegationStatus],
    profile_id: Optional[str],
    limit: int,
    offset: int,
) -> Tuple[List[DelegationRecord], int]:
    matching = [
        r
        for r in records
        if (status is None or r.status == status)
        and (profile_id is None or r.profile_id == profile_id)
    ]
    matching.sort(key=lambda r: r.created_at, reverse=True)
    return matching[offset : offset + limit], len(matching)


def collect_tree(records: List[DelegationRecord], root_id: str) -> List[DelegationRecord]:
    by_parent: dict[Optional[str], List[DelegationRecord]] = {}
    root: Optional[DelegationRecord] = None
    for record in records:
        by_parent.setdefault(record.parent_delegation_id, []).append(record)
        if record.id == root_id:
            root = record
    if root is None:
        return []

    tree = [root]
    seen = {root.id}
    frontier = [root.id]
    while frontier:
        parent_id = frontier.pop()
        for child in by_parent.get(parent_id, []):
            if child.id in seen:
                continue
            seen.add(child.id)
            tree.append(child)
            frontier.append(child.id)
    tree.sort(key=lambda r: (r.depth, r.created_at))
    return tree


def apply_profile_update(profile: AgentProfile, data: AgentProfileUpdate) -> AgentProfile:
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        return profile
    merged = profile.model_dump()
    merged.update(changes)
    merged["updated_at"] = now_ms()
    return AgentProfile.model_validate(merged)
