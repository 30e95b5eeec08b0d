"""Audit sink protocol and a logging-backed implementation."""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass
class AuditEntry:
    event: str
    level: str
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class AuditSink(Protocol):
    """Best-effort event recorder. Implementations may raise; callers swallow."""

    async def record(
        self,
        event: str,
        level: str,
        message: str,
        metadata: dict[str, Any],
    ) -> None:
        ...


class LoggingAuditSink:
    """Writes audit entries to a dedicated logger and keeps the last few in memory."""

    def __init__(self, logger_name: str = "kestrel_delegation.audit", keep: int = 100):
        self._logger = logging.getLogger(logger_name)
        self._keep = keep
        self.entries: list[AuditEntry] = []

    async def record(
        self,
        event: str,
        level: str,
        message: str,
        metadata: dict[str, Any],
    ) -> None:
        entry = AuditEntry(event=event, level=level, message=message, metadata=dict(metadata))
        self.entries.append(entry)
        if len(self.entries) > self._keep:
            del self.entries[: len(self.entries) - self._keep]
        log_level = getattr(logging, level.upper(), logging.INFO)
        self._logger.log(log_level, f"{message} {metadata}")
