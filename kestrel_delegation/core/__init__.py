"""Kestrel Delegation - Core module exports"""

from .audit import AuditEntry, AuditSink, LoggingAuditSink
from .hooks import HookBus, HookEmitter, HookEvent, emit_safely
from .result import Err, Ok, Result
from .security import SecurityError, validate_storage_key
from .settings import (
    DelegationSettings,
    ProviderSettings,
    SecurityPolicy,
    get_settings,
    reload_settings,
)

__all__ = [
    # Audit
    "AuditEntry",
    "AuditSink",
    "LoggingAuditSink",
    # Hooks
    "HookBus",
    "HookEmitter",
    "HookEvent",
    "emit_safely",
    # Result
    "Ok",
    "Err",
    "Result",
    # Security
    "SecurityError",
    "validate_storage_key",
    # Settings
    "DelegationSettings",
    "ProviderSettings",
    "SecurityPolicy",
    "get_settings",
    "reload_settings",
]
