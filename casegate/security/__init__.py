"""
CaseGate Security Package

Entitlement directory and its synchronizer, session tokens, the chat
enforcement pipeline, and audit logging.
"""

from .audit import AuditAction, AuditEntry, AuditLog, AuditLogger
from .directory import AdminPolicy, DirectorySnapshot, EntitlementDirectory
from .enforcement import EnforcementPipeline
from .sessions import IssuedSession, SessionIssuer
from .synchronizer import DirectorySynchronizer, SyncReport, SyncStatus

__all__ = [
    "AdminPolicy",
    "AuditAction",
    "AuditEntry",
    "AuditLog",
    "AuditLogger",
    "DirectorySnapshot",
    "DirectorySynchronizer",
    "EnforcementPipeline",
    "EntitlementDirectory",
    "IssuedSession",
    "SessionIssuer",
    "SyncReport",
    "SyncStatus",
]
