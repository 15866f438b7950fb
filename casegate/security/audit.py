"""
Audit Logging

Audit trail for logins, directory syncs, thread rebinding, document access
and kill-switch refusals.
"""

import json
import threading
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel, Field


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Authentication
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"

    # Directory
    SYNC_COMPLETED = "sync_completed"
    SYNC_PARTIAL = "sync_partial"
    SYNC_ABORTED = "sync_aborted"
    SYNC_SKIPPED = "sync_skipped"

    # Conversation threads
    THREAD_REBOUND = "thread_rebound"

    # Documents
    DOCUMENT_ACCESSED = "document_accessed"
    ACCESS_DENIED = "access_denied"

    # Security events
    SECURITY_VIOLATION = "security_violation"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


class AuditSeverity(str, Enum):
    """Severity levels for audit entries."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEntry(BaseModel):
    """An audit log entry."""

    id: UUID = Field(default_factory=uuid4, description="Unique entry ID")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    action: AuditAction = Field(..., description="Type of action")
    severity: AuditSeverity = Field(default=AuditSeverity.INFO)
    success: bool = Field(default=True, description="Whether action succeeded")

    # Subject (who)
    user_id: Optional[str] = Field(default=None, description="Acting user ID")
    email: Optional[str] = Field(default=None, description="Acting user email")
    session_id: Optional[str] = Field(default=None, description="Session ID")

    # Resource (what)
    resource_type: Optional[str] = Field(
        default=None,
        description="Type of resource (document, thread, directory, ...)"
    )
    resource_id: Optional[str] = Field(default=None, description="Resource ID")
    case_id: Optional[str] = Field(default=None, description="Case involved, if any")

    # Context (where)
    ip_address: Optional[str] = Field(default=None)
    endpoint: Optional[str] = Field(default=None, description="API endpoint")

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event details"
    )
    error_message: Optional[str] = Field(default=None)

    def to_log_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "audit_id": str(self.id),
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "severity": self.severity.value,
            "success": self.success,
            "user_id": self.user_id,
            "email": self.email,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "case_id": self.case_id,
            "details": self.details,
            "error": self.error_message,
        }


class AuditLog:
    """
    In-memory audit log with optional JSONL persistence.

    Provides query capabilities for audit entries.
    """

    def __init__(
        self,
        max_entries: int = 10000,
        storage_path: Optional[Path] = None
    ):
        """
        Initialize the audit log.

        Args:
            max_entries: Maximum entries to keep in memory
            storage_path: Optional path for file persistence
        """
        self._entries: list[AuditEntry] = []
        self._max_entries = max_entries
        self._storage_path = Path(storage_path) if storage_path else None
        self._lock = threading.Lock()

    def add(self, entry: AuditEntry) -> AuditEntry:
        """Add an entry to the log."""
        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self._max_entries:
                self._entries = self._entries[-self._max_entries:]

            if self._storage_path:
                self._append_to_file(entry)

        return entry

    def _append_to_file(self, entry: AuditEntry) -> None:
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self._storage_path, "a") as f:
            f.write(json.dumps(entry.model_dump(mode="json"), default=str) + "\n")

    def _snapshot(self) -> list[AuditEntry]:
        with self._lock:
            return list(self._entries)

    def query(
        self,
        action: Optional[AuditAction] = None,
        user_id: Optional[str] = None,
        case_id: Optional[str] = None,
        success: Optional[bool] = None,
        limit: int = 100
    ) -> list[AuditEntry]:
        """
        Query audit entries with filters, most recent first.

        Args:
            action: Filter by action type
            user_id: Filter by user ID
            case_id: Filter by case
            success: Filter by success status
            limit: Maximum entries to return
        """
        results = []

        for entry in reversed(self._snapshot()):
            if len(results) >= limit:
                break

            if action and entry.action != action:
                continue
            if user_id and entry.user_id != user_id:
                continue
            if case_id and entry.case_id != case_id:
                continue
            if success is not None and entry.success != success:
                continue

            results.append(entry)

        return results

    def get_security_events(self, limit: int = 100) -> list[AuditEntry]:
        """Get recent security-related events."""
        security_actions = {
            AuditAction.ACCESS_DENIED,
            AuditAction.LOGIN_FAILED,
            AuditAction.SECURITY_VIOLATION,
            AuditAction.RATE_LIMIT_EXCEEDED,
        }
        return [
            entry for entry in reversed(self._snapshot())
            if entry.action in security_actions
        ][:limit]

    def __len__(self) -> int:
        return len(self._entries)


class AuditLogger:
    """
    High-level audit logging interface.

    Provides convenient methods for logging common audit events.
    """

    def __init__(
        self,
        audit_log: Optional[AuditLog] = None,
        enable_console: bool = True
    ):
        self.audit_log = audit_log or AuditLog()
        self.enable_console = enable_console

        if enable_console:
            self._logger = structlog.get_logger("casegate.audit")

    def _log_entry(self, entry: AuditEntry) -> AuditEntry:
        self.audit_log.add(entry)

        if self.enable_console:
            log_method = getattr(self._logger, entry.severity.value, self._logger.info)
            log_method(entry.action.value, **entry.to_log_dict())

        return entry

    def log_login(
        self,
        email: Optional[str],
        success: bool,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        cases: Optional[list[str]] = None,
        method: str = "password",
        ip_address: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> AuditEntry:
        """Log a login attempt."""
        entry = AuditEntry(
            action=AuditAction.LOGIN if success else AuditAction.LOGIN_FAILED,
            severity=AuditSeverity.INFO if success else AuditSeverity.WARNING,
            success=success,
            user_id=user_id if success else None,
            email=email,
            session_id=session_id,
            ip_address=ip_address,
            error_message=failure_reason,
            details={"method": method, "cases": cases or []},
        )
        return self._log_entry(entry)

    def log_sync(
        self,
        action: AuditAction,
        cases_scanned: int = 0,
        identities: int = 0,
        failed_cases: Optional[list[str]] = None,
        error: Optional[str] = None,
    ) -> AuditEntry:
        """Log the outcome of a directory synchronization."""
        severity = {
            AuditAction.SYNC_COMPLETED: AuditSeverity.INFO,
            AuditAction.SYNC_SKIPPED: AuditSeverity.INFO,
            AuditAction.SYNC_PARTIAL: AuditSeverity.WARNING,
            AuditAction.SYNC_ABORTED: AuditSeverity.ERROR,
        }.get(action, AuditSeverity.INFO)

        entry = AuditEntry(
            action=action,
            severity=severity,
            success=action in (AuditAction.SYNC_COMPLETED, AuditAction.SYNC_SKIPPED),
            resource_type="directory",
            error_message=error,
            details={
                "cases_scanned": cases_scanned,
                "identities": identities,
                "failed_cases": failed_cases or [],
            },
        )
        return self._log_entry(entry)

    def log_thread_rebound(
        self,
        user_id: Optional[str],
        session_id: str,
        old_thread_id: str,
        old_cases: list[str],
        new_cases: list[str],
    ) -> AuditEntry:
        """Log a conversation thread replaced after an entitlement change."""
        entry = AuditEntry(
            action=AuditAction.THREAD_REBOUND,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            session_id=session_id,
            resource_type="thread",
            resource_id=old_thread_id,
            details={"old_cases": old_cases, "new_cases": new_cases},
        )
        return self._log_entry(entry)

    def log_document_access(
        self,
        user_id: Optional[str],
        email: Optional[str],
        path: str,
        case_id: Optional[str],
        allowed: bool,
        strategy: Optional[str] = None,
    ) -> AuditEntry:
        """Log a document resolution or a denied attempt."""
        entry = AuditEntry(
            action=AuditAction.DOCUMENT_ACCESSED if allowed else AuditAction.ACCESS_DENIED,
            severity=AuditSeverity.INFO if allowed else AuditSeverity.WARNING,
            success=allowed,
            user_id=user_id,
            email=email,
            resource_type="document",
            resource_id=path,
            case_id=case_id,
            details={"strategy": strategy} if strategy else {},
        )
        return self._log_entry(entry)

    def log_security_violation(
        self,
        user_id: Optional[str],
        email: Optional[str],
        violation_type: str,
        case_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> AuditEntry:
        """Log a security violation."""
        entry = AuditEntry(
            action=AuditAction.SECURITY_VIOLATION,
            severity=AuditSeverity.CRITICAL,
            success=False,
            user_id=user_id,
            email=email,
            case_id=case_id,
            ip_address=ip_address,
            details={"violation_type": violation_type, **(details or {})},
        )
        return self._log_entry(entry)

    def log_rate_limited(self, client_id: str, endpoint: str) -> AuditEntry:
        entry = AuditEntry(
            action=AuditAction.RATE_LIMIT_EXCEEDED,
            severity=AuditSeverity.WARNING,
            success=False,
            ip_address=client_id,
            endpoint=endpoint,
        )
        return self._log_entry(entry)
