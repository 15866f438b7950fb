"""
Directory Synchronizer

Rebuilds the entitlement directory from the object store's case namespace
and the authority's staff rosters.
"""

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel, Field

from config import get_settings
from casegate.errors import (
    AuthorityAuthExpired,
    CaseGateError,
    SyncAborted,
    SyncPartialFailure,
)
from casegate.integrations.base import CaseAuthority
from casegate.models.cases import CaseNamespace, case_sort_key
from casegate.models.users import StaffMember
from casegate.storage.base import ObjectStore

from .audit import AuditAction, AuditLogger
from .directory import AdminPolicy, DirectoryBuilder, DirectorySnapshot, EntitlementDirectory

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncStatus(str, Enum):
    """Outcome of a sync call."""
    COMPLETE = "complete"
    PARTIAL = "partial"     # Some rosters failed; directory still replaced
    SKIPPED = "skipped"     # Another sync was already running


class SyncReport(BaseModel):
    """Summary of one sync call."""

    status: SyncStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    cases_scanned: int = 0
    identities: int = 0
    failed_cases: list[str] = Field(default_factory=list)

    @property
    def partial_failure(self) -> Optional[SyncPartialFailure]:
        if self.status != SyncStatus.PARTIAL:
            return None
        return SyncPartialFailure(self.failed_cases)


class DirectorySynchronizer:
    """
    Single-flight rebuild of the entitlement directory.

    A sync authenticates once as the system principal, fetches the roster of
    every case found in the store, builds a complete new generation and swaps
    it in. A call made while another sync is running returns a SKIPPED report
    without touching the authority or the store.
    """

    def __init__(
        self,
        directory: EntitlementDirectory,
        authority: CaseAuthority,
        store: ObjectStore,
        namespace: Optional[CaseNamespace] = None,
        admin_policy: Optional[AdminPolicy] = None,
        audit: Optional[AuditLogger] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        request_delay: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = get_settings()
        self.directory = directory
        self.authority = authority
        self.store = store
        self.namespace = namespace or CaseNamespace(settings.case_id_pattern)
        self.admin_policy = admin_policy or AdminPolicy(settings.admin_roles, settings.admin_emails)
        self.audit = audit
        self.username = username if username is not None else settings.authority_username
        self.password = password if password is not None else settings.authority_password
        self.request_delay = request_delay if request_delay is not None else settings.sync_request_delay_seconds
        self.clock = clock
        self._sleep = sleep

    async def sync(self) -> SyncReport:
        """
        Rebuild the directory.

        Returns:
            SyncReport with COMPLETE, PARTIAL or SKIPPED status

        Raises:
            SyncAborted: The system principal could not authenticate or the
                case namespace could not be listed. The previous generation
                stays in place.
        """
        started_at = self.clock()
        if not self.directory.try_begin_sync():
            logger.info("directory_sync_skipped", reason="already_running")
            if self.audit:
                self.audit.log_sync(AuditAction.SYNC_SKIPPED)
            return SyncReport(status=SyncStatus.SKIPPED, started_at=started_at, finished_at=started_at)

        try:
            return await self._run(started_at)
        finally:
            self.directory.end_sync()

    async def _run(self, started_at: datetime) -> SyncReport:
        logger.info("directory_sync_started")
        token = await self._authenticate()
        case_ids = await self._case_ids()

        previous = self.directory.snapshot
        builder = DirectoryBuilder(self.admin_policy)
        failed: list[str] = []

        for index, case_id in enumerate(case_ids):
            try:
                staff, token = await self._roster(case_id, token)
            except SyncAborted:
                raise
            except CaseGateError as e:
                logger.warning("case_roster_failed", case_id=case_id, error=str(e))
                failed.append(case_id)
                builder.add_roster(case_id, self._previous_roster(previous, case_id))
            else:
                builder.add_roster(case_id, staff)
                logger.debug("case_roster_fetched", case_id=case_id, staff=len(staff))

            if self.request_delay and index < len(case_ids) - 1:
                await self._sleep(self.request_delay)

        finished_at = self.clock()
        snapshot = builder.build(synced_at=finished_at)
        self.directory.replace(snapshot)

        status = SyncStatus.PARTIAL if failed else SyncStatus.COMPLETE
        report = SyncReport(
            status=status,
            started_at=started_at,
            finished_at=finished_at,
            cases_scanned=len(case_ids),
            identities=len(snapshot),
            failed_cases=failed,
        )
        logger.info(
            "directory_sync_finished",
            status=status.value,
            cases=report.cases_scanned,
            identities=report.identities,
            failed_cases=failed,
        )
        if self.audit:
            self.audit.log_sync(
                AuditAction.SYNC_PARTIAL if failed else AuditAction.SYNC_COMPLETED,
                cases_scanned=report.cases_scanned,
                identities=report.identities,
                failed_cases=failed,
            )
        return report

    async def _authenticate(self) -> str:
        if not self.username or not self.password:
            self._abort("System principal credentials are not configured")
        try:
            login = await self.authority.authenticate(self.username, self.password)
        except CaseGateError as e:
            self._abort(f"System principal authentication failed: {e}", e)
        if not login.token:
            self._abort("Authority did not return a token for the system principal")
        return login.token

    def _abort(self, message: str, cause: Optional[Exception] = None):
        logger.error("directory_sync_aborted", reason=message)
        if self.audit:
            self.audit.log_sync(AuditAction.SYNC_ABORTED, error=message)
        raise SyncAborted(message) from cause

    async def _case_ids(self) -> list[str]:
        try:
            segments = await self.store.list_top_level()
        except CaseGateError as e:
            self._abort(f"Case namespace could not be listed: {e}", e)
        cases = sorted({s for s in segments if self.namespace.is_case_id(s)}, key=case_sort_key)
        ignored = len(set(segments)) - len(cases)
        logger.info("case_namespace_listed", cases=len(cases), ignored_segments=ignored)
        return cases

    async def _roster(self, case_id: str, token: str) -> tuple[list[StaffMember], str]:
        """Fetch one roster, re-authenticating once if the token expired."""
        try:
            return await self.authority.staff_for_case(case_id, token), token
        except AuthorityAuthExpired:
            logger.info("authority_token_expired", case_id=case_id)
            token = await self._authenticate()
            return await self.authority.staff_for_case(case_id, token), token

    @staticmethod
    def _previous_roster(previous: DirectorySnapshot, case_id: str) -> list[StaffMember]:
        """Staff of a case as known to the previous generation."""
        roster = []
        for key in previous.identities_for_case(case_id):
            entry = previous.get(key)
            if entry is None:
                continue
            identity = entry.identity
            roster.append(StaffMember(
                user_id=identity.user_id,
                email=identity.email,
                name=identity.name,
                role=identity.role,
            ))
        return roster
