"""
Test Configuration and Fixtures

Shared fixtures and recording in-memory collaborators for CaseGate tests.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "true"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["AUTHORITY_USERNAME"] = "system"
os.environ["AUTHORITY_PASSWORD"] = "system-pass"
os.environ["SYNC_REQUEST_DELAY_SECONDS"] = "0"
os.environ["ADMIN_SYNC_SECRET"] = "test-admin-secret"
os.environ["ADMIN_EMAILS"] = '["boss@firm.test"]'
os.environ["ENGINE_POLL_INTERVAL_SECONDS"] = "0"
os.environ["RATE_LIMIT_PER_MINUTE"] = "1000"

from config import get_settings  # noqa: E402
from casegate.errors import (  # noqa: E402
    AuthorityAuthExpired,
    NotFound,
    ServiceUnavailable,
    Unauthorized,
)
from casegate.integrations.base import CaseAuthority, GenerationEngine  # noqa: E402
from casegate.models.cases import CaseFilter, CaseNamespace  # noqa: E402
from casegate.models.chat import EngineRun  # noqa: E402
from casegate.models.documents import DocumentProperties, SearchHit  # noqa: E402
from casegate.models.users import AuthorityLogin, StaffMember  # noqa: E402
from casegate.security.audit import AuditLog, AuditLogger  # noqa: E402
from casegate.security.directory import AdminPolicy, EntitlementDirectory  # noqa: E402
from casegate.storage.base import ObjectStore, RetrievalIndex  # noqa: E402

get_settings.cache_clear()

FIXED_NOW = datetime(2025, 3, 1, 3, 0, tzinfo=timezone.utc)

ROSTERS = {
    "100": [
        {"userID": 1, "email": " Ana.Lopez@Firm.test ", "firstName": "Ana", "lastName": "Lopez", "role": "Paralegal"},
    ],
    "200": [
        {"userId": 1, "email": "ana.lopez@firm.test", "name": "Ana Lopez", "role": "Paralegal"},
        {"userId": 2, "email": "ben@firm.test", "name": "Ben Ortiz", "role": "Attorney"},
    ],
    "300": [
        {"userID": 3, "email": "carla@firm.test", "firstName": "Carla", "lastName": "Diaz", "role": "Attorney"},
        {"userID": 9, "email": "dana@firm.test", "firstName": "Dana", "lastName": "Reyes", "role": "Administrator"},
    ],
}

LOGINS = {
    "ana": ("pw-ana", {"user_id": "1", "username": "ana", "email": "ana.lopez@firm.test", "name": "Ana Lopez"}),
    "ben": ("pw-ben", {"user_id": "2", "username": "ben", "email": "ben@firm.test", "name": "Ben Ortiz"}),
    "newhire": ("pw-new", {"user_id": "77", "username": "newhire", "email": "new@firm.test", "name": "New Hire"}),
    "boss": ("pw-boss", {"user_id": None, "username": "boss", "email": "boss@firm.test", "name": "The Boss"}),
}

DOCUMENTS = {
    "100/Pleadings/Complaint Final.pdf": b"%PDF-1.4 complaint",
    "100/Medical/Medical_Records-2023.pdf": b"%PDF-1.4 medical records",
    "200/Correspondence/Settlement Letter 2023-04-11.docx": b"settlement letter body",
    "300/Discovery/Deposition Transcript Smith.pdf": b"%PDF-1.4 deposition",
    "templates/Engagement Letter.docx": b"template",
}


class FakeAuthority(CaseAuthority):
    """Case-management authority serving fixed rosters and recording every call."""

    def __init__(
        self,
        rosters: Optional[dict] = None,
        logins: Optional[dict] = None,
        system: tuple[str, str] = ("system", "system-pass"),
    ):
        self.rosters = {case: list(staff) for case, staff in (rosters or ROSTERS).items()}
        self.logins = dict(logins or LOGINS)
        self.system = system
        self.auth_calls: list[str] = []
        self.roster_calls: list[tuple[str, str]] = []
        self.failing_cases: set[str] = set()
        self.expire_once: set[str] = set()
        self.system_auth_fails = False
        self.unreachable = False
        self.gate: Optional[asyncio.Event] = None
        self._tokens = 0

    async def authenticate(self, username: str, password: str) -> AuthorityLogin:
        self.auth_calls.append(username)
        if self.unreachable:
            raise ServiceUnavailable("authority down")
        if (username, password) == self.system:
            if self.system_auth_fails:
                raise Unauthorized("system principal rejected")
            self._tokens += 1
            return AuthorityLogin(user_id="0", username=username, token=f"token-{self._tokens}")
        known = self.logins.get(username)
        if known is None or known[0] != password:
            raise Unauthorized("Invalid credentials")
        return AuthorityLogin(token="user-token", **known[1])

    async def staff_for_case(self, case_id: str, token: str) -> list[StaffMember]:
        self.roster_calls.append((case_id, token))
        if self.gate is not None:
            await self.gate.wait()
        if case_id in self.expire_once:
            self.expire_once.discard(case_id)
            raise AuthorityAuthExpired(f"token expired at case {case_id}")
        if case_id in self.failing_cases:
            raise ServiceUnavailable(f"roster for {case_id} failed")
        return [StaffMember.model_validate(item) for item in self.rosters.get(case_id, [])]


class FakeObjectStore(ObjectStore):
    """In-memory object store recording every call."""

    def __init__(self, objects: Optional[dict[str, bytes]] = None):
        self.objects = dict(DOCUMENTS if objects is None else objects)
        self.calls: list[tuple] = []

    def calls_to(self, method: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == method]

    async def list(self, prefix: Optional[str] = None) -> list[str]:
        self.calls.append(("list", prefix))
        return sorted(p for p in self.objects if prefix is None or p.startswith(prefix))

    async def exists(self, path: str) -> bool:
        self.calls.append(("exists", path))
        return path in self.objects

    async def properties(self, path: str) -> DocumentProperties:
        self.calls.append(("properties", path))
        if path not in self.objects:
            raise NotFound(path)
        content_type = "application/pdf" if path.endswith(".pdf") else None
        return DocumentProperties(
            size=len(self.objects[path]),
            content_type=content_type,
            last_modified=FIXED_NOW,
        )

    async def read(self, path: str, start: Optional[int] = None, length: Optional[int] = None) -> bytes:
        self.calls.append(("read", path, start, length))
        if path not in self.objects:
            raise NotFound(path)
        data = self.objects[path]
        start = start or 0
        end = len(data) if length is None else start + length
        return data[start:end]

    async def sign_url(self, path: str, ttl: timedelta, permissions: str = "r") -> str:
        self.calls.append(("sign_url", path, ttl, permissions))
        return f"https://store.test/case-documents/{path}?sp={permissions}&ttl={int(ttl.total_seconds())}"


class FakeIndex(RetrievalIndex):
    """Retrieval index returning canned hits."""

    def __init__(self, hits: Optional[list[SearchHit]] = None):
        self.hits = list(hits or [])
        self.calls: list[tuple[str, Optional[CaseFilter], int]] = []

    async def search(self, query: str, filter: Optional[CaseFilter] = None, top_k: int = 10) -> list[SearchHit]:
        self.calls.append((query, filter, top_k))
        return list(self.hits[:top_k])


class FakeEngine(GenerationEngine):
    """Generation engine answering with a configurable run and recording calls."""

    def __init__(self, run_result: Optional[EngineRun] = None):
        self.run_result = run_result or EngineRun(text="No relevant documents were found.")
        self.error: Optional[Exception] = None
        self.fail_deletes = False
        self.created: list[str] = []
        self.deleted: list[str] = []
        self.runs: list[dict] = []
        self._counter = 0

    async def create_thread(self) -> str:
        self._counter += 1
        thread_id = f"thread-{self._counter}"
        self.created.append(thread_id)
        return thread_id

    async def delete_thread(self, thread_id: str) -> None:
        if self.fail_deletes:
            raise ServiceUnavailable("engine unavailable")
        self.deleted.append(thread_id)

    async def run(self, thread_id, message, filter=None, instructions=None) -> EngineRun:
        self.runs.append({
            "thread_id": thread_id,
            "message": message,
            "filter": filter,
            "instructions": instructions,
        })
        if self.error is not None:
            raise self.error
        return self.run_result


@pytest.fixture
def settings():
    """Test settings."""
    get_settings.cache_clear()
    return get_settings()


@pytest.fixture
def namespace():
    return CaseNamespace()


@pytest.fixture
def admin_policy():
    return AdminPolicy(roles=["administrator"], emails=["boss@firm.test"])


@pytest.fixture
def audit():
    """Audit logger keeping entries in memory only."""
    return AuditLogger(AuditLog(), enable_console=False)


@pytest.fixture
def authority():
    return FakeAuthority()


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def index():
    return FakeIndex()


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def directory():
    return EntitlementDirectory()


@pytest.fixture
def synchronizer(directory, authority, store, namespace, admin_policy, audit):
    """Synchronizer with no delay and a fixed clock."""
    from casegate.security.synchronizer import DirectorySynchronizer

    return DirectorySynchronizer(
        directory=directory,
        authority=authority,
        store=store,
        namespace=namespace,
        admin_policy=admin_policy,
        audit=audit,
        username="system",
        password="system-pass",
        request_delay=0,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def resolver(store, index, namespace, audit):
    from casegate.retrieval.resolver import DocumentResolver

    return DocumentResolver(
        store=store,
        index=index,
        namespace=namespace,
        audit=audit,
        signed_url_ttl=timedelta(minutes=60),
        top_k=10,
        clock=lambda: FIXED_NOW,
    )
