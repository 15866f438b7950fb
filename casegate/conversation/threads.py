"""
Conversation Session Manager

One generation-engine thread per session, bound to the entitlement snapshot
it was created under.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog

from config import get_settings
from casegate.integrations.base import GenerationEngine
from casegate.models.cases import Entitlement
from casegate.models.chat import ThreadBinding
from casegate.security.audit import AuditLogger

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ThreadStore:
    """
    Concurrent map of session id to thread binding.

    Every operation is atomic under one lock. Creation races are settled by
    ``put_if_absent``: the first writer wins.
    """

    def __init__(self):
        self._bindings: dict[str, ThreadBinding] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> Optional[ThreadBinding]:
        with self._lock:
            return self._bindings.get(session_id)

    def put_if_absent(self, session_id: str, binding: ThreadBinding) -> ThreadBinding:
        """Store a binding unless one exists; return whichever is stored."""
        with self._lock:
            return self._bindings.setdefault(session_id, binding)

    def remove(self, session_id: str, thread_id: Optional[str] = None) -> Optional[ThreadBinding]:
        """
        Remove a binding.

        With ``thread_id``, only removes the binding if it still points at
        that thread.
        """
        with self._lock:
            current = self._bindings.get(session_id)
            if current is None:
                return None
            if thread_id is not None and current.thread_id != thread_id:
                return None
            return self._bindings.pop(session_id)

    def touch(self, session_id: str, thread_id: str, when: datetime) -> None:
        with self._lock:
            current = self._bindings.get(session_id)
            if current is not None and current.thread_id == thread_id:
                self._bindings[session_id] = current.model_copy(update={"last_used": when})

    def items(self) -> list[tuple[str, ThreadBinding]]:
        with self._lock:
            return list(self._bindings.items())

    def __len__(self) -> int:
        with self._lock:
            return len(self._bindings)


class ConversationSessionManager:
    """
    Maps sessions to engine threads.

    A thread is never reused under a different entitlement: when the caller's
    snapshot differs from the one the thread was created under, the old
    thread is deleted and a new one created.
    """

    def __init__(
        self,
        engine: GenerationEngine,
        store: Optional[ThreadStore] = None,
        audit: Optional[AuditLogger] = None,
        idle_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.store = store if store is not None else ThreadStore()
        self.audit = audit
        minutes = idle_minutes if idle_minutes is not None else get_settings().thread_idle_minutes
        self.idle_after = timedelta(minutes=minutes)
        self.clock = clock

    @property
    def active_threads(self) -> int:
        return len(self.store)

    async def get_or_create_thread(
        self,
        session_id: str,
        entitlement: Entitlement,
        user_id: Optional[str] = None,
    ) -> str:
        """
        Return the session's thread, creating or rebinding it as needed.

        Args:
            session_id: Session identifier from the token
            entitlement: The caller's current entitlement snapshot
            user_id: For audit entries

        Returns:
            Engine thread id bound to exactly this entitlement
        """
        while True:
            binding = self.store.get(session_id)

            if binding is not None and binding.entitlement == entitlement:
                self.store.touch(session_id, binding.thread_id, self.clock())
                return binding.thread_id

            if binding is not None:
                await self._rebind(session_id, binding, entitlement, user_id)

            thread_id = await self.engine.create_thread()
            now = self.clock()
            created = ThreadBinding(
                thread_id=thread_id,
                entitlement=entitlement,
                created_at=now,
                last_used=now,
            )
            winner = self.store.put_if_absent(session_id, created)
            if winner.thread_id == thread_id:
                logger.info("thread_created", session_id=session_id, thread_id=thread_id)
                return thread_id

            logger.info(
                "thread_creation_race_lost",
                session_id=session_id,
                discarded_thread_id=thread_id,
                winner_thread_id=winner.thread_id,
            )
            await self._delete_remote(thread_id)
            if winner.entitlement == entitlement:
                return winner.thread_id

    async def _rebind(
        self,
        session_id: str,
        binding: ThreadBinding,
        entitlement: Entitlement,
        user_id: Optional[str],
    ) -> None:
        removed = self.store.remove(session_id, binding.thread_id)
        if removed is None:
            return

        logger.warning(
            "thread_entitlement_mismatch",
            session_id=session_id,
            thread_id=binding.thread_id,
            bound_cases=binding.entitlement.to_claim(),
            current_cases=entitlement.to_claim(),
        )
        if self.audit:
            self.audit.log_thread_rebound(
                user_id=user_id,
                session_id=session_id,
                old_thread_id=binding.thread_id,
                old_cases=binding.entitlement.to_claim(),
                new_cases=entitlement.to_claim(),
            )
        await self._delete_remote(binding.thread_id)

    async def delete_thread(self, session_id: str) -> bool:
        """
        Drop a session's thread.

        The local mapping is always removed; remote deletion is best-effort.

        Returns:
            True if the session had a thread
        """
        binding = self.store.remove(session_id)
        if binding is None:
            return False
        await self._delete_remote(binding.thread_id)
        logger.info("thread_deleted", session_id=session_id, thread_id=binding.thread_id)
        return True

    async def expire_idle(self, now: Optional[datetime] = None) -> int:
        """Delete threads unused for longer than the idle limit."""
        now = now or self.clock()
        expired = 0
        for session_id, binding in self.store.items():
            if now - binding.last_used < self.idle_after:
                continue
            if self.store.remove(session_id, binding.thread_id) is None:
                continue
            await self._delete_remote(binding.thread_id)
            expired += 1

        if expired:
            logger.info("idle_threads_expired", count=expired, remaining=len(self.store))
        return expired

    async def _delete_remote(self, thread_id: str) -> None:
        try:
            await self.engine.delete_thread(thread_id)
        except Exception as e:
            logger.warning("thread_delete_failed", thread_id=thread_id, error=str(e))
