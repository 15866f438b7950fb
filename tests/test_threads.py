"""
Tests for Conversation Threads
"""

import asyncio
from datetime import timedelta

import pytest

from casegate.conversation import ConversationSessionManager, ThreadStore
from casegate.models.cases import Entitlement
from casegate.models.chat import ThreadBinding
from casegate.security.audit import AuditAction

from conftest import FIXED_NOW, FakeEngine


class SlowEngine(FakeEngine):
    """Yields to the event loop while creating a thread."""

    async def create_thread(self) -> str:
        thread_id = await super().create_thread()
        await asyncio.sleep(0)
        return thread_id


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(FIXED_NOW)


@pytest.fixture
def threads(engine, audit, clock):
    return ConversationSessionManager(engine=engine, audit=audit, idle_minutes=60, clock=clock)


class TestThreadStore:
    """Tests for the session to thread map."""

    def _binding(self, thread_id):
        return ThreadBinding(
            thread_id=thread_id,
            entitlement=Entitlement.of(["100"]),
            created_at=FIXED_NOW,
            last_used=FIXED_NOW,
        )

    def test_first_writer_wins(self):
        store = ThreadStore()

        first = store.put_if_absent("s1", self._binding("t1"))
        second = store.put_if_absent("s1", self._binding("t2"))

        assert first.thread_id == "t1"
        assert second.thread_id == "t1"
        assert len(store) == 1

    def test_remove_only_matching_thread(self):
        store = ThreadStore()
        store.put_if_absent("s1", self._binding("t1"))

        assert store.remove("s1", "t2") is None
        assert store.get("s1").thread_id == "t1"
        assert store.remove("s1", "t1").thread_id == "t1"
        assert store.get("s1") is None

    def test_touch_updates_last_used(self):
        store = ThreadStore()
        store.put_if_absent("s1", self._binding("t1"))
        later = FIXED_NOW + timedelta(minutes=5)

        store.touch("s1", "t1", later)

        assert store.get("s1").last_used == later


class TestConversationSessionManager:
    """Tests for thread reuse and rebinding."""

    @pytest.mark.asyncio
    async def test_same_entitlement_reuses_thread(self, threads, engine):
        entitlement = Entitlement.of(["100"])

        first = await threads.get_or_create_thread("session-1", entitlement)
        second = await threads.get_or_create_thread("session-1", Entitlement.of(["100"]))

        assert first == second
        assert engine.created == [first]
        assert threads.active_threads == 1

    @pytest.mark.asyncio
    async def test_changed_entitlement_rebinds(self, threads, engine, audit):
        first = await threads.get_or_create_thread("session-1", Entitlement.of(["100"]), user_id="1")
        second = await threads.get_or_create_thread("session-1", Entitlement.of(["100", "200"]), user_id="1")

        assert first != second
        assert engine.deleted == [first]
        assert threads.store.get("session-1").entitlement == Entitlement.of(["100", "200"])

        rebound = audit.audit_log.query(action=AuditAction.THREAD_REBOUND)
        assert len(rebound) == 1
        assert rebound[0].resource_id == first
        assert rebound[0].details == {"old_cases": ["100"], "new_cases": ["100", "200"]}

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, threads):
        first = await threads.get_or_create_thread("session-1", Entitlement.of(["100"]))
        second = await threads.get_or_create_thread("session-2", Entitlement.of(["100"]))

        assert first != second

    @pytest.mark.asyncio
    async def test_creation_race_keeps_one_thread(self, audit, clock):
        engine = SlowEngine()
        threads = ConversationSessionManager(engine=engine, audit=audit, idle_minutes=60, clock=clock)
        entitlement = Entitlement.of(["100"])

        results = await asyncio.gather(
            threads.get_or_create_thread("session-1", entitlement),
            threads.get_or_create_thread("session-1", entitlement),
        )

        assert results[0] == results[1]
        assert len(engine.created) == 2
        loser = next(t for t in engine.created if t != results[0])
        assert engine.deleted == [loser]
        assert threads.active_threads == 1

    @pytest.mark.asyncio
    async def test_remote_delete_failure_is_tolerated(self, threads, engine):
        first = await threads.get_or_create_thread("session-1", Entitlement.of(["100"]))
        engine.fail_deletes = True

        second = await threads.get_or_create_thread("session-1", Entitlement.of(["200"]))

        assert second != first
        assert threads.store.get("session-1").thread_id == second

    @pytest.mark.asyncio
    async def test_delete_thread(self, threads, engine):
        thread_id = await threads.get_or_create_thread("session-1", Entitlement.of(["100"]))

        assert await threads.delete_thread("session-1")
        assert engine.deleted == [thread_id]
        assert not await threads.delete_thread("session-1")
        assert threads.active_threads == 0

    @pytest.mark.asyncio
    async def test_expire_idle(self, threads, engine, clock):
        stale = await threads.get_or_create_thread("session-1", Entitlement.of(["100"]))
        clock.now = FIXED_NOW + timedelta(minutes=45)
        fresh = await threads.get_or_create_thread("session-2", Entitlement.of(["200"]))

        expired = await threads.expire_idle(FIXED_NOW + timedelta(minutes=61))

        assert expired == 1
        assert engine.deleted == [stale]
        assert threads.store.get("session-2").thread_id == fresh

    @pytest.mark.asyncio
    async def test_use_keeps_thread_alive(self, threads, clock):
        await threads.get_or_create_thread("session-1", Entitlement.of(["100"]))
        clock.now = FIXED_NOW + timedelta(minutes=50)
        await threads.get_or_create_thread("session-1", Entitlement.of(["100"]))

        assert await threads.expire_idle(FIXED_NOW + timedelta(minutes=100)) == 0
