"""
Tests for the Entitlement Directory and its Synchronizer
"""

import asyncio

import pytest

from casegate.errors import ServiceUnavailable, SyncAborted, SyncPartialFailure, Unauthorized
from casegate.models.cases import Entitlement
from casegate.models.users import StaffMember
from casegate.security.audit import AuditAction
from casegate.security.directory import AdminPolicy, DirectoryBuilder, EntitlementDirectory
from casegate.security.synchronizer import DirectorySynchronizer, SyncStatus

from conftest import FIXED_NOW, FakeAuthority


class TestDirectoryBuilder:
    """Tests for merging rosters into one generation."""

    def test_merges_rosters_by_user_id(self):
        builder = DirectoryBuilder()
        builder.add_roster("100", [StaffMember(user_id="1", email="ana@firm.test", name="Ana")])
        builder.add_roster("200", [StaffMember(user_id="1", email="ana@firm.test", name="Ana")])

        snapshot = builder.build()

        assert len(snapshot) == 1
        assert snapshot.get("id:1").entitlement == Entitlement.of(["100", "200"])

    def test_email_only_entry_folds_into_id(self):
        builder = DirectoryBuilder()
        builder.add_roster("100", [StaffMember(email="Ana@Firm.test")])
        builder.add_roster("200", [StaffMember(user_id="5", email="ana@firm.test", name="Ana")])
        builder.add_roster("300", [StaffMember(email="ana@firm.test")])

        snapshot = builder.build()

        assert "email:ana@firm.test" not in snapshot
        assert snapshot.get("id:5").entitlement == Entitlement.of(["100", "200", "300"])
        assert snapshot.identities_for_case("100") == ("id:5",)

    def test_admin_role_grants_everything(self):
        builder = DirectoryBuilder(AdminPolicy(roles=["Administrator"]))
        builder.add_roster("100", [StaffMember(user_id="9", role="administrator")])

        entry = builder.build().get("id:9")

        assert entry.entitlement.all_cases

    def test_members_without_identity_are_skipped(self):
        builder = DirectoryBuilder()
        builder.add_roster("100", [StaffMember(name="Unknown")])

        snapshot = builder.build()

        assert len(snapshot) == 0
        assert snapshot.cases == ("100",)


class TestEntitlementDirectory:
    """Tests for lookups and generation swaps."""

    def test_lookup_prefers_user_id_then_email(self):
        builder = DirectoryBuilder()
        builder.add_roster("100", [StaffMember(user_id="1", email="ana@firm.test")])
        builder.add_roster("200", [StaffMember(email="ben@firm.test")])
        directory = EntitlementDirectory(builder.build())

        assert directory.lookup(user_id="1").identity.key == "id:1"
        assert directory.lookup(user_id="404", email=" BEN@firm.test").identity.key == "email:ben@firm.test"
        assert directory.lookup(user_id="404") is None
        assert directory.lookup() is None

    def test_single_sync_slot(self):
        directory = EntitlementDirectory()

        assert directory.try_begin_sync()
        assert not directory.try_begin_sync()
        directory.end_sync()
        assert directory.try_begin_sync()

    def test_replace_swaps_whole_generation(self):
        directory = EntitlementDirectory()
        before = directory.snapshot
        builder = DirectoryBuilder()
        builder.add_roster("100", [StaffMember(user_id="1")])

        directory.replace(builder.build(synced_at=FIXED_NOW))

        assert len(before) == 0
        assert len(directory) == 1
        assert directory.last_sync == FIXED_NOW


class TestDirectorySynchronizer:
    """Tests for rebuilding the directory from the authority."""

    @pytest.mark.asyncio
    async def test_sync_builds_entitlements(self, synchronizer, directory):
        report = await synchronizer.sync()

        assert report.status == SyncStatus.COMPLETE
        assert report.cases_scanned == 3
        assert report.identities == 4
        assert report.partial_failure is None

        assert directory.lookup(user_id="1").entitlement == Entitlement.of(["100", "200"])
        assert directory.lookup(user_id="2").entitlement == Entitlement.of(["200"])
        assert directory.lookup(email="carla@firm.test").entitlement == Entitlement.of(["300"])
        assert directory.lookup(user_id="9").entitlement == Entitlement.everything()
        assert directory.last_sync == FIXED_NOW

    @pytest.mark.asyncio
    async def test_non_case_segments_are_ignored(self, synchronizer, authority):
        await synchronizer.sync()

        assert [case for case, _ in authority.roster_calls] == ["100", "200", "300"]

    @pytest.mark.asyncio
    async def test_sync_is_idempotent(self, synchronizer, directory):
        await synchronizer.sync()
        first = directory.snapshot.export_json()

        await synchronizer.sync()

        assert directory.snapshot.export_json() == first

    @pytest.mark.asyncio
    async def test_concurrent_sync_is_skipped(self, synchronizer, authority, directory, audit):
        authority.gate = asyncio.Event()
        running = asyncio.create_task(synchronizer.sync())
        while not authority.roster_calls:
            await asyncio.sleep(0)

        skipped = await synchronizer.sync()
        assert directory.syncing

        authority.gate.set()
        finished = await running

        assert skipped.status == SyncStatus.SKIPPED
        assert finished.status == SyncStatus.COMPLETE
        assert authority.auth_calls == ["system"]
        assert len(authority.roster_calls) == 3
        assert not directory.syncing
        assert audit.audit_log.query(action=AuditAction.SYNC_SKIPPED)

    @pytest.mark.asyncio
    async def test_system_auth_failure_keeps_previous_generation(self, synchronizer, authority, directory, audit):
        await synchronizer.sync()
        previous = directory.snapshot
        authority.system_auth_fails = True

        with pytest.raises(SyncAborted):
            await synchronizer.sync()

        assert directory.snapshot is previous
        assert not directory.syncing
        assert audit.audit_log.query(action=AuditAction.SYNC_ABORTED)

    @pytest.mark.asyncio
    async def test_unlistable_store_aborts(self, synchronizer, store, directory):
        async def broken_list(prefix=None):
            raise ServiceUnavailable("store down")

        store.list = broken_list

        with pytest.raises(SyncAborted):
            await synchronizer.sync()

        assert len(directory) == 0

    @pytest.mark.asyncio
    async def test_expired_token_reauthenticates_once(self, synchronizer, authority, directory):
        authority.expire_once = {"200"}

        report = await synchronizer.sync()

        assert report.status == SyncStatus.COMPLETE
        assert authority.auth_calls == ["system", "system"]
        assert authority.roster_calls == [
            ("100", "token-1"),
            ("200", "token-1"),
            ("200", "token-2"),
            ("300", "token-2"),
        ]
        assert directory.lookup(user_id="2").entitlement == Entitlement.of(["200"])

    @pytest.mark.asyncio
    async def test_failed_reauthentication_aborts(self, directory, store, namespace, admin_policy):
        class ExpiringAuthority(FakeAuthority):
            async def authenticate(self, username, password):
                if self.auth_calls:
                    self.auth_calls.append(username)
                    raise Unauthorized("system principal locked")
                return await super().authenticate(username, password)

        authority = ExpiringAuthority()
        authority.expire_once = {"100"}
        synchronizer = DirectorySynchronizer(
            directory=directory,
            authority=authority,
            store=store,
            namespace=namespace,
            admin_policy=admin_policy,
            username="system",
            password="system-pass",
            request_delay=0,
        )

        with pytest.raises(SyncAborted):
            await synchronizer.sync()

        assert len(directory) == 0
        assert not directory.syncing

    @pytest.mark.asyncio
    async def test_failed_roster_carries_previous_staff(self, synchronizer, authority, directory, audit):
        await synchronizer.sync()
        authority.failing_cases = {"200"}

        report = await synchronizer.sync()

        assert report.status == SyncStatus.PARTIAL
        assert report.failed_cases == ["200"]
        assert isinstance(report.partial_failure, SyncPartialFailure)
        assert report.partial_failure.failed_cases == ["200"]
        assert directory.lookup(user_id="2").entitlement == Entitlement.of(["200"])
        assert directory.lookup(user_id="1").entitlement == Entitlement.of(["100", "200"])
        assert audit.audit_log.query(action=AuditAction.SYNC_PARTIAL)

    @pytest.mark.asyncio
    async def test_failed_roster_on_first_sync_leaves_case_unstaffed(self, synchronizer, authority, directory):
        authority.failing_cases = {"200"}

        report = await synchronizer.sync()

        assert report.status == SyncStatus.PARTIAL
        assert directory.lookup(user_id="2") is None
        assert directory.lookup(user_id="1").entitlement == Entitlement.of(["100"])

    @pytest.mark.asyncio
    async def test_delay_between_roster_requests(self, directory, authority, store, namespace, admin_policy):
        pauses = []

        async def record_sleep(seconds):
            pauses.append(seconds)

        synchronizer = DirectorySynchronizer(
            directory=directory,
            authority=authority,
            store=store,
            namespace=namespace,
            admin_policy=admin_policy,
            username="system",
            password="system-pass",
            request_delay=0.25,
            sleep=record_sleep,
        )

        await synchronizer.sync()

        assert pauses == [0.25, 0.25]

    @pytest.mark.asyncio
    async def test_stats(self, synchronizer, directory):
        await synchronizer.sync()

        stats = directory.stats(top=1)

        assert stats["identities"] == 4
        assert stats["administrators"] == 1
        assert stats["cases"] == 3
        assert stats["staffed_cases"] == 3
        assert stats["top_identities"][0]["key"] == "id:1"
        assert stats["top_identities"][0]["case_count"] == 2
