"""
Entitlement Directory

In-memory mapping of identities to the cases they may see, with the reverse
case to identities index. The directory is replaced one whole generation at a
time; readers always hold a complete snapshot.
"""

import json
from datetime import datetime
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

import structlog

from casegate.models.cases import Entitlement, case_sort_key
from casegate.models.users import DirectoryEntry, Identity, StaffMember, normalize_email

logger = structlog.get_logger(__name__)


class AdminPolicy:
    """Decides which identities receive access to every case."""

    def __init__(self, roles: Iterable[str] = (), emails: Iterable[str] = ()):
        self.roles = frozenset(r.strip().lower() for r in roles if r and r.strip())
        self.emails = frozenset(filter(None, (normalize_email(e) for e in emails)))

    def is_admin(self, role: Optional[str] = None, email: Optional[str] = None) -> bool:
        if role and role.strip().lower() in self.roles:
            return True
        email = normalize_email(email)
        return email is not None and email in self.emails


class DirectorySnapshot:
    """
    One immutable generation of the directory.

    Never mutated after construction; a sync builds a new one and swaps it in.
    """

    def __init__(
        self,
        entries: Mapping[str, DirectoryEntry],
        cases: Iterable[str] = (),
        synced_at: Optional[datetime] = None,
    ):
        self._entries = MappingProxyType(dict(entries))
        self.cases = tuple(sorted(set(cases), key=case_sort_key))
        self.synced_at = synced_at

        by_email: dict[str, str] = {}
        by_case: dict[str, list[str]] = {}
        for key in sorted(self._entries):
            entry = self._entries[key]
            if entry.identity.email:
                by_email.setdefault(entry.identity.email, key)
            if not entry.entitlement.all_cases:
                for case in entry.entitlement.cases:
                    by_case.setdefault(case, []).append(key)

        self._by_email = MappingProxyType(by_email)
        self._by_case = MappingProxyType({case: tuple(keys) for case, keys in by_case.items()})

    @classmethod
    def empty(cls) -> "DirectorySnapshot":
        return cls({})

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[DirectoryEntry]:
        return self._entries.get(key)

    def lookup(self, user_id: Optional[str] = None, email: Optional[str] = None) -> Optional[DirectoryEntry]:
        """Find an identity by numeric id first, falling back to normalized email."""
        if user_id:
            entry = self._entries.get(f"id:{str(user_id).strip()}")
            if entry is not None:
                return entry

        email = normalize_email(email)
        if email:
            key = self._by_email.get(email)
            if key is not None:
                return self._entries[key]
        return None

    def identities_for_case(self, case_id: str) -> tuple[str, ...]:
        """Identity keys staffed on a case (administrators are not listed)."""
        return self._by_case.get(case_id, ())

    def entries(self) -> list[DirectoryEntry]:
        return [self._entries[key] for key in sorted(self._entries)]

    def export(self) -> dict[str, Any]:
        """
        Deterministic serialization of the directory contents.

        Excludes the sync timestamp so two syncs over unchanged sources
        compare equal.
        """
        identities = {}
        for key in sorted(self._entries):
            entry = self._entries[key]
            identities[key] = {
                "user_id": entry.identity.user_id,
                "email": entry.identity.email,
                "name": entry.identity.name,
                "role": entry.identity.role,
                "cases": entry.entitlement.to_claim(),
            }
        return {
            "cases": list(self.cases),
            "identities": identities,
            "case_index": {
                case: list(self._by_case[case])
                for case in sorted(self._by_case, key=case_sort_key)
            },
        }

    def export_json(self) -> str:
        return json.dumps(self.export(), sort_keys=True, indent=2)


class DirectoryBuilder:
    """
    Scratch structure filled during a sync.

    Staff members are merged across rosters: by numeric id when present,
    otherwise by email. An email-only entry is folded into the id-keyed entry
    once a roster reveals the id behind that email.
    """

    def __init__(self, admin_policy: Optional[AdminPolicy] = None):
        self.admin_policy = admin_policy or AdminPolicy()
        self._identities: dict[str, Identity] = {}
        self._cases: dict[str, set[str]] = {}
        self._admins: set[str] = set()
        self._email_keys: dict[str, str] = {}
        self._scanned: set[str] = set()

    def add_case(self, case_id: str) -> None:
        """Record a case as present in the store, even with no staff."""
        self._scanned.add(case_id)

    def add_roster(self, case_id: str, staff: Iterable[StaffMember]) -> None:
        self.add_case(case_id)
        for member in staff:
            key = self._key_for(member)
            if key is None:
                logger.warning("staff_member_without_identity", case_id=case_id, name=member.name)
                continue

            self._remember(key, member)
            self._cases.setdefault(key, set()).add(case_id)
            if self.admin_policy.is_admin(member.role, member.email):
                self._admins.add(key)

    def _key_for(self, member: StaffMember) -> Optional[str]:
        if member.user_id:
            key = f"id:{member.user_id}"
            if member.email:
                previous = self._email_keys.get(member.email)
                if previous is not None and previous != key and previous.startswith("email:"):
                    self._fold(previous, key)
            return key
        if member.email:
            return self._email_keys.get(member.email, f"email:{member.email}")
        return None

    def _fold(self, source: str, target: str) -> None:
        self._cases.setdefault(target, set()).update(self._cases.pop(source, set()))
        if source in self._admins:
            self._admins.discard(source)
            self._admins.add(target)
        self._identities.pop(source, None)

    def _remember(self, key: str, member: StaffMember) -> None:
        current = self._identities.get(key)
        if current is None:
            self._identities[key] = Identity(
                key=key,
                user_id=member.user_id,
                email=member.email,
                name=member.name,
                role=member.role,
            )
        else:
            self._identities[key] = Identity(
                key=key,
                user_id=current.user_id or member.user_id,
                email=current.email or member.email,
                name=current.name or member.name,
                role=current.role or member.role,
            )
        if member.email:
            self._email_keys[member.email] = key

    def build(self, synced_at: Optional[datetime] = None) -> DirectorySnapshot:
        entries = {}
        for key, identity in self._identities.items():
            if key in self._admins:
                entitlement = Entitlement.everything()
            else:
                entitlement = Entitlement.of(self._cases.get(key, ()))
            entries[key] = DirectoryEntry(identity=identity, entitlement=entitlement)
        return DirectorySnapshot(entries, cases=self._scanned, synced_at=synced_at)


class EntitlementDirectory:
    """
    Holder of the current directory generation.

    Owned by the application container and injected where needed; tests build
    isolated instances.
    """

    def __init__(self, snapshot: Optional[DirectorySnapshot] = None):
        self._snapshot = snapshot or DirectorySnapshot.empty()
        self._syncing = False

    @property
    def snapshot(self) -> DirectorySnapshot:
        return self._snapshot

    @property
    def last_sync(self) -> Optional[datetime]:
        return self._snapshot.synced_at

    @property
    def syncing(self) -> bool:
        return self._syncing

    def __len__(self) -> int:
        return len(self._snapshot)

    def lookup(self, user_id: Optional[str] = None, email: Optional[str] = None) -> Optional[DirectoryEntry]:
        return self._snapshot.lookup(user_id=user_id, email=email)

    def try_begin_sync(self) -> bool:
        """
        Claim the single sync slot.

        Check and set happen with no await in between, so two coroutines on
        the same loop can never both claim it.
        """
        if self._syncing:
            return False
        self._syncing = True
        return True

    def end_sync(self) -> None:
        self._syncing = False

    def replace(self, snapshot: DirectorySnapshot) -> None:
        """Swap in a new generation."""
        previous = len(self._snapshot)
        self._snapshot = snapshot
        logger.info(
            "directory_replaced",
            identities=len(snapshot),
            previous_identities=previous,
            cases=len(snapshot.cases),
        )

    def stats(self, top: int = 10) -> dict[str, Any]:
        """Identity and case counts plus the identities holding the most cases."""
        snapshot = self._snapshot
        entries = snapshot.entries()
        admins = [e for e in entries if e.entitlement.all_cases]
        ranked = sorted(
            (e for e in entries if not e.entitlement.all_cases),
            key=lambda e: (-len(e.entitlement.cases), e.identity.key),
        )
        return {
            "identities": len(entries),
            "administrators": len(admins),
            "cases": len(snapshot.cases),
            "staffed_cases": sum(1 for case in snapshot.cases if snapshot.identities_for_case(case)),
            "last_sync": snapshot.synced_at.isoformat() if snapshot.synced_at else None,
            "top_identities": [
                {
                    "key": e.identity.key,
                    "name": e.identity.name,
                    "email": e.identity.email,
                    "case_count": len(e.entitlement.cases),
                }
                for e in ranked[:top]
            ],
        }
