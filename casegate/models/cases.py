"""
Case Models

Case numbers, the case namespace of the object store, and entitlements.
"""

import re
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

ALL_CASES = "*"


def case_sort_key(case_id: str) -> tuple:
    """Sort numeric case numbers numerically, anything else after them."""
    if case_id.isdigit():
        return (0, int(case_id), case_id)
    return (1, 0, case_id)


class Entitlement(BaseModel):
    """
    The set of cases a session may see.

    Either every case (the ``*`` sentinel held by administrators) or a
    specific set of case numbers. ``permits`` is the single predicate used by
    every enforcement layer.
    """

    model_config = ConfigDict(frozen=True)

    all_cases: bool = Field(default=False, description="Access to every case")
    cases: frozenset[str] = Field(
        default_factory=frozenset,
        description="Authorized case numbers when not all_cases"
    )

    @classmethod
    def everything(cls) -> "Entitlement":
        return cls(all_cases=True)

    @classmethod
    def nothing(cls) -> "Entitlement":
        return cls()

    @classmethod
    def of(cls, cases: Iterable[str]) -> "Entitlement":
        cleaned = (str(case).strip() for case in cases)
        return cls(cases=frozenset(case for case in cleaned if case))

    @classmethod
    def from_claim(cls, claim: Iterable[str]) -> "Entitlement":
        """Build from the list form carried in session tokens."""
        claim = list(claim)
        if ALL_CASES in claim:
            return cls.everything()
        return cls.of(claim)

    def to_claim(self) -> list[str]:
        """List form carried in session tokens: ``["*"]`` or sorted cases."""
        if self.all_cases:
            return [ALL_CASES]
        return sorted(self.cases, key=case_sort_key)

    def permits(self, case_id: Optional[str]) -> bool:
        """Check whether this entitlement grants access to a case."""
        if self.all_cases:
            return True
        return case_id is not None and case_id in self.cases

    @property
    def is_empty(self) -> bool:
        return not self.all_cases and not self.cases

    def describe(self) -> str:
        """Human readable form used in messages, e.g. ``[100, 200]``."""
        if self.all_cases:
            return "[all cases]"
        return "[" + ", ".join(self.to_claim()) + "]"


class CaseFilter(BaseModel):
    """
    Hard pre-filter restricting retrieval to a set of cases.

    ``case == c1 OR case == c2 ...``. Each collaborator renders it in its own
    filter syntax.
    """

    model_config = ConfigDict(frozen=True)

    cases: tuple[str, ...]

    @classmethod
    def for_entitlement(cls, entitlement: Entitlement) -> Optional["CaseFilter"]:
        """Filter for an entitlement; None when every case is permitted."""
        if entitlement.all_cases:
            return None
        return cls(cases=tuple(entitlement.to_claim()))

    def to_odata(self, field: str) -> str:
        """Search index syntax: ``case_number eq '100' or case_number eq '200'``."""
        if not self.cases:
            # Matches nothing
            return f"{field} eq null and not ({field} eq null)"
        clauses = [f"{field} eq '{case.replace(chr(39), chr(39) * 2)}'" for case in self.cases]
        return " or ".join(clauses)

    def to_attribute_filter(self, key: str) -> dict[str, Any]:
        """Engine file-search syntax: a compound ``or`` of ``eq`` comparisons."""
        comparisons = [{"type": "eq", "key": key, "value": case} for case in self.cases]
        if len(comparisons) == 1:
            return comparisons[0]
        return {"type": "or", "filters": comparisons}

    def __str__(self) -> str:
        return " OR ".join(f"caseId == {case}" for case in self.cases)


class CaseNamespace:
    """
    The top-level folder structure of the object store.

    Every document lives under ``<case number>/...``. The case number shape is
    configurable; paths whose first segment does not match it belong to no
    case.
    """

    def __init__(self, pattern: str = r"^\d+$"):
        self.pattern = re.compile(pattern)

    def is_case_id(self, segment: str) -> bool:
        return bool(segment) and self.pattern.match(segment) is not None

    def case_of(self, path: Optional[str]) -> Optional[str]:
        """Return the leading case number of a storage path, if any."""
        if not path:
            return None
        segments = path.strip().lstrip("/").split("/")
        if len(segments) < 2:
            return None
        head = segments[0]
        return head if self.is_case_id(head) else None

    @staticmethod
    def prefix(case_id: str) -> str:
        return f"{case_id}/"

    def prefixes_for(self, entitlement: Entitlement) -> Optional[list[str]]:
        """
        Storage prefixes an entitlement may enumerate.

        Returns None for all-case access, meaning the whole store.
        """
        if entitlement.all_cases:
            return None
        return [self.prefix(case) for case in entitlement.to_claim()]
