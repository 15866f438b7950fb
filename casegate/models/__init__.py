"""
CaseGate Models Package

Pydantic models for the CaseGate system.
"""

from .cases import (
    ALL_CASES,
    CaseFilter,
    CaseNamespace,
    Entitlement,
)
from .chat import (
    Annotation,
    AnnotationKind,
    AnswerStatus,
    ChatAnswer,
    EngineRun,
    ThreadBinding,
)
from .documents import (
    Citation,
    DocumentProperties,
    ResolutionStrategy,
    ResolvedDocument,
    SearchHit,
    SignedAccessGrant,
)
from .users import (
    AuthorityLogin,
    DirectoryEntry,
    Identity,
    SessionClaims,
    StaffMember,
    normalize_email,
)

__all__ = [
    # Cases
    "ALL_CASES",
    "CaseFilter",
    "CaseNamespace",
    "Entitlement",
    # Chat
    "Annotation",
    "AnnotationKind",
    "AnswerStatus",
    "ChatAnswer",
    "EngineRun",
    "ThreadBinding",
    # Documents
    "Citation",
    "DocumentProperties",
    "ResolutionStrategy",
    "ResolvedDocument",
    "SearchHit",
    "SignedAccessGrant",
    # Users
    "AuthorityLogin",
    "DirectoryEntry",
    "Identity",
    "SessionClaims",
    "StaffMember",
    "normalize_email",
]
