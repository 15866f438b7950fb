"""
Document Models

Object-store properties, retrieval index hits, citations and signed
access grants.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class DocumentProperties(BaseModel):
    """Properties of one object in the store."""

    size: int = Field(default=0, description="Size in bytes")
    content_type: Optional[str] = Field(default=None)
    last_modified: Optional[datetime] = Field(default=None)


class SearchHit(BaseModel):
    """A scored document returned by the retrieval index."""

    path: Optional[str] = Field(default=None, description="Storage path, if known")
    title: str = Field(default="", description="Indexed document title")
    score: float = Field(default=0.0)
    snippet: str = Field(default="")


class ResolutionStrategy(str, Enum):
    """Which step of the resolution cascade located a document."""
    PATH_HINT = "path_hint"
    INDEX = "index"
    EXACT = "exact"
    CASE_INSENSITIVE = "case_insensitive"
    FUZZY = "fuzzy"
    KEYWORDS = "keywords"


class SignedAccessGrant(BaseModel):
    """A read-only, time-boxed URL for exactly one storage path."""

    path: str
    url: str
    expires_at: datetime
    permissions: str = Field(default="r", description="Always read-only")


class ResolvedDocument(BaseModel):
    """A document located by the resolver and checked against an entitlement."""

    display_name: str
    path: str
    case_id: Optional[str] = None
    strategy: ResolutionStrategy
    properties: Optional[DocumentProperties] = None
    grant: Optional[SignedAccessGrant] = None

    def to_response_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "case_id": self.case_id,
            "signed_url": self.grant.url if self.grant else None,
            "expires_at": self.grant.expires_at.isoformat() if self.grant else None,
            "strategy": self.strategy.value,
            "metadata": self.properties.model_dump(mode="json") if self.properties else None,
        }


class Citation(BaseModel):
    """
    A source reference attached to a generated answer.

    Only citations whose resolved path belongs to a permitted case are ever
    returned to a caller.
    """

    title: str
    path: Optional[str] = None
    case_id: Optional[str] = None
    content: str = Field(default="", description="Snippet or quoted excerpt")
