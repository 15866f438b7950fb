"""
User Models

Identities as reported by the case-management authority, directory entries,
and the claims carried by session tokens.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .cases import Entitlement


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Lower-case and trim an email; empty values become None."""
    if email is None:
        return None
    email = str(email).strip().lower()
    return email or None


def _first_present(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


class StaffMember(BaseModel):
    """
    One entry of a case's staff roster.

    Accepts both the compact ``{userId, email, name, role}`` shape and the
    authority's native ``{userID, email, firstName, lastName, role}`` shape.
    """

    user_id: Optional[str] = Field(default=None, description="External numeric user id")
    email: Optional[str] = Field(default=None, description="Normalized email")
    name: str = Field(default="", description="Display name")
    role: Optional[str] = Field(default=None, description="Role on the case")

    @model_validator(mode="before")
    @classmethod
    def accept_authority_shapes(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        user_id = _first_present(data, "user_id", "userId", "userID", "UserID", "UserId")
        name = _first_present(data, "name", "Name", "displayName")
        if name is None:
            parts = [
                _first_present(data, "firstName", "FirstName"),
                _first_present(data, "lastName", "LastName"),
            ]
            name = " ".join(str(p).strip() for p in parts if p)

        return {
            "user_id": str(user_id).strip() if user_id is not None else None,
            "email": _first_present(data, "email", "Email", "emailAddress"),
            "name": name or "",
            "role": _first_present(data, "role", "Role", "roleName"),
        }

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return normalize_email(v)

    @property
    def identity_key(self) -> Optional[str]:
        """Directory key: the numeric id when known, else the email."""
        if self.user_id:
            return f"id:{self.user_id}"
        if self.email:
            return f"email:{self.email}"
        return None


class Identity(BaseModel):
    """A user known to the directory."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., description="Directory key (id:<n> or email:<addr>)")
    user_id: Optional[str] = Field(default=None)
    email: Optional[str] = Field(default=None)
    name: str = Field(default="")
    role: Optional[str] = Field(default=None)


class DirectoryEntry(BaseModel):
    """An identity together with its entitlement."""

    model_config = ConfigDict(frozen=True)

    identity: Identity
    entitlement: Entitlement


class AuthorityLogin(BaseModel):
    """Result of authenticating against the case-management authority."""

    user_id: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    token: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return normalize_email(v)


class SessionClaims(BaseModel):
    """
    Claims embedded in a signed session token.

    ``cases`` is the entitlement frozen at login; it never changes for the
    lifetime of the token.
    """

    sub: str = Field(..., description="Identity reference")
    sid: str = Field(..., description="Session id")
    user_id: Optional[str] = None
    email: Optional[str] = None
    name: str = ""
    role: Optional[str] = None
    cases: list[str] = Field(default_factory=list)
    iat: datetime
    exp: datetime

    @property
    def entitlement(self) -> Entitlement:
        return Entitlement.from_claim(self.cases)

    def to_context_dict(self) -> dict[str, Any]:
        """Compact form for logging and audit entries."""
        return {
            "user_id": self.user_id,
            "email": self.email,
            "session_id": self.sid,
            "cases": self.cases,
        }
