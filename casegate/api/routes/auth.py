"""
Authentication Routes

Login with case-management credentials or a federated identity token.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field, model_validator

from casegate.api.dependencies import CurrentSession, Services
from casegate.models.users import SessionClaims

router = APIRouter()


class LoginRequest(BaseModel):
    """Password credentials or a federated identity token."""
    username: Optional[str] = Field(default=None, max_length=320)
    password: Optional[str] = Field(default=None, max_length=512)
    id_token: Optional[str] = Field(default=None, description="Federated identity token")

    @model_validator(mode="after")
    def check_credentials(self) -> "LoginRequest":
        if self.id_token:
            return self
        if not self.username or not self.password:
            raise ValueError("Provide username and password, or id_token")
        return self


class IdentityResponse(BaseModel):
    """The signed-in identity and its frozen entitlement."""
    user_id: Optional[str]
    email: Optional[str]
    name: str
    role: Optional[str]
    cases: list[str]
    session_id: str
    expires_at: datetime

    @classmethod
    def from_claims(cls, claims: SessionClaims) -> "IdentityResponse":
        return cls(
            user_id=claims.user_id,
            email=claims.email,
            name=claims.name,
            role=claims.role,
            cases=claims.cases,
            session_id=claims.sid,
            expires_at=claims.exp,
        )


class LoginResponse(BaseModel):
    """Login response with the session token."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    identity: IdentityResponse


@router.post("/login", response_model=LoginResponse)
async def login(request: LoginRequest, services: Services) -> LoginResponse:
    """Authenticate and return a session token."""
    if request.id_token:
        issued = await services.sessions.login_federated(request.id_token)
    else:
        issued = await services.sessions.login(request.username, request.password)

    lifetime = issued.claims.exp - issued.claims.iat
    return LoginResponse(
        access_token=issued.token,
        expires_in=int(lifetime.total_seconds()),
        identity=IdentityResponse.from_claims(issued.claims),
    )


@router.get("/me", response_model=IdentityResponse)
async def me(session: CurrentSession) -> IdentityResponse:
    """Identity and entitlement carried by the current token."""
    return IdentityResponse.from_claims(session)
