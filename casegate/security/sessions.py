"""
Session Issuer

Authenticates users and issues signed session tokens carrying the
entitlement snapshot taken at login.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import uuid4

import jwt
import structlog
from pydantic import BaseModel

from config import get_settings
from casegate.errors import CaseGateError, Unauthorized
from casegate.integrations.base import CaseAuthority
from casegate.integrations.federated import FederatedTokenVerifier
from casegate.models.cases import Entitlement
from casegate.models.users import AuthorityLogin, SessionClaims

from .audit import AuditLogger
from .directory import AdminPolicy, EntitlementDirectory

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IssuedSession(BaseModel):
    """A freshly issued token and the claims inside it."""

    token: str
    claims: SessionClaims

    @property
    def expires_at(self) -> datetime:
        return self.claims.exp


class SessionIssuer:
    """
    Issues and decodes session tokens.

    The entitlement is copied into the token by value. Later directory
    changes never alter an issued token; a new login is needed to observe
    them.
    """

    def __init__(
        self,
        directory: EntitlementDirectory,
        authority: CaseAuthority,
        verifier: Optional[FederatedTokenVerifier] = None,
        admin_policy: Optional[AdminPolicy] = None,
        audit: Optional[AuditLogger] = None,
        secret: Optional[str] = None,
        algorithm: Optional[str] = None,
        expire_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.directory = directory
        self.authority = authority
        self.verifier = verifier
        self.admin_policy = admin_policy or AdminPolicy(settings.admin_roles, settings.admin_emails)
        self.audit = audit
        self.secret = secret or settings.jwt_secret_key
        self.algorithm = algorithm or settings.jwt_algorithm
        self.lifetime = timedelta(minutes=expire_minutes or settings.session_expire_minutes)
        self.clock = clock

    async def login(self, username: str, password: str) -> IssuedSession:
        """
        Password login against the case-management authority.

        Raises:
            Unauthorized: Invalid credentials
            ServiceUnavailable: The authority could not be reached
        """
        try:
            login = await self.authority.authenticate(username, password)
        except CaseGateError as e:
            self._log_failure(username, "password", e)
            raise
        return self.issue(login, method="password")

    async def login_federated(self, id_token: str) -> IssuedSession:
        """
        Login with an identity token from the federated provider.

        Raises:
            Unauthorized: The token is invalid or federation is not configured
            ServiceUnavailable: The provider keys could not be fetched
        """
        if self.verifier is None:
            raise Unauthorized("Federated sign-in is not enabled")
        try:
            login = await asyncio.to_thread(self.verifier.verify, id_token)
        except CaseGateError as e:
            self._log_failure(None, "federated", e)
            raise
        return self.issue(login, method="federated")

    def issue(self, login: AuthorityLogin, method: str = "password") -> IssuedSession:
        """Resolve an authenticated identity against the directory and sign a token."""
        entry = self.directory.lookup(user_id=login.user_id, email=login.email)

        if entry is not None:
            identity = entry.identity
            entitlement = entry.entitlement
            sub = identity.key
            user_id = identity.user_id or login.user_id
            email = identity.email or login.email
            name = identity.name or login.name or ""
            role = identity.role
        else:
            entitlement = Entitlement.nothing()
            user_id = login.user_id
            email = login.email
            name = login.name or login.username or ""
            role = None
            if user_id:
                sub = f"id:{user_id}"
            elif email:
                sub = f"email:{email}"
            else:
                sub = f"user:{login.username}"
            logger.info("identity_not_in_directory", sub=sub)

        if not entitlement.all_cases and self.admin_policy.is_admin(role, email):
            entitlement = Entitlement.everything()

        now = self.clock()
        claims = SessionClaims(
            sub=sub,
            sid=str(uuid4()),
            user_id=user_id,
            email=email,
            name=name,
            role=role,
            cases=entitlement.to_claim(),
            iat=now,
            exp=now + self.lifetime,
        )
        token = self.encode(claims)

        logger.info("session_issued", sub=sub, session_id=claims.sid, cases=claims.cases, method=method)
        if self.audit:
            self.audit.log_login(
                email=email,
                success=True,
                user_id=user_id,
                session_id=claims.sid,
                cases=claims.cases,
                method=method,
            )
        return IssuedSession(token=token, claims=claims)

    def encode(self, claims: SessionClaims) -> str:
        payload = claims.model_dump()
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def decode(self, token: str) -> SessionClaims:
        """
        Validate a session token.

        Raises:
            Unauthorized: Bad signature, malformed, or expired
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat", "sub", "sid"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise Unauthorized("Session has expired") from e
        except jwt.InvalidTokenError as e:
            raise Unauthorized("Invalid session token") from e

        try:
            return SessionClaims.model_validate(payload)
        except ValueError as e:
            raise Unauthorized("Malformed session token") from e

    def _log_failure(self, username: Optional[str], method: str, error: CaseGateError) -> None:
        logger.warning("login_failed", username=username, method=method, error=error.code)
        if self.audit and isinstance(error, Unauthorized):
            self.audit.log_login(
                email=username,
                success=False,
                method=method,
                failure_reason=str(error),
            )
