"""
Federated Identity Verification

Verifies identity tokens issued by an external OpenID provider so users can
sign in without a case-management password.
"""

from typing import Optional

import jwt
import structlog
from jwt import PyJWKClient

from config import get_settings
from casegate.errors import ServiceUnavailable, Unauthorized
from casegate.models.users import AuthorityLogin

logger = structlog.get_logger(__name__)


class FederatedTokenVerifier:
    """Validate RS256 identity tokens against the provider's JWKS."""

    ALGORITHMS = ["RS256", "ES256"]

    def __init__(
        self,
        jwks_url: Optional[str] = None,
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
        jwks_client: Optional[PyJWKClient] = None,
    ):
        settings = get_settings()
        self.audience = audience or settings.federated_audience
        self.issuer = issuer or settings.federated_issuer
        url = jwks_url or settings.federated_jwks_url
        if jwks_client is None and not url:
            raise ValueError("FEDERATED_JWKS_URL is not configured")
        self._jwks = jwks_client or PyJWKClient(url, cache_keys=True)

    def verify(self, id_token: str) -> AuthorityLogin:
        """
        Verify a token and return the identity it asserts.

        Raises:
            Unauthorized: Signature, audience, issuer or expiry is invalid,
                or the token carries no email
            ServiceUnavailable: The signing keys could not be fetched
        """
        try:
            signing_key = self._jwks.get_signing_key_from_jwt(id_token)
        except jwt.PyJWKClientConnectionError as e:
            logger.error("federated_jwks_unreachable", error=str(e))
            raise ServiceUnavailable("Identity provider keys are unavailable") from e
        except jwt.PyJWTError as e:
            raise Unauthorized("Invalid identity token") from e

        options = {"verify_aud": self.audience is not None}
        try:
            claims = jwt.decode(
                id_token,
                signing_key.key,
                algorithms=self.ALGORITHMS,
                audience=self.audience,
                issuer=self.issuer,
                options=options,
            )
        except jwt.ExpiredSignatureError as e:
            raise Unauthorized("Identity token has expired") from e
        except jwt.PyJWTError as e:
            logger.warning("federated_token_rejected", error=str(e))
            raise Unauthorized("Invalid identity token") from e

        email = claims.get("email")
        if not email:
            raise Unauthorized("Identity token does not carry an email")

        return AuthorityLogin(
            user_id=None,
            username=email,
            email=email,
            name=claims.get("name"),
        )
