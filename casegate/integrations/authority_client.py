"""
Case-Management Authority Client

HTTP client for the practice-management API that owns case staffing.
"""

from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import get_settings
from casegate.errors import AuthorityAuthExpired, ServiceUnavailable, Unauthorized
from casegate.models.users import AuthorityLogin, StaffMember

from .base import CaseAuthority

logger = structlog.get_logger(__name__)


class CaseAuthorityClient(CaseAuthority):
    """
    REST client for the case-management authority.

    Endpoints:
    - ``POST /Users/authenticate`` with ``Username``/``Password``
    - ``GET /case/staff/byCaseNumber?CaseNumber=<n>`` with a bearer token
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.authority_base_url).rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=timeout or settings.authority_timeout_seconds,
            headers={"Content-Type": "application/json"},
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await self._client.request(method, f"{self.base_url}{path}", **kwargs)

    async def authenticate(self, username: str, password: str) -> AuthorityLogin:
        try:
            response = await self._request(
                "POST",
                "/Users/authenticate",
                json={"Username": username, "Password": password},
            )
        except httpx.TransportError as e:
            logger.error("authority_unreachable", operation="authenticate", error=str(e))
            raise ServiceUnavailable("Case-management authority is unreachable") from e

        if response.status_code in (400, 401, 403):
            raise Unauthorized("Invalid credentials")
        if response.status_code >= 500:
            raise ServiceUnavailable(f"Authority returned {response.status_code}")
        if response.status_code >= 400:
            raise Unauthorized(f"Authentication rejected ({response.status_code})")

        try:
            data = response.json() or {}
        except ValueError as e:
            logger.error("authority_malformed_login", error=str(e))
            raise ServiceUnavailable("Authority returned an unreadable login response") from e
        if not isinstance(data, dict):
            raise ServiceUnavailable("Authority returned an unreadable login response")
        token = data.get("token")
        if not token:
            raise Unauthorized("Authority did not return a token")

        user_id = data.get("userID") or data.get("userId") or data.get("id")
        return AuthorityLogin(
            user_id=str(user_id) if user_id is not None else None,
            username=data.get("username") or username,
            email=data.get("email") or (username if "@" in username else None),
            name=data.get("name") or " ".join(
                p for p in (data.get("firstName"), data.get("lastName")) if p
            ) or None,
            token=token,
        )

    async def staff_for_case(self, case_id: str, token: str) -> list[StaffMember]:
        try:
            response = await self._request(
                "GET",
                "/case/staff/byCaseNumber",
                params={"CaseNumber": case_id},
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TransportError as e:
            logger.error("authority_unreachable", operation="staff_for_case", case_id=case_id, error=str(e))
            raise ServiceUnavailable("Case-management authority is unreachable") from e

        if response.status_code == 404:
            logger.info("case_not_found_in_authority", case_id=case_id)
            return []
        if response.status_code == 401:
            raise AuthorityAuthExpired(f"Token rejected while reading case {case_id}")
        if response.status_code >= 400:
            raise ServiceUnavailable(f"Authority returned {response.status_code} for case {case_id}")

        try:
            data = response.json() or []
            if isinstance(data, dict):
                data = data.get("staff") or data.get("value") or []
            return [StaffMember.model_validate(item) for item in data if isinstance(item, dict)]
        except (TypeError, ValueError, ValidationError) as e:
            logger.error("authority_malformed_roster", case_id=case_id, error=str(e))
            raise ServiceUnavailable(f"Authority returned an unreadable roster for case {case_id}") from e

    async def aclose(self) -> None:
        await self._client.aclose()
