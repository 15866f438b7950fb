"""
Error Taxonomy

Domain errors raised by the access-control engine and mapped to HTTP
responses by the API layer.
"""

from typing import Optional


class CaseGateError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    code: str = "internal_error"
    retryable: bool = False
    user_message: str = "Something went wrong while processing your request."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.user_message)


class Unauthorized(CaseGateError):
    """Bad credentials, or an invalid or expired session token."""

    status_code = 401
    code = "unauthorized"
    user_message = "Your credentials are invalid or your session has expired."


class Forbidden(CaseGateError):
    """Authenticated, but the entitlement check failed."""

    status_code = 403
    code = "forbidden"
    user_message = "You do not have access to this case."

    def __init__(self, message: Optional[str] = None, case_id: Optional[str] = None):
        super().__init__(message)
        self.case_id = case_id


class NotFound(CaseGateError):
    """Document absent after exhausting the resolution cascade."""

    status_code = 404
    code = "not_found"
    user_message = "The requested document could not be found."


class ServiceUnavailable(CaseGateError):
    """A collaborator is unreachable. The caller may retry."""

    status_code = 503
    code = "service_unavailable"
    retryable = True
    user_message = "A required service is temporarily unavailable. Please try again shortly."


class SyncAborted(ServiceUnavailable):
    """The synchronizer could not authenticate as the system principal."""

    code = "sync_aborted"
    user_message = "The permissions directory could not be refreshed. The previous version is still in use."


class AuthorityAuthExpired(CaseGateError):
    """The authority rejected a system token mid-sync."""

    status_code = 503
    code = "authority_auth_expired"
    retryable = True


class EngineTimeout(CaseGateError):
    """The generation engine did not finish within the polling ceiling."""

    status_code = 504
    code = "engine_timeout"
    retryable = True
    user_message = "The assistant took too long to answer. Please try again."


class EngineFailed(CaseGateError):
    """The generation engine reported a terminal failure."""

    status_code = 502
    code = "engine_failed"
    user_message = "The assistant could not answer this question. Please rephrase and try again."


class SyncPartialFailure(CaseGateError):
    """
    Some case rosters could not be fetched during a sync.

    Non-fatal: the directory was still replaced. Carried on the sync report
    rather than raised by the synchronizer.
    """

    status_code = 200
    code = "sync_partial_failure"
    retryable = True
    user_message = "The permissions directory was refreshed, but some cases could not be read."

    def __init__(self, failed_cases: list[str], message: Optional[str] = None):
        super().__init__(message or f"{len(failed_cases)} case roster(s) could not be fetched")
        self.failed_cases = list(failed_cases)
