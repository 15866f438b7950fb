"""
Integration Base Classes

Abstract interfaces for the external case-management authority and the
generation engine.
"""

from abc import ABC, abstractmethod
from typing import Optional

from casegate.models.cases import CaseFilter
from casegate.models.chat import EngineRun
from casegate.models.users import AuthorityLogin, StaffMember


class CaseAuthority(ABC):
    """The external source of truth for who works on which case."""

    @abstractmethod
    async def authenticate(self, username: str, password: str) -> AuthorityLogin:
        """
        Authenticate a user.

        Raises:
            Unauthorized: Credentials were rejected
            ServiceUnavailable: The authority could not be reached
        """
        pass

    @abstractmethod
    async def staff_for_case(self, case_id: str, token: str) -> list[StaffMember]:
        """
        Fetch the staff roster of one case.

        A case unknown to the authority has an empty roster.

        Raises:
            AuthorityAuthExpired: The token is no longer accepted
            ServiceUnavailable: The authority could not be reached
        """
        pass


class GenerationEngine(ABC):
    """
    Retrieval-augmented generation engine holding conversation threads.

    Untrusted with respect to authorization.
    """

    @abstractmethod
    async def create_thread(self) -> str:
        """Create a conversation thread and return its id."""
        pass

    @abstractmethod
    async def delete_thread(self, thread_id: str) -> None:
        """Delete a conversation thread."""
        pass

    @abstractmethod
    async def run(
        self,
        thread_id: str,
        message: str,
        filter: Optional[CaseFilter] = None,
        instructions: Optional[str] = None,
    ) -> EngineRun:
        """
        Append a message to a thread and generate an answer.

        Raises:
            EngineTimeout: The run exceeded the polling ceiling
            EngineFailed: The run ended in a terminal failure
        """
        pass
