"""
Authorization Enforcement Pipeline

Every chat turn passes three independent layers:

1. A case filter sent with the retrieval request.
2. Instructions restating the authorized cases.
3. Citation validation after the answer is generated. If any cited document
   cannot be shown to belong to an authorized case, the whole answer is
   replaced with a refusal (the kill switch).

The generation engine is never trusted to honour layers 1 and 2.
"""

import re
from typing import TYPE_CHECKING, Optional

import structlog

from casegate.errors import Forbidden, NotFound
from casegate.integrations.base import GenerationEngine
from casegate.models.cases import CaseFilter, CaseNamespace, Entitlement
from casegate.models.chat import Annotation, AnswerStatus, ChatAnswer
from casegate.models.documents import Citation
from casegate.models.users import SessionClaims
from casegate.retrieval.keywords import filename_of
from casegate.storage.paths import to_storage_path

from .audit import AuditLogger

if TYPE_CHECKING:
    from casegate.retrieval.resolver import DocumentResolver

logger = structlog.get_logger(__name__)

REFUSAL_TEMPLATE = (
    "⚠️ Access Denied\n\n"
    "The generated answer referenced a document from Case {case_id}, "
    "which is not among your cases.\n"
    "Cases authorized: {authorized}\n\n"
    "The response was withheld. Contact your administrator if you need "
    "access to this case."
)

NO_ACCESS_MESSAGE = (
    "You are not assigned to any cases yet, so there are no documents "
    "you can ask about. Contact your administrator if this is unexpected."
)

_MARKER_RE = re.compile(r"【[^】]*】")


def build_instructions(entitlement: Entitlement) -> str:
    """Instruction reinforcement restating the authorized cases."""
    if entitlement.all_cases:
        return (
            "The user is authorized for every case. Cite the documents you "
            "rely on."
        )
    cases = ", ".join(entitlement.to_claim())
    return (
        f"The user is only authorized for these cases: {cases}. "
        "Use only documents that belong to these cases. Never quote, "
        "summarize or cite documents from any other case, even if they "
        "appear in search results. If answering would require documents "
        "from another case, say that you do not have access to that "
        "information."
    )


def render_refusal(case_id: Optional[str], entitlement: Entitlement, verified: bool = True) -> str:
    if not verified:
        label = "(unverified)"
    else:
        label = case_id or "(unassigned)"
    return REFUSAL_TEMPLATE.format(case_id=label, authorized=entitlement.describe())


class KillSwitch(Exception):
    """Raised inside the pipeline when a citation fails validation."""

    def __init__(self, case_id: Optional[str], path: Optional[str], verified: bool = True):
        super().__init__(f"Citation from case {case_id}")
        self.case_id = case_id
        self.path = path
        self.verified = verified

    @property
    def violation_type(self) -> str:
        if not self.verified:
            return "citation_unverified"
        return "citation_outside_entitlement"


class EnforcementPipeline:
    """Wraps generation-engine runs with case enforcement."""

    def __init__(
        self,
        engine: GenerationEngine,
        resolver: "DocumentResolver",
        namespace: Optional[CaseNamespace] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.engine = engine
        self.resolver = resolver
        self.namespace = namespace or resolver.namespace
        self.audit = audit

    async def answer(
        self,
        thread_id: str,
        message: str,
        entitlement: Entitlement,
        actor: Optional[SessionClaims] = None,
    ) -> ChatAnswer:
        """
        Run one chat turn under an entitlement.

        Raises:
            EngineTimeout: The run exceeded the polling ceiling
            EngineFailed: The run ended in a terminal failure
        """
        if entitlement.is_empty:
            logger.info("chat_without_entitlement", thread_id=thread_id)
            return ChatAnswer(message=NO_ACCESS_MESSAGE, status=AnswerStatus.NO_ACCESS)

        run = await self.engine.run(
            thread_id,
            message,
            filter=CaseFilter.for_entitlement(entitlement),
            instructions=build_instructions(entitlement),
        )

        try:
            citations = await self._validate(run.annotations, entitlement, actor)
        except KillSwitch as fired:
            return self._refuse(thread_id, fired, entitlement, actor, len(run.annotations))

        logger.info(
            "chat_answered",
            thread_id=thread_id,
            annotations=len(run.annotations),
            citations=len(citations),
        )
        return ChatAnswer(message=_MARKER_RE.sub("", run.text).strip(), citations=citations)

    async def _validate(
        self,
        annotations: list[Annotation],
        entitlement: Entitlement,
        actor: Optional[SessionClaims],
    ) -> list[Citation]:
        citations: list[Citation] = []
        seen: set[str] = set()

        for annotation in annotations:
            hint = (
                to_storage_path(annotation.path, self.resolver.container_name, self.namespace)
                if annotation.path else None
            )
            hinted_case = self.namespace.case_of(hint)
            if hinted_case is not None and not entitlement.permits(hinted_case):
                raise KillSwitch(hinted_case, hint)

            display_name = annotation.title or (filename_of(hint) if hint else None)
            if not display_name:
                logger.info("citation_without_reference", kind=annotation.kind.value)
                continue

            try:
                document = await self.resolver.locate(display_name, entitlement, hint, actor)
            except Forbidden as e:
                raise KillSwitch(e.case_id, None) from e
            except NotFound as e:
                logger.warning("citation_unresolved", title=display_name, path_hint=hint)
                raise KillSwitch(hinted_case, hint, verified=False) from e

            if document.path in seen:
                continue
            seen.add(document.path)
            citations.append(Citation(
                title=annotation.title or filename_of(document.path),
                path=document.path,
                case_id=document.case_id,
                content=annotation.quote,
            ))

        return citations

    def _refuse(
        self,
        thread_id: str,
        fired: KillSwitch,
        entitlement: Entitlement,
        actor: Optional[SessionClaims],
        annotation_count: int,
    ) -> ChatAnswer:
        logger.error(
            "kill_switch_fired",
            thread_id=thread_id,
            case_id=fired.case_id,
            path=fired.path,
            verified=fired.verified,
            authorized=entitlement.to_claim(),
        )
        if self.audit:
            self.audit.log_security_violation(
                user_id=actor.user_id if actor else None,
                email=actor.email if actor else None,
                violation_type=fired.violation_type,
                case_id=fired.case_id,
                details={
                    "thread_id": thread_id,
                    "path": fired.path,
                    "authorized": entitlement.to_claim(),
                    "annotations": annotation_count,
                },
            )
        return ChatAnswer(
            message=render_refusal(fired.case_id, entitlement, verified=fired.verified),
            citations=[],
            status=AnswerStatus.REFUSED,
            blocked_case=fired.case_id,
        )
