"""
Document Resolver

Turns a human-readable document name, optionally with a storage path hint,
into a verified storage path inside the caller's entitlement, and issues a
short-lived read-only URL for it.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog

from config import get_settings
from casegate.errors import Forbidden, NotFound
from casegate.models.cases import CaseNamespace, Entitlement
from casegate.models.documents import (
    ResolutionStrategy,
    ResolvedDocument,
    SearchHit,
    SignedAccessGrant,
)
from casegate.models.users import SessionClaims
from casegate.security.audit import AuditLogger
from casegate.storage.base import ObjectStore, RetrievalIndex
from casegate.storage.paths import to_storage_path

from .keywords import (
    filename_of,
    keyword_coverage,
    normalize_separators,
    reduce_keywords,
    strip_extension,
)

logger = structlog.get_logger(__name__)

INDEX_ACCEPT_SCORE = 0.5
KEYWORD_ACCEPT_RATIO = 0.8


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentResolver:
    """
    Cascading document lookup with a case check on the result.

    Steps, stopping at the first that finds an object:

    1. The path hint, when the object exists there.
    2. The retrieval index, queried with the keyword-reduced name. Hits are
       ranked by the fraction of keywords found in their title; the best hit
       scoring at least 0.5 is taken.
    3. Enumeration of the store under the caller's case prefixes: exact
       filename, then case-insensitive, then separator-normalized, then at
       least 80% of the keywords.

    The case of the found path is derived again and checked against the
    entitlement before anything is returned.
    """

    def __init__(
        self,
        store: ObjectStore,
        index: Optional[RetrievalIndex] = None,
        namespace: Optional[CaseNamespace] = None,
        audit: Optional[AuditLogger] = None,
        signed_url_ttl: Optional[timedelta] = None,
        top_k: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.store = store
        self.index = index
        self.namespace = namespace or CaseNamespace(settings.case_id_pattern)
        self.audit = audit
        self.signed_url_ttl = signed_url_ttl or timedelta(minutes=settings.signed_url_ttl_minutes)
        self.top_k = top_k or settings.search_top_k
        self.container_name = settings.azure_container_name
        self.clock = clock

    async def locate(
        self,
        display_name: str,
        entitlement: Entitlement,
        path_hint: Optional[str] = None,
        actor: Optional[SessionClaims] = None,
    ) -> ResolvedDocument:
        """
        Find a document and check it against an entitlement.

        Raises:
            NotFound: No step of the cascade found the document
            Forbidden: The document belongs to a case outside the entitlement
        """
        found = await self._from_hint(path_hint)
        if found is None:
            found = await self._from_index(display_name, entitlement)
        if found is None:
            found = await self._from_enumeration(display_name, entitlement)
        if found is None:
            logger.info("document_not_found", display_name=display_name, path_hint=path_hint)
            raise NotFound(f"No document matches '{display_name}'")

        path, strategy = found
        case_id = self.namespace.case_of(path)
        if not entitlement.permits(case_id):
            logger.warning(
                "document_access_denied",
                path=path,
                case_id=case_id,
                strategy=strategy.value,
                authorized=entitlement.to_claim(),
            )
            if self.audit:
                self.audit.log_document_access(
                    user_id=actor.user_id if actor else None,
                    email=actor.email if actor else None,
                    path=path,
                    case_id=case_id,
                    allowed=False,
                    strategy=strategy.value,
                )
            raise Forbidden(f"Document belongs to case {case_id}", case_id=case_id)

        logger.debug("document_located", path=path, case_id=case_id, strategy=strategy.value)
        return ResolvedDocument(
            display_name=display_name,
            path=path,
            case_id=case_id,
            strategy=strategy,
        )

    async def resolve(
        self,
        display_name: str,
        entitlement: Entitlement,
        path_hint: Optional[str] = None,
        actor: Optional[SessionClaims] = None,
    ) -> ResolvedDocument:
        """Locate a document and issue a signed read-only grant for it."""
        document = await self.locate(display_name, entitlement, path_hint, actor)

        properties = await self.store.properties(document.path)
        url = await self.store.sign_url(document.path, self.signed_url_ttl, permissions="r")
        grant = SignedAccessGrant(
            path=document.path,
            url=url,
            expires_at=self.clock() + self.signed_url_ttl,
        )

        if self.audit:
            self.audit.log_document_access(
                user_id=actor.user_id if actor else None,
                email=actor.email if actor else None,
                path=document.path,
                case_id=document.case_id,
                allowed=True,
                strategy=document.strategy.value,
            )
        return document.model_copy(update={"properties": properties, "grant": grant})

    async def _from_hint(self, path_hint: Optional[str]) -> Optional[tuple[str, ResolutionStrategy]]:
        path = to_storage_path(path_hint, self.container_name, self.namespace) if path_hint else None
        if path and await self.store.exists(path):
            return path, ResolutionStrategy.PATH_HINT
        return None

    async def _from_index(
        self,
        display_name: str,
        entitlement: Entitlement,
    ) -> Optional[tuple[str, ResolutionStrategy]]:
        # Unfiltered: a document from another case must resolve to its real
        # path so the case check rejects it.
        if self.index is None:
            return None
        keywords = reduce_keywords(display_name)
        if not keywords:
            return None

        hits = await self.index.search(" ".join(keywords), top_k=self.top_k)
        ranked = self._rank_hits(keywords, hits, entitlement)
        for score, path in ranked:
            if await self.store.exists(path):
                logger.debug("document_index_match", path=path, score=round(score, 3))
                return path, ResolutionStrategy.INDEX
        return None

    def _rank_hits(
        self,
        keywords: list[str],
        hits: list[SearchHit],
        entitlement: Entitlement,
    ) -> list[tuple[float, str]]:
        scored = []
        for hit in hits:
            if not hit.path:
                continue
            title = hit.title or filename_of(hit.path)
            score = keyword_coverage(keywords, title)
            if score < INDEX_ACCEPT_SCORE:
                continue
            permitted = entitlement.permits(self.namespace.case_of(hit.path))
            scored.append((score, permitted, hit.path))

        scored.sort(key=lambda item: (-item[0], not item[1], item[2]))
        return [(score, path) for score, _, path in scored]

    async def _from_enumeration(
        self,
        display_name: str,
        entitlement: Entitlement,
    ) -> Optional[tuple[str, ResolutionStrategy]]:
        prefixes = self.namespace.prefixes_for(entitlement)
        if prefixes is None:
            paths = await self.store.list()
        else:
            paths = []
            for prefix in prefixes:
                paths.extend(await self.store.list(prefix))
        if not paths:
            return None
        paths = sorted(set(paths))

        name = display_name.strip()
        for path in paths:
            if filename_of(path) == name:
                return path, ResolutionStrategy.EXACT

        lowered = name.lower()
        for path in paths:
            if filename_of(path).lower() == lowered:
                return path, ResolutionStrategy.CASE_INSENSITIVE

        targets = {normalize_separators(name), normalize_separators(strip_extension(name))}
        for path in paths:
            filename = filename_of(path)
            candidates = {normalize_separators(filename), normalize_separators(strip_extension(filename))}
            if targets & candidates:
                return path, ResolutionStrategy.FUZZY

        keywords = reduce_keywords(name)
        if not keywords:
            return None
        best: Optional[tuple[float, str]] = None
        for path in paths:
            coverage = keyword_coverage(keywords, filename_of(path))
            if coverage >= KEYWORD_ACCEPT_RATIO and (best is None or coverage > best[0]):
                best = (coverage, path)
        if best is not None:
            return best[1], ResolutionStrategy.KEYWORDS
        return None
