"""
Azure AI Search Retrieval Index

REST client for the search index built over the case document container.
"""

from typing import Any, Optional

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import get_settings
from casegate.errors import ServiceUnavailable
from casegate.models.cases import CaseFilter
from casegate.models.documents import SearchHit

from .base import RetrievalIndex
from .paths import to_storage_path

logger = structlog.get_logger(__name__)


class AzureSearchIndex(RetrievalIndex):
    """Azure AI Search implementation of the retrieval index."""

    SELECT_FIELDS = "chunk_id,parent_id,chunk,title"

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        index_name: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the index client.

        Args:
            endpoint: Search service endpoint
            api_key: Query key
            index_name: Index to query
            client: Optional preconfigured HTTP client
        """
        settings = get_settings()
        self.endpoint = (endpoint or settings.search_endpoint or "").rstrip("/")
        if not self.endpoint:
            raise ValueError("SEARCH_ENDPOINT is not configured")

        self.index_name = index_name or settings.search_index_name
        self.api_version = settings.search_api_version
        self.container_name = settings.azure_container_name
        self.case_field = settings.search_case_field
        self._client = client or httpx.AsyncClient(
            timeout=settings.authority_timeout_seconds,
            headers={
                "Content-Type": "application/json",
                "api-key": api_key or settings.search_api_key or "",
            },
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.endpoint}/indexes/{self.index_name}/docs/search"
        response = await self._client.post(url, params={"api-version": self.api_version}, json=body)
        response.raise_for_status()
        return response.json()

    def _to_hit(self, doc: dict[str, Any]) -> SearchHit:
        path = to_storage_path(doc.get("parent_id"), self.container_name)
        title = doc.get("title") or (path.rsplit("/", 1)[-1] if path else "")
        return SearchHit(
            path=path,
            title=title,
            score=float(doc.get("@search.score") or 0.0),
            snippet=(doc.get("chunk") or "")[:500],
        )

    async def search(
        self,
        query: str,
        filter: Optional[CaseFilter] = None,
        top_k: int = 10
    ) -> list[SearchHit]:
        body: dict[str, Any] = {
            "search": query,
            "select": self.SELECT_FIELDS,
            "top": top_k,
        }
        if filter is not None:
            body["filter"] = filter.to_odata(self.case_field)

        try:
            data = await self._post(body)
        except (httpx.TransportError, httpx.HTTPStatusError) as e:
            logger.error("search_index_error", index=self.index_name, error=str(e))
            raise ServiceUnavailable("Search index is unavailable") from e

        hits = [self._to_hit(doc) for doc in data.get("value", [])]
        logger.debug("search_index_query", index=self.index_name, hits=len(hits), filtered=filter is not None)
        return hits

    async def aclose(self) -> None:
        await self._client.aclose()
