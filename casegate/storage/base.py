"""
Storage Base Classes

Abstract interfaces for the object store that holds case documents and the
retrieval index built over them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Optional

from casegate.models.cases import CaseFilter
from casegate.models.documents import DocumentProperties, SearchHit


class ObjectStore(ABC):
    """
    Abstract key-value byte store keyed by path.

    Paths are ``<case number>/<folders...>/<filename>``.
    """

    @abstractmethod
    async def list(self, prefix: Optional[str] = None) -> list[str]:
        """
        List object paths.

        Args:
            prefix: Only list paths starting with this prefix

        Returns:
            List of full object paths
        """
        pass

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check whether an object exists at exactly this path."""
        pass

    @abstractmethod
    async def properties(self, path: str) -> DocumentProperties:
        """
        Read object properties.

        Raises:
            NotFound: If no object exists at the path
        """
        pass

    @abstractmethod
    async def read(
        self,
        path: str,
        start: Optional[int] = None,
        length: Optional[int] = None
    ) -> bytes:
        """
        Read object bytes, optionally a range.

        Args:
            path: Object path
            start: First byte offset
            length: Number of bytes to read from start

        Returns:
            The requested bytes
        """
        pass

    @abstractmethod
    async def sign_url(
        self,
        path: str,
        ttl: timedelta,
        permissions: str = "r"
    ) -> str:
        """
        Issue a short-lived signed URL scoped to one object.

        Args:
            path: Object path
            ttl: Lifetime of the URL
            permissions: Permission letters, "r" for read-only

        Returns:
            The signed URL
        """
        pass

    async def list_top_level(self) -> list[str]:
        """
        List the distinct first path segments of the store.

        Default implementation walks every path. Override in implementations
        that support delimiter listing.
        """
        segments = set()
        for path in await self.list():
            parts = path.split("/")
            if len(parts) > 1 and parts[0]:
                segments.add(parts[0])
        return sorted(segments)


class RetrievalIndex(ABC):
    """Abstract search service over indexed documents."""

    @abstractmethod
    async def search(
        self,
        query: str,
        filter: Optional[CaseFilter] = None,
        top_k: int = 10
    ) -> list[SearchHit]:
        """
        Search the index.

        Args:
            query: Free-text query
            filter: Optional case pre-filter
            top_k: Number of hits to return

        Returns:
            Scored hits, best first
        """
        pass
