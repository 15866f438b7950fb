"""
Azure Blob Storage Object Store

Object store backed by one Azure Blob Storage container, one top-level
folder per case.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import BlobSasPermissions, BlobServiceClient, generate_blob_sas

from config import get_settings
from casegate.errors import NotFound, ServiceUnavailable
from casegate.models.documents import DocumentProperties

from .base import ObjectStore

logger = structlog.get_logger(__name__)


class AzureBlobObjectStore(ObjectStore):
    """
    Azure Blob Storage implementation.

    The SDK client is blocking, so every call runs in a worker thread.
    """

    def __init__(
        self,
        connection_string: Optional[str] = None,
        container_name: Optional[str] = None,
    ):
        """
        Initialize the object store.

        Args:
            connection_string: Storage account connection string
            container_name: Container holding the case folders
        """
        settings = get_settings()
        connection_string = connection_string or settings.azure_storage_connection_string
        if not connection_string:
            raise ValueError("AZURE_STORAGE_CONNECTION_STRING is not configured")

        self.container_name = container_name or settings.azure_container_name
        self._service = BlobServiceClient.from_connection_string(connection_string)
        self._container = self._service.get_container_client(self.container_name)

    async def _call(self, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except ResourceNotFoundError as e:
            raise NotFound(f"Blob not found: {e}") from e
        except AzureError as e:
            logger.error("blob_storage_error", container=self.container_name, error=str(e))
            raise ServiceUnavailable("Object store is unavailable") from e

    async def list(self, prefix: Optional[str] = None) -> list[str]:
        def _list() -> list[str]:
            return [blob.name for blob in self._container.list_blobs(name_starts_with=prefix)]

        return await self._call(_list)

    async def list_top_level(self) -> list[str]:
        def _walk() -> list[str]:
            segments = []
            for item in self._container.walk_blobs(delimiter="/"):
                # Only virtual folders end with the delimiter
                if item.name.endswith("/"):
                    segments.append(item.name.rstrip("/"))
            return sorted(segments)

        return await self._call(_walk)

    async def exists(self, path: str) -> bool:
        blob = self._container.get_blob_client(path)
        return await self._call(blob.exists)

    async def properties(self, path: str) -> DocumentProperties:
        blob = self._container.get_blob_client(path)
        props = await self._call(blob.get_blob_properties)
        return DocumentProperties(
            size=props.size,
            content_type=props.content_settings.content_type if props.content_settings else None,
            last_modified=props.last_modified,
        )

    async def read(
        self,
        path: str,
        start: Optional[int] = None,
        length: Optional[int] = None
    ) -> bytes:
        blob = self._container.get_blob_client(path)

        def _download() -> bytes:
            return blob.download_blob(offset=start, length=length).readall()

        return await self._call(_download)

    async def sign_url(
        self,
        path: str,
        ttl: timedelta,
        permissions: str = "r"
    ) -> str:
        credential = self._service.credential
        expiry = datetime.now(timezone.utc) + ttl

        sas_token = generate_blob_sas(
            account_name=self._service.account_name,
            container_name=self.container_name,
            blob_name=path,
            account_key=credential.account_key,
            permission=BlobSasPermissions.from_string(permissions),
            expiry=expiry,
        )

        blob = self._container.get_blob_client(path)
        return f"{blob.url}?{sas_token}"
