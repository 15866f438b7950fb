"""
Document Routes

Resolve cited documents to signed URLs, and proxy their content with HTTP
range support for in-browser previews.
"""

import mimetypes
import re
from datetime import datetime
from typing import Any, Optional
from urllib.parse import quote

from fastapi import APIRouter, Header, Query, Response, status
from pydantic import BaseModel, Field

from casegate.api.dependencies import CurrentSession, Services
from casegate.retrieval.keywords import filename_of

router = APIRouter()

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


class ResolveRequest(BaseModel):
    """A document reference from a citation."""
    display_name: str = Field(..., min_length=1, max_length=1024)
    path_hint: Optional[str] = Field(default=None, max_length=2048)


class ResolveResponse(BaseModel):
    """A verified path and its signed read-only URL."""
    display_name: str
    path: str
    case_id: Optional[str]
    signed_url: Optional[str]
    expires_at: Optional[datetime]
    strategy: str
    metadata: Optional[dict[str, Any]]


def parse_range(header: Optional[str], size: int) -> Optional[tuple[int, int]]:
    """
    Parse a single ``bytes=`` range into inclusive (start, end).

    Returns None when no range was requested.

    Raises:
        ValueError: The range is malformed or cannot be satisfied
    """
    if not header:
        return None
    match = _RANGE_RE.match(header.strip())
    if not match or match.group(1) == match.group(2) == "":
        raise ValueError(f"Unsupported range: {header}")

    first, last = match.groups()
    if first == "":
        suffix = int(last)
        if suffix == 0:
            raise ValueError("Empty suffix range")
        start = max(0, size - suffix)
        end = size - 1
    else:
        start = int(first)
        end = int(last) if last else size - 1
        end = min(end, size - 1)

    if start >= size or start > end:
        raise ValueError(f"Range not satisfiable for size {size}")
    return start, end


@router.post("/resolve", response_model=ResolveResponse)
async def resolve_document(
    request: ResolveRequest,
    session: CurrentSession,
    services: Services,
) -> ResolveResponse:
    """Resolve a display name to a signed URL inside the session's cases."""
    document = await services.resolver.resolve(
        request.display_name,
        session.entitlement,
        path_hint=request.path_hint,
        actor=session,
    )
    return ResolveResponse(display_name=document.display_name, **document.to_response_dict())


@router.get("/content")
async def document_content(
    session: CurrentSession,
    services: Services,
    name: str = Query(..., min_length=1, max_length=1024, description="Display name"),
    path: Optional[str] = Query(default=None, max_length=2048, description="Storage path hint"),
    range_header: Optional[str] = Header(default=None, alias="Range"),
) -> Response:
    """Stream a document, or the requested byte range of it."""
    document = await services.resolver.locate(name, session.entitlement, path_hint=path, actor=session)
    properties = await services.store.properties(document.path)

    filename = filename_of(document.path)
    content_type = (
        properties.content_type
        or mimetypes.guess_type(filename)[0]
        or "application/octet-stream"
    )
    headers = {
        "Accept-Ranges": "bytes",
        "Content-Disposition": f"inline; filename*=UTF-8''{quote(filename)}",
        "Cache-Control": "private, no-store",
    }

    try:
        byte_range = parse_range(range_header, properties.size)
    except ValueError:
        headers["Content-Range"] = f"bytes */{properties.size}"
        return Response(status_code=status.HTTP_416_REQUESTED_RANGE_NOT_SATISFIABLE, headers=headers)

    if byte_range is None:
        body = await services.store.read(document.path)
        return Response(content=body, media_type=content_type, headers=headers)

    start, end = byte_range
    body = await services.store.read(document.path, start, end - start + 1)
    headers["Content-Range"] = f"bytes {start}-{end}/{properties.size}"
    return Response(
        content=body,
        status_code=status.HTTP_206_PARTIAL_CONTENT,
        media_type=content_type,
        headers=headers,
    )
