"""
Storage Path Helpers

Normalize the different ways collaborators refer to a stored document
(blob URLs, base64 encoded indexer keys, plain paths) into a storage path.
"""

import base64
import binascii
import re
from typing import Optional
from urllib.parse import unquote, urlparse

from casegate.models.cases import CaseNamespace

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/_-]+={0,2}\d?$")


def decode_parent_id(value: str) -> Optional[str]:
    """
    Decode an indexer ``parent_id``.

    The indexer stores the source blob URL base64 encoded, URL-safe, with the
    padding replaced by a trailing digit giving the number of ``=`` removed.
    Plain base64 is accepted as well.
    """
    candidate = value.strip()
    if not candidate or not _BASE64_RE.match(candidate):
        return None

    attempts = [candidate]
    if candidate[-1].isdigit():
        attempts.insert(0, candidate[:-1] + "=" * int(candidate[-1]))

    for attempt in attempts:
        padded = attempt + "=" * (-len(attempt) % 4)
        for decoder in (base64.urlsafe_b64decode, base64.b64decode):
            try:
                decoded = decoder(padded).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError, ValueError):
                continue
            if "/" in decoded and decoded.isprintable():
                return decoded
    return None


def path_from_url(url: str, container_name: Optional[str] = None) -> Optional[str]:
    """Extract the storage path from a blob URL, dropping the container segment."""
    parsed = urlparse(url)
    path = unquote(parsed.path).lstrip("/")
    if not path:
        return None
    if container_name and path.startswith(container_name + "/"):
        path = path[len(container_name) + 1:]
    return path or None


def _plain_path(reference: str, container_name: Optional[str]) -> Optional[str]:
    path = unquote(reference).lstrip("/")
    if container_name and path.startswith(container_name + "/"):
        path = path[len(container_name) + 1:]
    return path or None


def to_storage_path(
    reference: Optional[str],
    container_name: Optional[str] = None,
    namespace: Optional[CaseNamespace] = None,
) -> Optional[str]:
    """
    Turn any document reference into a storage path.

    A reference whose first segment is a case number or the container is
    taken as a path without attempting to decode it.

    Args:
        reference: URL, base64 parent id, or plain path
        container_name: Container segment to strip from URLs and paths
        namespace: Case number shape; digits when omitted

    Returns:
        The storage path, or None when the reference cannot be interpreted
    """
    if not reference:
        return None
    reference = reference.strip()

    if reference.startswith(("http://", "https://")):
        return path_from_url(reference, container_name)

    namespace = namespace or CaseNamespace()
    if "/" in reference:
        head = reference.lstrip("/").split("/", 1)[0]
        if namespace.is_case_id(head) or (container_name and head == container_name):
            return _plain_path(reference, container_name)

    decoded = decode_parent_id(reference)
    if decoded:
        return to_storage_path(decoded, container_name, namespace)

    if "/" in reference:
        return _plain_path(reference, container_name)

    return None
