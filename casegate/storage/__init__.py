"""
CaseGate Storage Package

Object store and retrieval index abstractions and their Azure implementations.
"""

from .base import ObjectStore, RetrievalIndex
from .paths import decode_parent_id, to_storage_path

__all__ = [
    "ObjectStore",
    "RetrievalIndex",
    "decode_parent_id",
    "to_storage_path",
]
