"""
CaseGate Retrieval Package

Document resolution from display names to case-checked storage paths.
"""

from .keywords import keyword_coverage, normalize_separators, reduce_keywords
from .resolver import DocumentResolver

__all__ = [
    "DocumentResolver",
    "keyword_coverage",
    "normalize_separators",
    "reduce_keywords",
]
