"""
Filename Keywords

Reduce human-readable document names to the tokens that identify them, and
score candidate names against those tokens.
"""

import re
from typing import Iterable

MIN_TOKEN_LENGTH = 4
MAX_KEYWORDS = 5

_EXTENSION_RE = re.compile(r"\.[A-Za-z0-9]{1,5}$")
_DATE_RES = [
    re.compile(r"\b\d{4}[-_./]\d{1,2}[-_./]\d{1,2}\b"),     # 2023-01-15
    re.compile(r"\b\d{1,2}[-_./]\d{1,2}[-_./]\d{2,4}\b"),   # 01.15.2023, 1-15-23
    re.compile(r"\b(?:19|20)\d{2}(?:0[1-9]|1[0-2])(?:0[1-9]|[12]\d|3[01])\b"),  # 20230115
]
_TOKEN_RE = re.compile(r"[^\W_]+", re.UNICODE)
_SEPARATORS_RE = re.compile(r"[\s_\-]+")


def strip_extension(name: str) -> str:
    return _EXTENSION_RE.sub("", name.strip())


def strip_dates(name: str) -> str:
    for pattern in _DATE_RES:
        name = pattern.sub(" ", name)
    return name


def reduce_keywords(name: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """
    Keyword-reduce a document name.

    Drops the extension and numeric dates, splits on anything that is not a
    letter or digit, drops tokens shorter than four characters, and keeps the
    ``limit`` longest tokens in their original order. Lower-cased and
    deduplicated.

    >>> reduce_keywords("2023-04-11 Deposition Transcript of Dr. Smith_final.pdf")
    ['deposition', 'transcript', 'smith', 'final']
    """
    text = strip_dates(strip_extension(name))

    tokens: list[str] = []
    for token in _TOKEN_RE.findall(text.lower()):
        if len(token) < MIN_TOKEN_LENGTH or token.isdigit() or token in tokens:
            continue
        tokens.append(token)

    if len(tokens) <= limit:
        return tokens

    ranked = sorted(range(len(tokens)), key=lambda i: (-len(tokens[i]), i))[:limit]
    return [tokens[i] for i in sorted(ranked)]


def keyword_coverage(keywords: Iterable[str], candidate: str) -> float:
    """Fraction of keywords contained in a candidate name (case-insensitive)."""
    keywords = list(keywords)
    if not keywords:
        return 0.0
    haystack = candidate.lower()
    found = sum(1 for keyword in keywords if keyword in haystack)
    return found / len(keywords)


def normalize_separators(name: str) -> str:
    """Lower-case and collapse runs of spaces, underscores and hyphens."""
    return _SEPARATORS_RE.sub(" ", name.strip().lower()).strip()


def filename_of(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1]
