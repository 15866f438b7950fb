"""
Chat Models

Generation engine output, conversation thread bindings and the answer
returned to callers.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .cases import Entitlement
from .documents import Citation


class AnnotationKind(str, Enum):
    """How an engine annotation points at its source."""
    FILE = "file"          # Engine-side file reference with a filename
    URL = "url"            # URL or storage path
    QUOTE = "quote"        # Quoted excerpt only


class Annotation(BaseModel):
    """A source annotation attached to generated text by the engine."""

    kind: AnnotationKind = AnnotationKind.FILE
    title: Optional[str] = Field(default=None, description="Filename or title")
    path: Optional[str] = Field(default=None, description="Storage path or URL")
    quote: str = Field(default="", description="Quoted excerpt, if any")
    marker: Optional[str] = Field(
        default=None,
        description="Text marker in the answer, e.g. 【4:0†source】"
    )


class EngineRun(BaseModel):
    """Output of one generation run."""

    text: str
    annotations: list[Annotation] = Field(default_factory=list)


class ThreadBinding(BaseModel):
    """A conversation thread and the entitlement it was created under."""

    thread_id: str
    entitlement: Entitlement
    created_at: datetime
    last_used: datetime


class AnswerStatus(str, Enum):
    """Outcome of one enforced chat turn."""
    ANSWERED = "answered"
    REFUSED = "refused"        # Kill switch fired
    NO_ACCESS = "no_access"    # Caller holds no cases at all


class ChatAnswer(BaseModel):
    """The answer returned to a caller after enforcement."""

    message: str
    citations: list[Citation] = Field(default_factory=list)
    status: AnswerStatus = AnswerStatus.ANSWERED
    blocked_case: Optional[str] = Field(
        default=None,
        description="Case that triggered the refusal, when refused"
    )
