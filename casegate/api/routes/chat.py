"""
Chat Routes

One enforced chat turn per request, through the session's thread.
"""

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from casegate.api.dependencies import CurrentSession, Services
from casegate.models.chat import AnswerStatus
from casegate.models.documents import Citation

router = APIRouter()


class ChatRequest(BaseModel):
    """A user message."""
    message: str = Field(..., min_length=1, max_length=8000)
    clear_thread: bool = Field(default=False, description="Start a new conversation first")


class ChatResponse(BaseModel):
    """An answer after enforcement."""
    message: str
    citations: list[Citation]
    status: AnswerStatus
    blocked_case: Optional[str] = None


class ClearResponse(BaseModel):
    cleared: bool


@router.post("", response_model=ChatResponse)
async def chat(request: ChatRequest, session: CurrentSession, services: Services) -> ChatResponse:
    """Answer a message using only documents from the session's cases."""
    if request.clear_thread:
        await services.threads.delete_thread(session.sid)

    entitlement = session.entitlement
    thread_id = await services.threads.get_or_create_thread(
        session.sid,
        entitlement,
        user_id=session.user_id,
    )
    answer = await services.pipeline.answer(thread_id, request.message, entitlement, actor=session)
    if answer.status == AnswerStatus.REFUSED:
        # The withheld answer is still part of the engine-side conversation.
        await services.threads.delete_thread(session.sid)

    return ChatResponse(
        message=answer.message,
        citations=answer.citations,
        status=answer.status,
        blocked_case=answer.blocked_case,
    )


@router.delete("", response_model=ClearResponse)
async def clear_chat(session: CurrentSession, services: Services) -> ClearResponse:
    """Forget the session's conversation."""
    cleared = await services.threads.delete_thread(session.sid)
    return ClearResponse(cleared=cleared)
