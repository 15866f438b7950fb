"""
OpenAI Generation Engine

Conversation threads and background responses with the file_search tool,
against OpenAI or Azure OpenAI.
"""

import asyncio
from typing import Any, Optional

import openai
import structlog
from openai import AsyncAzureOpenAI, AsyncOpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import get_settings
from casegate.errors import EngineFailed, EngineTimeout, ServiceUnavailable
from casegate.models.cases import CaseFilter
from casegate.models.chat import Annotation, AnnotationKind, EngineRun

from .base import GenerationEngine

logger = structlog.get_logger(__name__)

_PENDING_STATUSES = {"queued", "in_progress"}
_FAILED_STATUSES = {"failed", "cancelled", "incomplete"}

_transient_errors = retry_if_exception_type(
    (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError)
)


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


class OpenAIGenerationEngine(GenerationEngine):
    """
    Generation engine backed by the OpenAI Responses API.

    A thread is a server-side conversation. Every run is started in the
    background and polled until it reaches a terminal status.
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        vector_store_ids: Optional[list[str]] = None,
        poll_interval: Optional[float] = None,
        max_polls: Optional[int] = None,
    ):
        settings = get_settings()
        if client is None:
            if settings.azure_openai_endpoint:
                client = AsyncAzureOpenAI(
                    api_key=settings.openai_api_key,
                    azure_endpoint=settings.azure_openai_endpoint,
                    api_version=settings.azure_openai_api_version,
                )
            else:
                client = AsyncOpenAI(api_key=settings.openai_api_key)

        self._client = client
        self.model = model or settings.engine_model
        self.vector_store_ids = vector_store_ids if vector_store_ids is not None else settings.engine_vector_store_ids
        self.case_attribute = settings.engine_case_attribute
        self.poll_interval = poll_interval if poll_interval is not None else settings.engine_poll_interval_seconds
        self.max_polls = max_polls or settings.engine_max_polls

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=_transient_errors,
        reraise=True,
    )
    async def _create_conversation(self) -> Any:
        return await self._client.conversations.create()

    async def create_thread(self) -> str:
        try:
            conversation = await self._create_conversation()
        except openai.APIError as e:
            logger.error("engine_thread_create_failed", error=str(e))
            raise ServiceUnavailable("The generation engine is unavailable") from e
        return conversation.id

    async def delete_thread(self, thread_id: str) -> None:
        try:
            await self._client.conversations.delete(thread_id)
        except openai.NotFoundError:
            logger.debug("engine_thread_already_gone", thread_id=thread_id)

    def _tools(self, filter: Optional[CaseFilter]) -> list[dict[str, Any]]:
        tool: dict[str, Any] = {
            "type": "file_search",
            "vector_store_ids": self.vector_store_ids,
        }
        if filter is not None:
            tool["filters"] = filter.to_attribute_filter(self.case_attribute)
        return [tool]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=_transient_errors,
        reraise=True,
    )
    async def _retrieve(self, response_id: str) -> Any:
        return await self._client.responses.retrieve(response_id)

    def _engine_error(self, thread_id: str, error: openai.APIError) -> Exception:
        if isinstance(error, (openai.APIConnectionError, openai.RateLimitError)):
            logger.error("engine_unavailable", thread_id=thread_id, error=str(error))
            return ServiceUnavailable("The generation engine is unavailable")
        logger.error("engine_run_rejected", thread_id=thread_id, error=str(error))
        return EngineFailed(str(error))

    async def run(
        self,
        thread_id: str,
        message: str,
        filter: Optional[CaseFilter] = None,
        instructions: Optional[str] = None,
    ) -> EngineRun:
        try:
            response = await self._client.responses.create(
                model=self.model,
                conversation=thread_id,
                input=message,
                instructions=instructions,
                tools=self._tools(filter),
                include=["file_search_call.results"],
                background=True,
                store=True,
            )
        except openai.APIError as e:
            raise self._engine_error(thread_id, e) from e

        polls = 0
        while response.status in _PENDING_STATUSES:
            if polls >= self.max_polls:
                await self._cancel(response.id)
                logger.warning("engine_run_timeout", thread_id=thread_id, response_id=response.id, polls=polls)
                raise EngineTimeout(f"Run {response.id} did not finish after {polls} polls")
            await asyncio.sleep(self.poll_interval)
            try:
                response = await self._retrieve(response.id)
            except openai.APIError as e:
                raise self._engine_error(thread_id, e) from e
            polls += 1

        if response.status in _FAILED_STATUSES:
            error = _field(response, "error")
            detail = _field(error, "message") if error is not None else response.status
            logger.error("engine_run_failed", thread_id=thread_id, status=response.status, detail=detail)
            raise EngineFailed(f"Run ended with status {response.status}: {detail}")

        run = self._to_engine_run(response)
        logger.info("engine_run_completed", thread_id=thread_id, polls=polls, annotations=len(run.annotations))
        return run

    async def _cancel(self, response_id: str) -> None:
        try:
            await self._client.responses.cancel(response_id)
        except openai.APIError as e:
            logger.warning("engine_cancel_failed", response_id=response_id, error=str(e))

    def _to_engine_run(self, response: Any) -> EngineRun:
        """Collect output text and map citations to annotations."""
        paths_by_file: dict[str, str] = {}
        texts: list[str] = []
        raw_annotations: list[Any] = []

        for item in _field(response, "output", None) or []:
            item_type = _field(item, "type")
            if item_type == "file_search_call":
                for result in _field(item, "results", None) or []:
                    attributes = _field(result, "attributes", None) or {}
                    path = attributes.get("path") if isinstance(attributes, dict) else None
                    if path:
                        paths_by_file[_field(result, "file_id")] = path
                        paths_by_file.setdefault(_field(result, "filename"), path)
            elif item_type == "message":
                for content in _field(item, "content", None) or []:
                    if _field(content, "type") != "output_text":
                        continue
                    texts.append(_field(content, "text", ""))
                    raw_annotations.extend(_field(content, "annotations", None) or [])

        annotations = []
        for raw in raw_annotations:
            raw_type = _field(raw, "type")
            if raw_type == "file_citation":
                annotations.append(Annotation(
                    kind=AnnotationKind.FILE,
                    title=_field(raw, "filename"),
                    path=paths_by_file.get(_field(raw, "file_id")) or paths_by_file.get(_field(raw, "filename")),
                ))
            elif raw_type == "url_citation":
                annotations.append(Annotation(
                    kind=AnnotationKind.URL,
                    title=_field(raw, "title"),
                    path=_field(raw, "url"),
                ))

        return EngineRun(text="".join(texts), annotations=annotations)
