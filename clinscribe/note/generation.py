from __future__ import annotations

"""
Streaming clinical-note generation against the local Ollama chat endpoint.

Design intent:
- One request in flight at a time; each request gets a fresh GenerationSession.
- Parse the NDJSON body line by line and infer progress phases from line fields.
- Cancel cooperatively: a token checked per line plus task cancellation, which
  closes the connection so a stalled read cannot hold the stop back.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

import httpx
from pydantic import ValidationError

from clinscribe.internal_core.config import DEFAULT_MODEL, ScribeConfig
from clinscribe.internal_core.contracts import ChatStreamLine, GenerationSnapshot, TagsResponse
from clinscribe.internal_core.updates import UpdateChannel
from clinscribe.note.prompts import build_chat_payload
from clinscribe.note.session import GenerationSession
from clinscribe.transport.ndjson import NDJSONClient

logger = logging.getLogger(__name__)

CHAT_PATH = "/api/chat"
TAGS_PATH = "/api/tags"
CONNECT_ERROR_MESSAGE = "Cannot connect to Ollama. Make sure it's running."


class GenerationClient:
    def __init__(
        self,
        base_url: str,
        *,
        default_model: str = DEFAULT_MODEL,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        request_timeout_sec: float = 300.0,
        resource_timeout_sec: float = 600.0,
        connection_timeout_sec: float = 5.0,
        tick_interval_sec: float = 0.1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._http = NDJSONClient(
            base_url,
            timeout=httpx.Timeout(request_timeout_sec),
            transport=transport,
        )
        self._default_model = default_model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._resource_timeout_sec = resource_timeout_sec
        self._connection_timeout_sec = connection_timeout_sec
        self._tick_interval_sec = tick_interval_sec
        self._clock = clock
        self._task: Optional[asyncio.Task[None]] = None
        self._ticker: Optional[asyncio.Task[None]] = None

        self.session = GenerationSession(model=default_model, started_at=clock())
        self.is_generating = False
        self.is_connected = False
        self.available_models: list[str] = []
        self.error_message: Optional[str] = None
        self.updates: UpdateChannel[GenerationSnapshot] = UpdateChannel()

    @classmethod
    def from_config(
        cls,
        base_url: str,
        config: ScribeConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "GenerationClient":
        return cls(
            base_url,
            default_model=config.SCRIBE_REQUIRED_MODEL,
            temperature=config.SCRIBE_LLM_TEMPERATURE,
            max_tokens=config.SCRIBE_LLM_MAX_TOKENS,
            request_timeout_sec=config.SCRIBE_REQUEST_TIMEOUT_SEC,
            resource_timeout_sec=config.SCRIBE_RESOURCE_TIMEOUT_SEC,
            transport=transport,
        )

    @property
    def default_model(self) -> str:
        return self._default_model

    @property
    def response(self) -> str:
        return self.session.text

    def snapshot(self) -> GenerationSnapshot:
        return self.session.snapshot(is_generating=self.is_generating)

    def _publish(self, session: GenerationSession, delta: str = "") -> None:
        # A replaced session keeps running until its task unwinds; only the current one is observable.
        if session is not self.session:
            return
        self.updates.publish(session.snapshot(is_generating=self.is_generating, delta=delta))

    def _fail(self, session: GenerationSession, reason: str) -> None:
        logger.warning("note generation failed session=%s: %s", session.session_id, reason)
        session.fail(reason)
        if session is self.session:
            self.error_message = reason
        self._publish(session)

    async def generate(self, conversation: str, model: Optional[str] = None) -> GenerationSnapshot:
        if self.is_generating:
            self.cancel()

        session = GenerationSession(
            model=model or self._default_model,
            started_at=self._clock(),
            phase="connecting",
        )
        self.session = session
        self.is_generating = True
        self.error_message = None
        self._start_ticker(session)
        self._publish(session)
        logger.info("note generation started session=%s model=%s", session.session_id, session.model)

        task = asyncio.create_task(self._run(session, conversation))
        self._task = task
        try:
            await task
        except asyncio.CancelledError:
            if not (task.cancelled() and session.cancelled):
                raise
        finally:
            if self._task is task:
                self._task = None
        return session.snapshot(is_generating=self.is_generating and session is self.session)

    async def _run(self, session: GenerationSession, conversation: str) -> None:
        payload = build_chat_payload(
            conversation,
            model=session.model,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        try:
            await asyncio.wait_for(
                self._consume(session, payload),
                timeout=self._resource_timeout_sec,
            )
        except asyncio.TimeoutError:
            self._fail(session, "Request timed out")
        except httpx.HTTPError as exc:
            if not session.cancelled:
                self._fail(session, str(exc) or exc.__class__.__name__)
        finally:
            self._finish(session)

    async def _consume(self, session: GenerationSession, payload: dict) -> None:
        async with self._http.stream("POST", CHAT_PATH, payload=payload) as stream:
            if stream.status_code != 200:
                self._fail(session, "Request failed")
                return

            session.advance("loading_model")
            self._publish(session)

            async for obj in stream.objects():
                if session.cancelled:
                    return
                line = ChatStreamLine.model_validate(obj)

                delta = session.apply_line(line)
                if line.error:
                    logger.warning("engine reported error session=%s: %s", session.session_id, line.error)
                    if session is self.session:
                        self.error_message = line.error
                self._publish(session, delta)
                if line.done:
                    logger.info(
                        "note generation done session=%s tokens=%d tok/s=%.1f",
                        session.session_id,
                        session.tokens_generated,
                        session.tokens_per_second,
                    )
                    return

        if not session.cancelled and not session.is_terminal:
            self._fail(session, "Stream ended before completion")

    def _finish(self, session: GenerationSession) -> None:
        session.elapsed_seconds = self._clock() - session.started_at
        if session is not self.session:
            return
        self._stop_ticker()
        self.is_generating = False
        self._publish(session)

    def _start_ticker(self, session: GenerationSession) -> None:
        self._stop_ticker()
        self._ticker = asyncio.create_task(self._tick(session))

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    async def _tick(self, session: GenerationSession) -> None:
        while True:
            await asyncio.sleep(self._tick_interval_sec)
            session.elapsed_seconds = self._clock() - session.started_at
            self._publish(session)

    def cancel(self) -> bool:
        """Stop the in-flight generation; text received so far is kept."""
        session = self.session
        task = self._task
        if not self.is_generating or task is None or task.done():
            return False
        if not session.mark_cancelled():
            return False
        session.elapsed_seconds = self._clock() - session.started_at
        self._stop_ticker()
        self.is_generating = False
        task.cancel()
        logger.info("note generation cancelled session=%s", session.session_id)
        self._publish(session)
        return True

    def _models_unavailable(self) -> list[str]:
        self.available_models = [self._default_model]
        self.is_connected = False
        return list(self.available_models)

    async def list_models(self) -> list[str]:
        """Model names from the engine; never empty, falls back to the default model."""
        try:
            result = await self._http.get_json(TAGS_PATH)
        except httpx.HTTPError as exc:
            logger.warning("listing models failed: %s", exc)
            self.error_message = CONNECT_ERROR_MESSAGE
            return self._models_unavailable()

        if not result.ok:
            return self._models_unavailable()
        try:
            names = TagsResponse.model_validate(result.body).names()
        except ValidationError:
            return self._models_unavailable()

        self.available_models = names or [self._default_model]
        self.is_connected = True
        return list(self.available_models)

    async def check_connection(self) -> bool:
        try:
            status_code = await self._http.get_status(TAGS_PATH, timeout=self._connection_timeout_sec)
        except httpx.HTTPError:
            self.is_connected = False
            return False
        self.is_connected = status_code == 200
        self.error_message = None
        return self.is_connected

    async def aclose(self) -> None:
        self.cancel()
        self._stop_ticker()
        await self._http.aclose()
        self.updates.close()
