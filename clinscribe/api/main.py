from __future__ import annotations

"""
Composition root and HTTP surface for the scribe runtime.

Design intent:
- Own the single supervisor and generation client for the process lifetime.
- Keep endpoints thin: they start, stop and report; domain logic stays in runtime/note.
- Stream state snapshots as NDJSON so non-UI consumers can follow progress.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from clinscribe.internal_core.config import ScribeConfig, load_config
from clinscribe.internal_core.contracts import TERMINAL_PHASES, GenerationSnapshot, ProcessStatus
from clinscribe.note.generation import GenerationClient
from clinscribe.runtime.supervisor import OllamaSupervisor

logger = logging.getLogger(__name__)


class ModelListResponse(BaseModel):
    models: list[str] = Field(default_factory=list)
    connected: bool = False


class NoteGenerateJobStartRequest(BaseModel):
    conversation: str
    model: Optional[str] = None


def _get_config() -> ScribeConfig:
    existing = getattr(app.state, "scribe_config", None)
    if isinstance(existing, ScribeConfig):
        return existing
    created = load_config()
    setattr(app.state, "scribe_config", created)
    return created


def _get_supervisor() -> OllamaSupervisor:
    existing = getattr(app.state, "scribe_supervisor", None)
    if existing is not None:
        return existing
    created = OllamaSupervisor(_get_config())
    setattr(app.state, "scribe_supervisor", created)
    return created


def _get_generation_client() -> GenerationClient:
    existing = getattr(app.state, "scribe_generation_client", None)
    if existing is not None:
        return existing
    config = _get_config()
    created = GenerationClient.from_config(_get_supervisor().base_url, config)
    setattr(app.state, "scribe_generation_client", created)
    return created


def _get_background_tasks() -> set[asyncio.Task[Any]]:
    existing = getattr(app.state, "scribe_background_tasks", None)
    if isinstance(existing, set):
        return existing
    created: set[asyncio.Task[Any]] = set()
    setattr(app.state, "scribe_background_tasks", created)
    return created


def _spawn_background(coro: Any, *, name: str) -> asyncio.Task[Any]:
    tasks = _get_background_tasks()
    task = asyncio.create_task(coro, name=name)
    tasks.add(task)
    task.add_done_callback(tasks.discard)
    return task


@asynccontextmanager
async def _lifespan(_: FastAPI) -> AsyncIterator[None]:
    config = _get_config()
    logging.basicConfig(level=config.SCRIBE_LOG_LEVEL.upper())
    try:
        yield
    finally:
        for task in list(_get_background_tasks()):
            task.cancel()
        client = getattr(app.state, "scribe_generation_client", None)
        if client is not None:
            await client.aclose()
        supervisor = getattr(app.state, "scribe_supervisor", None)
        if supervisor is not None:
            await supervisor.shutdown()


app = FastAPI(title="clinscribe runtime service", lifespan=_lifespan)


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/runtime/status", response_model=ProcessStatus)
async def runtime_status() -> ProcessStatus:
    return _get_supervisor().status


@app.post("/runtime/start", response_model=ProcessStatus)
async def runtime_start() -> ProcessStatus:
    return await _get_supervisor().start()


@app.post("/runtime/stop", response_model=ProcessStatus)
async def runtime_stop() -> ProcessStatus:
    return _get_supervisor().stop()


@app.post("/runtime/models/pull", response_model=ProcessStatus)
async def runtime_models_pull() -> ProcessStatus:
    supervisor = _get_supervisor()
    if supervisor.status.lifecycle != "running":
        raise HTTPException(status_code=409, detail="Ollama server is not running.")
    if supervisor.is_pulling:
        raise HTTPException(status_code=409, detail="A model download is already in progress.")
    _spawn_background(supervisor.pull_model(), name="scribe-model-pull")
    # Let the pull publish its first state before answering.
    await asyncio.sleep(0)
    return supervisor.status


@app.get("/models", response_model=ModelListResponse)
async def models_list() -> ModelListResponse:
    client = _get_generation_client()
    models = await client.list_models()
    return ModelListResponse(models=models, connected=client.is_connected)


@app.post("/note/generate/jobs/start", response_model=GenerationSnapshot)
async def note_generate_job_start(payload: NoteGenerateJobStartRequest) -> GenerationSnapshot:
    if not str(payload.conversation or "").strip():
        raise HTTPException(status_code=400, detail="conversation is required and cannot be empty.")

    client = _get_generation_client()
    if client.is_generating:
        raise HTTPException(status_code=409, detail="A note generation is already running.")

    _spawn_background(
        client.generate(payload.conversation, payload.model),
        name="scribe-note-generate",
    )
    await asyncio.sleep(0)
    return client.snapshot()


@app.get("/note/generate/jobs/current", response_model=GenerationSnapshot)
async def note_generate_job_current() -> GenerationSnapshot:
    return _get_generation_client().snapshot()


@app.post("/note/generate/jobs/current/stop", response_model=GenerationSnapshot)
async def note_generate_job_stop() -> GenerationSnapshot:
    client = _get_generation_client()
    client.cancel()
    return client.snapshot()


@app.get("/note/generate/stream")
async def note_generate_stream() -> StreamingResponse:
    client = _get_generation_client()

    async def body() -> AsyncIterator[str]:
        async with client.updates.subscribe() as subscription:
            async for snapshot in subscription:
                yield snapshot.model_dump_json() + "\n"
                if snapshot.cancelled or (snapshot.phase in TERMINAL_PHASES and not snapshot.is_generating):
                    return

    return StreamingResponse(body(), media_type="application/x-ndjson")
