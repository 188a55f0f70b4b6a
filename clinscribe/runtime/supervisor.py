from __future__ import annotations

"""
Supervisor for the locally spawned Ollama server.

Design intent:
- Own exactly one child `ollama serve` bound to a dedicated loopback port.
- Spawn it with an explicit allow-listed environment, never the parent's.
- Report every failure as status data; callers retry with a fresh explicit call.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from clinscribe.internal_core.config import ScribeConfig
from clinscribe.internal_core.contracts import ProcessStatus, PullStreamLine, TagsResponse
from clinscribe.internal_core.diagnostics import OutputTail
from clinscribe.internal_core.updates import UpdateChannel
from clinscribe.transport.ndjson import NDJSONClient

logger = logging.getLogger(__name__)

MINIMAL_PATH = "/usr/bin:/bin:/usr/sbin:/sbin"
TAGS_PATH = "/api/tags"
PULL_PATH = "/api/pull"


def _describe_error(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or exc.__class__.__name__


class OllamaSupervisor:
    def __init__(
        self,
        config: ScribeConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        home_dir: Optional[Path] = None,
    ) -> None:
        self._config = config
        self._binary = config.SCRIBE_OLLAMA_BIN
        self._home_dir = home_dir or Path.home()
        self._http = NDJSONClient(config.base_url, timeout=10.0, transport=transport)
        self._process: Optional[asyncio.subprocess.Process] = None
        self._drain_tasks: list[asyncio.Task[None]] = []
        self._output = OutputTail()
        self._pull_task: Optional[asyncio.Task[None]] = None
        self._pull_interrupted = False
        self.updates: UpdateChannel[ProcessStatus] = UpdateChannel()
        self._status = ProcessStatus(
            base_url=config.base_url,
            first_launch=self.is_first_launch,
        )

    @property
    def base_url(self) -> str:
        return self._config.base_url

    @property
    def status(self) -> ProcessStatus:
        return self._status

    @property
    def required_model(self) -> str:
        return self._config.SCRIBE_REQUIRED_MODEL

    @property
    def app_support_dir(self) -> Path:
        return self._config.SCRIBE_APP_SUPPORT_DIR

    @property
    def models_dir(self) -> Path:
        return self._config.models_dir_path()

    @property
    def is_first_launch(self) -> bool:
        return not self.models_dir.exists()

    @property
    def is_pulling(self) -> bool:
        return self._pull_task is not None

    def child_environment(self) -> dict[str, str]:
        return {
            "OLLAMA_HOST": f"{self._config.SCRIBE_OLLAMA_HOST}:{self._config.SCRIBE_OLLAMA_PORT}",
            "OLLAMA_MODELS": str(self.models_dir),
            "HOME": str(self._home_dir),
            "PATH": MINIMAL_PATH,
        }

    def _update(self, **changes: Any) -> ProcessStatus:
        self._status = self._status.model_copy(update=changes)
        self.updates.publish(self._status)
        return self._status

    def _fail_lifecycle(self, reason: str) -> ProcessStatus:
        logger.warning("ollama start failed: %s", reason)
        return self._update(
            lifecycle="failed",
            lifecycle_error=reason,
            status_message=reason,
            pid=None,
        )

    def _fail_model(self, reason: str) -> ProcessStatus:
        logger.warning("ollama model operation failed: %s", reason)
        return self._update(model_state="failed", model_error=reason, status_message=reason)

    async def probe_liveness(self) -> bool:
        try:
            status_code = await self._http.get_status(
                TAGS_PATH, timeout=self._config.SCRIBE_PROBE_TIMEOUT_SEC
            )
        except (httpx.HTTPError, OSError):
            return False
        return status_code == 200

    async def start(self) -> ProcessStatus:
        if self._status.lifecycle == "starting":
            return self._status

        if await self.probe_liveness():
            logger.info("ollama already answering on %s; reusing it", self.base_url)
            self._update(lifecycle="running", lifecycle_error=None, status_message="Ollama running")
            await self.check_model_presence()
            return self._status

        if not self._binary:
            return self._fail_lifecycle("Ollama binary not found")

        self._update(lifecycle="starting", lifecycle_error=None, status_message="Starting Ollama...")

        try:
            self.models_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            # The server reports its own storage errors; keep going.
            logger.warning("could not create model directory %s: %s", self.models_dir, exc)

        self._output.clear()
        try:
            process = await asyncio.create_subprocess_exec(
                self._binary,
                "serve",
                env=self.child_environment(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            return self._fail_lifecycle(f"Failed to start Ollama: {_describe_error(exc)}")

        self._process = process
        self._drain_tasks = [
            asyncio.create_task(self._drain(process.stdout, "stdout")),
            asyncio.create_task(self._drain(process.stderr, "stderr")),
        ]
        self._update(pid=process.pid)
        logger.info("spawned ollama pid=%s port=%s", process.pid, self._config.SCRIBE_OLLAMA_PORT)

        for attempt in range(self._config.SCRIBE_POLL_ATTEMPTS):
            await asyncio.sleep(self._config.SCRIBE_POLL_INTERVAL_SEC)
            if self._process is not process:
                # stop() ran while we were polling.
                return self._status
            if await self.probe_liveness():
                logger.info("ollama ready after %d probe(s)", attempt + 1)
                self._update(lifecycle="running", lifecycle_error=None, status_message="Ollama running")
                await self.check_model_presence()
                return self._status
            if process.returncode is not None:
                break

        if process.returncode is not None and self._drain_tasks:
            # Let the drain tasks reach EOF so the last lines the child wrote are captured.
            await asyncio.wait(self._drain_tasks, timeout=0.2)
        diagnostic = self._output.summary(self._config.SCRIBE_DIAGNOSTIC_MAX_CHARS)
        if process.returncode is not None:
            reason = f"Ollama server exited with code {process.returncode}: {diagnostic}"
        else:
            reason = f"Ollama server failed to start: {diagnostic}"
        self._terminate(process)
        self._process = None
        return self._fail_lifecycle(reason.rstrip(": "))

    async def _drain(self, stream: Optional[asyncio.StreamReader], name: str) -> None:
        if stream is None:
            return
        while True:
            raw = await stream.readline()
            if not raw:
                return
            text = raw.decode("utf-8", errors="replace")
            self._output.append(text)
            logger.debug("ollama %s: %s", name, text.rstrip())

    @staticmethod
    def _terminate(process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            pass

    def stop(self) -> ProcessStatus:
        process = self._process
        self._process = None
        if process is not None:
            self._terminate(process)
            logger.info("stopped ollama pid=%s", process.pid)

        changes: dict[str, Any] = {
            "lifecycle": "not_started",
            "lifecycle_error": None,
            "pid": None,
            "status_message": "Ollama stopped",
        }
        if self._pull_task is not None and not self._pull_task.done():
            self._pull_interrupted = True
            self._pull_task.cancel()
        if self._status.model_state == "downloading":
            changes.update(model_state="failed", model_error="Download interrupted")
        return self._update(**changes)

    async def shutdown(self, timeout_sec: float = 5.0) -> None:
        process = self._process
        self.stop()
        if process is not None and process.returncode is None:
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout_sec)
            except asyncio.TimeoutError:
                logger.warning("ollama pid=%s ignored terminate; killing", process.pid)
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
        for task in self._drain_tasks:
            task.cancel()
        self._drain_tasks = []
        await self._http.aclose()
        self.updates.close()

    async def check_model_presence(self) -> ProcessStatus:
        if self._pull_task is not None:
            return self._status

        self._update(model_state="checking", model_error=None, status_message="Checking model...")
        try:
            result = await self._http.get_json(TAGS_PATH)
        except httpx.HTTPError as exc:
            return self._fail_model(f"Failed to check models: {_describe_error(exc)}")

        if not result.ok:
            return self._fail_model(f"Failed to check models: HTTP {result.status_code}")

        try:
            tags = TagsResponse.model_validate(result.body)
        except ValidationError:
            return self._update(model_state="not_installed", status_message="Model not installed")

        prefix = self._config.SCRIBE_MODEL_PREFIX
        if any(name.startswith(prefix) for name in tags.names()):
            return self._update(model_state="ready", status_message="Ready")
        return self._update(model_state="not_installed", status_message="Model not installed")

    async def pull_model(self) -> ProcessStatus:
        if self._status.lifecycle != "running":
            return self._fail_model("Ollama server is not running")
        if self._pull_task is not None:
            return self._status

        self._update(
            model_state="downloading",
            model_error=None,
            download_progress=0.0,
            status_message="Starting download...",
        )
        self._pull_interrupted = False
        task = asyncio.create_task(self._run_pull())
        self._pull_task = task
        try:
            await task
        except asyncio.CancelledError:
            if not (task.cancelled() and self._pull_interrupted):
                raise
        finally:
            self._pull_task = None
        return self._status

    async def _run_pull(self) -> None:
        try:
            await asyncio.wait_for(
                self._consume_pull(),
                timeout=self._config.SCRIBE_RESOURCE_TIMEOUT_SEC,
            )
        except asyncio.CancelledError:
            if self._status.model_state == "downloading":
                self._fail_model("Download cancelled")
            raise
        except asyncio.TimeoutError:
            self._fail_model("Failed to download: timed out")
        except httpx.HTTPError as exc:
            self._fail_model(f"Failed to download: {_describe_error(exc)}")

    async def _consume_pull(self) -> None:
        total = 0
        completed = 0
        payload = {"name": self.required_model, "stream": True}
        async with self._http.stream(
            "POST",
            PULL_PATH,
            payload=payload,
            timeout=httpx.Timeout(self._config.SCRIBE_REQUEST_TIMEOUT_SEC),
        ) as stream:
            if stream.status_code != 200:
                self._fail_model("Download request failed")
                return

            async for obj in stream.objects():
                line = PullStreamLine.model_validate(obj)

                changes: dict[str, Any] = {}
                if line.status:
                    changes["status_message"] = line.status
                if line.total is not None:
                    total = line.total
                if line.completed is not None:
                    completed = line.completed
                if total > 0:
                    progress = min(1.0, max(0.0, completed / total))
                    progress = max(progress, self._status.download_progress)
                    changes["download_progress"] = progress
                    changes["status_message"] = f"Downloading... {int(progress * 100)}%"
                if line.error:
                    self._fail_model(line.error)
                    return
                if changes:
                    self._update(**changes)

        logger.info("pulled model %s", self.required_model)
        self._update(
            model_state="ready",
            model_error=None,
            download_progress=1.0,
            status_message="Ready",
        )

    async def ensure_model(self) -> ProcessStatus:
        """First-launch flow: start the server, then pull the model if it is missing."""
        await self.start()
        if self._status.lifecycle == "running" and self._status.model_state == "not_installed":
            await self.pull_model()
        return self._status
