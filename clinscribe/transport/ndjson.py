from __future__ import annotations

"""
Line-oriented HTTP client for the local inference engine.

Design intent:
- Treat streamed bodies as NDJSON: one independent JSON object per line.
- Skip lines that are blank or not a JSON object instead of failing the stream.
- Leave status interpretation to callers; this layer only frames and decodes.
"""

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Union

import httpx

logger = logging.getLogger(__name__)

TimeoutLike = Union[float, httpx.Timeout, None]


def parse_ndjson_line(line: str) -> Optional[dict[str, Any]]:
    text = (line or "").strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        logger.debug("skipping malformed stream line: %.80s", text)
        return None
    if not isinstance(payload, dict):
        return None
    return payload


@dataclass
class JSONResult:
    status_code: int
    body: Any

    @property
    def ok(self) -> bool:
        return self.status_code == 200


class NDJSONStream:
    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    @property
    def status_code(self) -> int:
        return self._response.status_code

    async def objects(self) -> AsyncIterator[dict[str, Any]]:
        async for line in self._response.aiter_lines():
            payload = parse_ndjson_line(line)
            if payload is not None:
                yield payload

    async def aclose(self) -> None:
        await self._response.aclose()


class NDJSONClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: TimeoutLike = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
            # Loopback only; proxy settings from the environment must not apply.
            trust_env=False,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def get_json(self, path: str, *, timeout: TimeoutLike = None) -> JSONResult:
        """GET `path` and decode its body; raises httpx.HTTPError on transport failure."""
        kwargs: dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        response = await self._client.get(path, **kwargs)
        try:
            body = response.json()
        except ValueError:
            body = None
        return JSONResult(status_code=response.status_code, body=body)

    async def get_status(self, path: str, *, timeout: TimeoutLike = None) -> int:
        kwargs: dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        response = await self._client.get(path, **kwargs)
        return response.status_code

    @asynccontextmanager
    async def stream(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[dict[str, Any]] = None,
        timeout: TimeoutLike = None,
    ) -> AsyncIterator[NDJSONStream]:
        kwargs: dict[str, Any] = {"json": payload}
        if timeout is not None:
            kwargs["timeout"] = timeout
        async with self._client.stream(method, path, **kwargs) as response:
            yield NDJSONStream(response)

    async def aclose(self) -> None:
        await self._client.aclose()
