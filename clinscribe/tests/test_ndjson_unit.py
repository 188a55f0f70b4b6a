import asyncio
import json

import httpx

from clinscribe.transport.ndjson import NDJSONClient, parse_ndjson_line


def test_parse_ndjson_line_accepts_objects_only() -> None:
    assert parse_ndjson_line('{"status": "pulling manifest"}') == {"status": "pulling manifest"}
    assert parse_ndjson_line("   ") is None
    assert parse_ndjson_line("{not json") is None
    assert parse_ndjson_line("[1, 2]") is None
    assert parse_ndjson_line('"text"') is None


def test_ndjson_stream_yields_each_line_and_skips_malformed() -> None:
    body = (
        b'{"status": "a"}\n'
        b"\n"
        b"garbage line\n"
        b'{"status": "b", "total": 10}\n'
        b'{"status": "c"}'
    )
    seen_payloads: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_payloads.append(json.loads(request.content))
        return httpx.Response(200, content=body)

    async def scenario() -> tuple[int, list[dict]]:
        client = NDJSONClient("http://ollama.test", transport=httpx.MockTransport(handler))
        try:
            async with client.stream("POST", "/api/pull", payload={"name": "m", "stream": True}) as stream:
                return stream.status_code, [item async for item in stream.objects()]
        finally:
            await client.aclose()

    status_code, objects = asyncio.run(scenario())
    assert status_code == 200
    assert objects == [{"status": "a"}, {"status": "b", "total": 10}, {"status": "c"}]
    assert seen_payloads == [{"name": "m", "stream": True}]


def test_get_json_tolerates_non_json_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    async def scenario():
        client = NDJSONClient("http://ollama.test", transport=httpx.MockTransport(handler))
        try:
            return await client.get_json("/api/tags")
        finally:
            await client.aclose()

    result = asyncio.run(scenario())
    assert result.status_code == 502
    assert result.ok is False
    assert result.body is None
