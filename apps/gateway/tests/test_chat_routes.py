"""POST /v1/chat 路由测试 -- JSON 与 SSE 两种响应"""

import json
from unittest.mock import patch

from aigateway.provider import ErrorKind, GatewayError, StreamChunk
from httpx import AsyncClient


def _body(content="Hello", **kwargs) -> dict:
    body = {
        "user_id": "user-1",
        "model": "echo-pro",
        "messages": [{"role": "user", "content": content}],
    }
    body.update(kwargs)
    return body


async def _sse_events(client: AsyncClient, body: dict) -> list[tuple[str, dict]]:
    """读取 SSE 响应，返回 (event, data) 列表"""
    events = []
    current = "message"
    async with client.stream("POST", "/v1/chat", json=body) as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        async for line in response.aiter_lines():
            if line.startswith("event:"):
                current = line[len("event:"):].strip()
            elif line.startswith("data:"):
                events.append((current, json.loads(line[len("data:"):].strip())))
    return events


async def _stream_then_fail(request, stream):
    yield StreamChunk(id="up_1", delta="partial")
    raise GatewayError("connection reset", kind=ErrorKind.PROVIDER_ERROR)


class TestChatJson:
    """stream=false"""

    async def test_generate(self, client: AsyncClient):
        resp = await client.post("/v1/chat", json=_body())
        assert resp.status_code == 200

        data = resp.json()
        assert data["content"] == "Echo: Hello"
        assert data["model"] == "echo-pro"
        assert data["cached"] is False
        assert data["credits_used"] > 0
        assert data["new_balance"] < 100
        assert data["routing"]["was_routed"] is False
        assert data["usage"]["total_tokens"] == 3

    async def test_second_request_cached(self, client: AsyncClient):
        await client.post("/v1/chat", json=_body())
        resp = await client.post("/v1/chat", json=_body())

        data = resp.json()
        assert data["cached"] is True
        assert data["credits_used"] == 0
        assert data["id"].startswith("cached_")

    async def test_conversation_scope(self, client: AsyncClient):
        await client.post("/v1/chat", json=_body(conversation_id="conv-1"))
        other = await client.post("/v1/chat", json=_body(conversation_id="conv-2"))
        same = await client.post("/v1/chat", json=_body(conversation_id="conv-1"))

        assert other.json()["cached"] is False
        assert same.json()["cached"] is True

    async def test_multimodal_message_not_cached(self, client: AsyncClient):
        content = [
            {"type": "text", "text": "What is in this picture?"},
            {"type": "image_url", "image_url": "https://example.com/cat.png"},
        ]
        first = await client.post("/v1/chat", json=_body(content=content))
        second = await client.post("/v1/chat", json=_body(content=content))

        assert first.status_code == 200
        assert first.json()["content"] == "Echo: What is in this picture?"
        assert second.json()["cached"] is False

    async def test_model_unavailable(self, client: AsyncClient):
        resp = await client.post("/v1/chat", json=_body(model="gpt-4o"))
        assert resp.status_code == 503

        error = resp.json()["error"]
        assert error["kind"] == "MODEL_UNAVAILABLE"
        assert error["http_status"] == 503
        assert error["details"]["model"] == "gpt-4o"

    async def test_missing_org_wallet(self, client: AsyncClient):
        resp = await client.post("/v1/chat", json=_body(organization_id="org-404"))
        assert resp.status_code == 404
        assert resp.json()["error"]["kind"] == "WALLET_NOT_FOUND"

    async def test_circuit_open_sets_retry_after(self, client: AsyncClient, app):
        app.state.registry.adapter("echo").breaker.force_open()

        resp = await client.post("/v1/chat", json=_body())
        assert resp.status_code == 503
        assert resp.json()["error"]["kind"] == "CIRCUIT_OPEN"
        assert int(resp.headers["Retry-After"]) >= 1

    async def test_invalid_body(self, client: AsyncClient):
        resp = await client.post("/v1/chat", json=_body(messages=[]))
        assert resp.status_code == 422


class TestChatStream:
    """stream=true"""

    async def test_chunks_then_done(self, client: AsyncClient):
        events = await _sse_events(client, _body(stream=True))

        names = [name for name, _ in events]
        assert names[-1] == "done"
        assert set(names[:-1]) == {"chunk"}
        assert "".join(data["delta"] for name, data in events if name == "chunk") == "Echo: Hello"

        done = events[-1][1]
        assert done["content"] == "Echo: Hello"
        assert done["credits_used"] > 0
        assert done["cancelled"] is False

    async def test_cached_stream(self, client: AsyncClient):
        await _sse_events(client, _body(stream=True))
        events = await _sse_events(client, _body(stream=True))

        assert [name for name, _ in events] == ["chunk", "done"]
        assert events[1][1]["cached"] is True
        assert events[1][1]["credits_used"] == 0

    async def test_pre_stream_error_is_plain_http(self, client: AsyncClient):
        """流开始前的错误按普通 HTTP 错误返回"""
        resp = await client.post("/v1/chat", json=_body(model="gpt-4o", stream=True))
        assert resp.status_code == 503
        assert resp.json()["error"]["kind"] == "MODEL_UNAVAILABLE"

    async def test_mid_stream_error_event(self, client: AsyncClient, app):
        adapter = app.state.registry.adapter("echo")
        with patch.object(adapter, "_stream", _stream_then_fail):
            events = await _sse_events(client, _body(stream=True))

        assert [name for name, _ in events] == ["chunk", "error"]
        assert events[0][1]["delta"] == "partial"
        assert events[1][1]["error"]["kind"] == "PROVIDER_ERROR"
