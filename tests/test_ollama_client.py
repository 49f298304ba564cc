"""Tests for shared.ollama_client."""
import json

import httpx
import pytest

from shared.ollama_client import OllamaClient, _merge_fields


def test_merge_fields():
    assert _merge_fields("answer", "") == "answer"
    assert _merge_fields("", "thoughts") == "thoughts"
    assert _merge_fields(" answer ", " thoughts ") == "<think>thoughts</think>\nanswer"


@pytest.mark.asyncio
async def test_chat_async_payload_and_result():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "message": {"content": "HOLD", "thinking": "flat market"},
            "eval_count": 42,
            "eval_duration": 1000,
        })

    client = OllamaClient(
        host="https://ollama.test/", model="m1", api_key="k",
        transport=httpx.MockTransport(handler),
    )
    result = await client.chat_async([{"role": "user", "content": "hi"}], temperature=0.1)

    assert seen["url"] == "https://ollama.test/api/chat"
    assert seen["auth"] == "Bearer k"
    assert seen["body"]["model"] == "m1"
    assert seen["body"]["stream"] is False
    assert seen["body"]["options"]["temperature"] == 0.1
    assert result["response"] == "HOLD"
    assert result["merged"] == "<think>flat market</think>\nHOLD"
    assert result["eval_count"] == 42


@pytest.mark.asyncio
async def test_chat_async_raises_on_http_error():
    client = OllamaClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    with pytest.raises(httpx.HTTPStatusError):
        await client.chat_async([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_is_available():
    up = OllamaClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
    down = OllamaClient(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    assert await up.is_available() is True
    assert await down.is_available() is False
