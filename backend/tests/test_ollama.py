"""Ollama adapter tests."""

import json

import httpx
import pytest

from kwiki.llm import GenerationOptions, LLMBadResponseError, OllamaProvider, TokenUsage
from kwiki.llm.ollama import FALLBACK_MODELS


def _provider(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OllamaProvider(client=client, **kwargs)


def _ndjson(*chunks):
    return "".join(json.dumps(chunk) + "\n" for chunk in chunks).encode("utf-8")


async def test_generate_posts_single_prompt():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "model": "llama3:latest",
                "response": "Local answer",
                "done": True,
                "done_reason": "stop",
                "prompt_eval_count": 9,
                "eval_count": 21,
            },
        )

    provider = _provider(handler)
    result = await provider.generate(
        GenerationOptions(
            prompt="Hi", model="llama3:latest", system_prompt="sys", max_tokens=64, extra={"num_ctx": 4096}
        )
    )

    assert captured["url"] == "http://localhost:11434/api/generate"
    body = captured["body"]
    assert body["prompt"] == "Hi"
    assert body["system"] == "sys"
    assert body["stream"] is False
    assert body["options"]["num_predict"] == 64
    assert body["options"]["num_ctx"] == 4096
    assert result.text == "Local answer"
    assert result.usage == TokenUsage(prompt_tokens=9, completion_tokens=21)
    assert result.finish_reason == "stop"


async def test_generate_without_eval_counts_estimates_usage():
    provider = _provider(lambda request: httpx.Response(200, json={"response": "abcdefgh", "done": True}))

    result = await provider.generate(GenerationOptions(prompt="p"))

    assert result.usage.estimated is True
    assert result.usage.completion_tokens == 2


async def test_server_error_is_bad_response():
    provider = _provider(lambda request: httpx.Response(500, text="model not loaded"))

    with pytest.raises(LLMBadResponseError):
        await provider.generate(GenerationOptions(prompt="p"))


@pytest.mark.parametrize(
    "body",
    [
        ["not", "an", "object"],
        {"response": ["a", "list"], "done": True},
        {"response": "text", "done": True, "eval_count": "lots"},
    ],
)
async def test_wrong_shaped_body_is_bad_response(body):
    provider = _provider(lambda request: httpx.Response(200, json=body))

    with pytest.raises(LLMBadResponseError):
        await provider.generate(GenerationOptions(prompt="p"))

    assert provider.get_usage().error_count == 1


async def test_stream_skips_wrong_shaped_chunks():
    body = _ndjson(
        ["list"],
        {"response": 5, "done": False},
        {"response": "ok", "done": False},
        {"done": True},
    )
    provider = _provider(lambda request: httpx.Response(200, content=body))

    result = await provider.stream(GenerationOptions(prompt="p"))

    assert result.text == "ok"


async def test_stream_reads_ndjson_until_done():
    body = _ndjson(
        {"response": "Hel", "done": False},
        {"response": "lo", "done": False},
        {"response": "", "done": True, "done_reason": "stop", "prompt_eval_count": 1, "eval_count": 2},
        {"response": "ignored", "done": False},
    )
    provider = _provider(lambda request: httpx.Response(200, content=body))
    deltas = []

    result = await provider.stream(GenerationOptions(prompt="p"), deltas.append)

    assert result.text == "Hello"
    assert deltas[-1].done
    assert deltas[-1].usage == TokenUsage(prompt_tokens=1, completion_tokens=2)
    assert sum(1 for delta in deltas if delta.done) == 1


async def test_custom_host():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, json={"models": []})

    provider = _provider(handler, base_url="http://gpu-box:11434/")

    assert await provider.is_available() is True
    assert seen == ["http://gpu-box:11434/api/tags"]


async def test_unreachable_server_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    assert await _provider(handler).is_available() is False


async def test_models_come_from_tags():
    tags = {"models": [{"name": "llama3:latest"}, {"name": "qwen2.5:latest"}]}
    provider = _provider(lambda request: httpx.Response(200, json=tags))

    assert await provider.get_models() == ["llama3:latest", "qwen2.5:latest"]


async def test_models_fall_back_when_discovery_fails():
    """Discovery failure returns the static list, the same on every call."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    provider = _provider(handler)

    first = await provider.get_models()
    second = await provider.get_models()

    assert first == FALLBACK_MODELS
    assert second == first


async def test_models_fall_back_when_tags_have_wrong_shape():
    provider = _provider(lambda request: httpx.Response(200, json={"models": ["llama3"]}))

    assert await provider.get_models() == FALLBACK_MODELS


async def test_pull_model_reports_progress_until_success():
    body = _ndjson(
        {"status": "pulling manifest"},
        {"status": "downloading", "digest": "sha256:abc", "total": 200, "completed": 50},
        {"status": "success"},
        {"status": "never read"},
    )
    provider = _provider(lambda request: httpx.Response(200, content=body))

    updates = [update async for update in provider.pull_model("llama3")]

    assert [update.status for update in updates] == ["pulling manifest", "downloading", "success"]
    assert updates[1].percentage == 25.0


async def test_delete_model():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["body"] = json.loads(request.content)
        return httpx.Response(200)

    await _provider(handler).delete_model("llama3")

    assert captured == {"method": "DELETE", "body": {"name": "llama3"}}
