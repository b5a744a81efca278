"""
Tests for the layout analysis model client.
"""

import json

import httpx
import pytest
from asgiref.sync import sync_to_async

from importer.models import AIResponseCache
from importer.services.ai_client import (
    LayoutAnalysis,
    LayoutAnalysisClient,
    LayoutAnalysisError,
    PromptCache,
    extract_json,
    prompt_hash,
)

VALID_PAYLOAD = {
    "page_type": "about",
    "content": {"#content": "<p>About us</p>", "h1.title": "About"},
    "navigation": [{"label": "Home", "url": "/"}],
    "media": ["https://e.com/team.jpg"],
    "confidence": 0.85,
    "summary": "Single column about page",
}


def completion(content, status_code=200):
    return httpx.Response(
        status_code,
        json={"choices": [{"message": {"role": "assistant", "content": content}}]},
    )


class TestExtractJson:
    def test_raw_json(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_markdown_fence(self):
        text = 'Here you go:\n```json\n{"a": 2}\n```\nThanks'
        assert extract_json(text) == {"a": 2}

    def test_brace_span(self):
        assert extract_json('Sure! {"a": {"b": 3}} Hope that helps') == {"a": {"b": 3}}

    def test_no_json_raises(self):
        with pytest.raises(LayoutAnalysisError):
            extract_json("I cannot help with that")
        with pytest.raises(LayoutAnalysisError):
            extract_json("")


class TestLayoutAnalysisShape:
    def test_valid_payload(self):
        analysis = LayoutAnalysis.from_payload(VALID_PAYLOAD)
        assert analysis.page_type == "about"
        assert analysis.content["#content"] == "<p>About us</p>"
        assert analysis.confidence == 0.85

    @pytest.mark.parametrize("missing", ["page_type", "content", "navigation", "media", "confidence", "summary"])
    def test_missing_key_raises(self, missing):
        payload = {k: v for k, v in VALID_PAYLOAD.items() if k != missing}
        with pytest.raises(LayoutAnalysisError, match=missing):
            LayoutAnalysis.from_payload(payload)

    def test_wrong_types_raise(self):
        with pytest.raises(LayoutAnalysisError):
            LayoutAnalysis.from_payload(dict(VALID_PAYLOAD, content=["#content"]))
        with pytest.raises(LayoutAnalysisError):
            LayoutAnalysis.from_payload(dict(VALID_PAYLOAD, confidence="high"))
        with pytest.raises(LayoutAnalysisError):
            LayoutAnalysis.from_payload(["not", "an", "object"])

    def test_confidence_is_clamped_and_blank_selectors_dropped(self):
        analysis = LayoutAnalysis.from_payload(
            dict(VALID_PAYLOAD, confidence=3, content={" ": "x", ".a": None})
        )
        assert analysis.confidence == 1.0
        assert analysis.content == {".a": ""}


class TestLayoutAnalysisClient:
    """HTTP behaviour against a mocked completions endpoint."""

    @pytest.mark.asyncio
    async def test_infer_posts_prompt_and_parses_answer(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return completion("```json\n" + json.dumps(VALID_PAYLOAD) + "\n```")

        client = LayoutAnalysisClient(
            base_url="https://llm.example.com/v1/",
            api_key="secret",
            model="layout-model",
            transport=httpx.MockTransport(handler),
        )
        analysis = await client.infer("<main>About</main>", url="https://e.com/about", page_type_hint="page")

        assert analysis.page_type == "about"
        assert client.calls_made == 1
        assert seen["url"] == "https://llm.example.com/v1/chat/completions"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["model"] == "layout-model"
        user_prompt = seen["body"]["messages"][1]["content"]
        assert "https://e.com/about" in user_prompt
        assert "<main>About</main>" in user_prompt

    @pytest.mark.asyncio
    async def test_feedback_is_included_in_system_prompt(self):
        prompts = []

        def handler(request):
            prompts.append(json.loads(request.content)["messages"][0]["content"])
            return completion(json.dumps(VALID_PAYLOAD))

        client = LayoutAnalysisClient(base_url="https://llm.example.com", transport=httpx.MockTransport(handler))
        feedback = [{"key": "content", "selector": "#content", "reason": "matched 1 of 3 pages"}]
        await client.infer("<p>x</p>", feedback=feedback)

        assert "PREVIOUS ATTEMPT FAILED" in prompts[0]
        assert "matched 1 of 3 pages" in prompts[0]

    @pytest.mark.asyncio
    async def test_non_200_raises(self):
        client = LayoutAnalysisClient(
            base_url="https://llm.example.com",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
        )
        with pytest.raises(LayoutAnalysisError, match="500"):
            await client.infer("<p>x</p>")

    @pytest.mark.asyncio
    async def test_bad_shape_raises(self):
        client = LayoutAnalysisClient(
            base_url="https://llm.example.com",
            transport=httpx.MockTransport(lambda request: completion('{"page_type": "about"}')),
        )
        with pytest.raises(LayoutAnalysisError, match="missing keys"):
            await client.infer("<p>x</p>")

    @pytest.mark.asyncio
    async def test_connection_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("no route", request=request)

        client = LayoutAnalysisClient(base_url="https://llm.example.com", transport=httpx.MockTransport(handler))
        with pytest.raises(LayoutAnalysisError, match="Connection error"):
            await client.infer("<p>x</p>")


@pytest.mark.django_db(transaction=True)
class TestPromptCache:
    @pytest.mark.asyncio
    async def test_cache_hit_avoids_model_call(self):
        calls = []

        def handler(request):
            calls.append(request)
            return completion(json.dumps(VALID_PAYLOAD))

        client = LayoutAnalysisClient(
            base_url="https://llm.example.com",
            model="layout-model",
            cache=PromptCache(),
            transport=httpx.MockTransport(handler),
        )
        first = await client.infer("<p>same</p>", url="https://e.com/a")
        second = await client.infer("<p>same</p>", url="https://e.com/a")

        assert len(calls) == 1
        assert client.calls_made == 1
        assert first.from_cache is False
        assert second.from_cache is True
        assert second.to_dict() == first.to_dict()
        assert await sync_to_async(AIResponseCache.objects.count)() == 1

    @pytest.mark.asyncio
    async def test_invalid_answers_are_not_cached(self):
        client = LayoutAnalysisClient(
            base_url="https://llm.example.com",
            cache=PromptCache(),
            transport=httpx.MockTransport(lambda request: completion("not json at all")),
        )
        with pytest.raises(LayoutAnalysisError):
            await client.infer("<p>x</p>")
        assert await sync_to_async(AIResponseCache.objects.count)() == 0

    def test_prompt_hash_covers_model(self):
        assert prompt_hash("s", "u", "a") != prompt_hash("s", "u", "b")
        assert prompt_hash("s", "u", "a") == prompt_hash("s", "u", "a")
