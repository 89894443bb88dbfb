# tests/test_ai_answer_service.py

import asyncio
import json

import httpx

from services.ai_answer_service import OllamaAnswerProvider


def provider_with(handler):
    return OllamaAnswerProvider(
        base_url="http://ollama.test",
        model="gemma3n:latest",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


def test_answer_posts_question_to_ollama():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"response": "  A monad is a monoid in the category of endofunctors.  "})

    answer = asyncio.run(provider_with(handler).answer("What is a monad?"))

    assert answer == "A monad is a monoid in the category of endofunctors."
    assert seen["url"] == "http://ollama.test/api/generate"
    assert seen["body"]["model"] == "gemma3n:latest"
    assert seen["body"]["stream"] is False
    assert "What is a monad?" in seen["body"]["prompt"]


def test_http_error_yields_empty_answer():
    def handler(request):
        return httpx.Response(500, text="model not loaded")

    assert asyncio.run(provider_with(handler).answer("Q?")) == ""


def test_connection_error_yields_empty_answer():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    assert asyncio.run(provider_with(handler).answer("Q?")) == ""


def test_unreadable_body_yields_empty_answer():
    def handler(request):
        return httpx.Response(200, content=b"not json")

    assert asyncio.run(provider_with(handler).answer("Q?")) == ""


def test_health_check():
    def handler(request):
        return httpx.Response(200, json={"models": []})

    assert asyncio.run(provider_with(handler).health_check()) is True
