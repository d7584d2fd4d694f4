# tests/test_content.py
import httpx
import pytest

from focus_engine.content import ContentClient, RateLimiter, parse_json
from focus_engine.errors import ContentGenerationError, ContentShapeError, QuotaExceededError
from focus_engine.settings import Settings


def _ok(text):
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def _client(handler, models=("primary", "backup")):
    return ContentClient(
        "test-key", list(models), base_url="https://example.test/models",
        rate_limiter=RateLimiter(0), transport=httpx.MockTransport(handler),
    )


def test_generate_returns_text_and_sends_key():
    seen = []

    def handler(request):
        seen.append(request)
        return _ok('["ok"]')

    assert _client(handler).generate("hello") == '["ok"]'
    assert seen[0].url.path == "/models/primary:generateContent"
    assert seen[0].url.params["key"] == "test-key"


def test_quota_error_falls_back_to_next_model():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        if "primary" in request.url.path:
            return httpx.Response(429, text="Resource exhausted")
        return _ok("from backup")

    assert _client(handler).generate("hi") == "from backup"
    assert len(calls) == 2


def test_quota_message_without_429_also_falls_back():
    def handler(request):
        if "primary" in request.url.path:
            return httpx.Response(403, text="Quota exceeded for project")
        return _ok("fine")

    assert _client(handler).generate("hi") == "fine"


def test_all_models_quota_limited():
    with pytest.raises(QuotaExceededError):
        _client(lambda request: httpx.Response(429, text="slow down")).generate("hi")


def test_other_errors_do_not_cascade():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(500, text="internal error")

    with pytest.raises(ContentGenerationError) as exc:
        _client(handler).generate("hi")
    assert not isinstance(exc.value, QuotaExceededError)
    assert len(calls) == 1


def test_malformed_response_body():
    with pytest.raises(ContentGenerationError):
        _client(lambda request: httpx.Response(200, json={"candidates": []})).generate("hi")


def test_network_failure():
    def handler(request):
        raise httpx.ConnectError("unreachable")

    with pytest.raises(ContentGenerationError):
        _client(handler).generate("hi")


def test_rate_limiter_waits_out_the_interval():
    now = [100.0]
    slept = []

    def sleep(seconds):
        slept.append(seconds)
        now[0] += seconds

    limiter = RateLimiter(10, clock=lambda: now[0], sleep=sleep)
    assert limiter.wait() == 0
    now[0] += 4
    assert limiter.wait() == 6
    now[0] += 12
    assert limiter.wait() == 0
    assert slept == [6]


def test_rate_limiter_reset():
    limiter = RateLimiter(10, clock=lambda: 0.0, sleep=lambda s: None)
    limiter.wait()
    limiter.reset()
    assert limiter.wait() == 0


def test_parse_json_strips_fences():
    assert parse_json('```json\n[1, 2]\n```') == [1, 2]
    assert parse_json(' {"a": 1} ') == {"a": 1}


def test_from_settings():
    settings = Settings(GEMINI_API_KEY="k", GEMINI_MODEL="m1", GEMINI_FALLBACK_MODELS="m2, m1,m3")
    client = ContentClient.from_settings(settings)
    assert client.models == ["m1", "m2", "m3"]
    assert client.rate_limiter.min_interval == 10.0
    client.close()


# --- Edge case tests ---

def test_parse_json_rejects_prose():
    with pytest.raises(ContentShapeError):
        parse_json("Here are your questions!")


def test_missing_api_key():
    with pytest.raises(ContentGenerationError):
        ContentClient("", ["m"])
