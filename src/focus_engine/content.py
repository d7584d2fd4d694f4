"""Client for the external content-generation service (Gemini REST API).

All generation goes through ``ContentClient.generate``. The client owns a
``RateLimiter`` that spaces consecutive calls, and walks an ordered list of
models, moving to the next one only when a model reports a quota or rate
limit failure. Anything else is raised immediately.
"""
import json
import logging
import re
import time
from typing import Any, Callable

import httpx

from focus_engine.errors import ContentGenerationError, ContentShapeError, QuotaExceededError
from focus_engine.settings import Settings

logger = logging.getLogger(__name__)

_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"```\s*$")


class RateLimiter:
    """Enforce a minimum interval between calls.

    ``clock`` and ``sleep`` are injectable so tests never wait.
    """

    def __init__(self, min_interval: float, clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_call: float | None = None

    def wait(self) -> float:
        """Block until the next call is allowed. Returns the seconds waited."""
        waited = 0.0
        if self._last_call is not None:
            elapsed = self._clock() - self._last_call
            if elapsed < self.min_interval:
                waited = self.min_interval - elapsed
                logger.debug("Content throttle: waiting %.1fs", waited)
                self._sleep(waited)
        self._last_call = self._clock()
        return waited

    def reset(self) -> None:
        self._last_call = None


def _is_quota_failure(response: httpx.Response) -> bool:
    return response.status_code == 429 or "quota" in response.text.lower()


class ContentClient:
    def __init__(
        self,
        api_key: str,
        models: list[str],
        *,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta/models",
        rate_limiter: RateLimiter | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        if not api_key:
            raise ContentGenerationError("GEMINI_API_KEY is not configured")
        if not models:
            raise ContentGenerationError("At least one model is required")
        self.api_key = api_key
        self.models = list(models)
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter or RateLimiter(10.0)
        self._client = httpx.Client(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "ContentClient":
        return cls(
            settings.gemini_api_key,
            settings.models,
            base_url=settings.gemini_base_url,
            rate_limiter=RateLimiter(settings.gemini_throttle_seconds),
            timeout=settings.gemini_timeout_seconds,
            **kwargs,
        )

    def generate(self, prompt: str) -> str:
        """Send ``prompt`` and return the generated text."""
        self.rate_limiter.wait()
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        last_error = None
        for model in self.models:
            try:
                text = self._call_model(model, payload)
            except QuotaExceededError as e:
                logger.warning("Model %s quota exceeded, falling back", model)
                last_error = e
                continue
            logger.info("Content generated with %s", model)
            return text
        raise QuotaExceededError(f"All models quota-limited: {last_error}")

    def _call_model(self, model: str, payload: dict[str, Any]) -> str:
        url = f"{self.base_url}/{model}:generateContent"
        try:
            r = self._client.post(url, params={"key": self.api_key}, json=payload)
        except httpx.RequestError as e:
            raise ContentGenerationError(f"Request to {model} failed: {e}") from e
        if r.is_error:
            if _is_quota_failure(r):
                raise QuotaExceededError(f"{model}: HTTP {r.status_code}")
            raise ContentGenerationError(f"{model}: HTTP {r.status_code}: {r.text[:200]}")
        try:
            data = r.json()
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ContentGenerationError(f"Unexpected response from {model}: {r.text[:200]}") from e

    def close(self) -> None:
        self._client.close()


def parse_json(raw: str) -> Any:
    """Parse JSON from generated text, tolerating markdown code fences."""
    cleaned = _FENCE_END.sub("", _FENCE_START.sub("", raw.strip())).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ContentShapeError(f"Generated content is not valid JSON: {e}") from e
