"""Pytest configuration and fixtures."""

import asyncio
import json
from typing import Callable, Optional, Union

import pytest

from unmangle.config import Config, LLMProvider
from unmangle.llm.base import BaseLLMClient, Completion
from unmangle.models import ProviderRequest, RetryPolicy

Reply = Union[str, Exception]


def suggestions_json(*pairs, confidence: float = 0.9) -> str:
    """Build a fenced JSON reply the way models are asked to answer."""
    items = [
        {"originalName": old, "suggestedName": new, "confidence": confidence, "kind": "variable"}
        for old, new in pairs
    ]
    return "```json\n" + json.dumps({"suggestions": items}) + "\n```"


class FakeClient(BaseLLMClient):
    """Provider client whose replies are scripted per call.

    ``responder`` receives the request and returns reply text, or an exception
    to raise. ``delay`` may be a number or a callable of the request.
    """

    name = "fake"

    def __init__(
        self,
        responder: Callable[[ProviderRequest], Reply],
        delay: Union[float, Callable[[ProviderRequest], float]] = 0.0,
        tokens_per_call: int = 10,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 5.0,
    ):
        super().__init__(
            api_key="test-key",
            model="fake-model",
            timeout=timeout,
            retry_policy=retry_policy or RetryPolicy(max_attempts=1, base_delay=0.0),
        )
        self.responder = responder
        self.delay = delay
        self.tokens_per_call = tokens_per_call
        self.calls: list[ProviderRequest] = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self.closed = False
        self.sleeps: list[float] = []

        async def record_sleep(seconds: float) -> None:
            self.sleeps.append(seconds)

        self._sleep = record_sleep

    async def complete(self, prompt: str, request: ProviderRequest, system_prompt: Optional[str] = None) -> Completion:
        self.calls.append(request)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            delay = self.delay(request) if callable(self.delay) else self.delay
            if delay:
                await asyncio.sleep(delay)
            reply = self.responder(request)
        finally:
            self.in_flight -= 1
        if isinstance(reply, Exception):
            raise reply
        return Completion(text=reply, tokens_used=self.tokens_per_call, model=request.model)

    async def close(self) -> None:
        self.closed = True


def count_chars(text: str) -> int:
    """One token per character."""
    return len(text)


def count_words(text: str) -> int:
    """One token per whitespace-separated word."""
    return len(text.split())


@pytest.fixture
def fake_client_factory():
    """Return FakeClient so tests can script replies."""
    return FakeClient


@pytest.fixture
def make_config(tmp_path):
    """Build configurations that never reach a real provider or the working directory."""

    def factory(**overrides) -> Config:
        settings = {
            "llm_provider": LLMProvider.OPENAI,
            "llm_model": "gpt-4o",
            "llm_api_key": "test-key",
            "cache_dir": tmp_path / "cache",
            "cache_enabled": False,
            "prettier_format": False,
            "retry_max_attempts": 1,
            "retry_base_delay": 0.0,
            "retry_jitter": 0.0,
        }
        settings.update(overrides)
        return Config(**settings)

    return factory


@pytest.fixture
def test_config(make_config) -> Config:
    return make_config()


@pytest.fixture
def simple_code() -> str:
    """Return simple JavaScript code for testing."""
    return "function a(b){return b+1}"


@pytest.fixture
def obfuscated_code() -> str:
    """Return minified-looking JavaScript spanning several statements."""
    return """
var a = 1;
var b = "a string with a in it";
function c(d, e) {
    var f = d.a + e;
    return { f, g: /a+/.test(b) };
}
label: for (var h = 0; h < 3; h++) { if (h) continue label; }
console.log(c(a, 2));
"""
