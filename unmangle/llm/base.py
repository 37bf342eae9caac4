"""Base LLM client interface."""

import asyncio
import json
import logging
import math
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from unmangle.errors import (
    AuthError,
    MalformedResponseError,
    MissingApiKeyError,
    ProviderError,
    ProviderRequestError,
    RateLimitError,
    TransientNetworkError,
    UnmangleError,
    UnsupportedModelError,
)
from unmangle.models import (
    ProviderRequest,
    ProviderResponse,
    RenameKind,
    RenameSuggestion,
    RequestConfig,
    RetryPolicy,
)

logger = logging.getLogger(__name__)

_DEFAULT_CONFIDENCE = 0.5

_KIND_ALIASES = {
    "var": RenameKind.VARIABLE,
    "let": RenameKind.VARIABLE,
    "const": RenameKind.VARIABLE,
    "param": RenameKind.VARIABLE,
    "parameter": RenameKind.VARIABLE,
    "argument": RenameKind.VARIABLE,
    "constant": RenameKind.VARIABLE,
    "func": RenameKind.FUNCTION,
    "arrow": RenameKind.FUNCTION,
    "callback": RenameKind.FUNCTION,
    "constructor": RenameKind.CLASS,
    "field": RenameKind.PROPERTY,
    "attribute": RenameKind.PROPERTY,
    "member": RenameKind.PROPERTY,
}

_SUGGESTION_LIST_KEYS = ("suggestions", "renames", "variablesAndFunctionsToRename")


@dataclass
class Completion:
    """Raw text reply plus token usage from one provider call."""
    text: str
    tokens_used: int = 0
    model: Optional[str] = None


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    name: str = "base"
    requires_api_key: bool = True
    api_key_env: Optional[str] = None

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        base_url: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.3,
        timeout: float = 60.0,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.request_count = 0
        self.total_tokens_used = 0
        self._sleep = asyncio.sleep
        self.validate_config()

    def validate_config(self) -> None:
        """Raise a ConfigError subclass if the client cannot be used."""
        if self.requires_api_key and not self.api_key:
            raise MissingApiKeyError(self.name, self.api_key_env)
        if not self.model or not self.supports_model(self.model):
            raise UnsupportedModelError(self.name, self.model or "<empty>")

    def supports_model(self, model: str) -> bool:
        """Whether this backend can serve the model. Custom endpoints accept anything."""
        return True

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        request: ProviderRequest,
        system_prompt: Optional[str] = None,
    ) -> Completion:
        """Send a completion request to the LLM.

        Args:
            prompt: The user prompt to send
            request: Model parameters for the call
            system_prompt: Optional system prompt

        Returns:
            The reply text and the tokens the call consumed
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the client and release resources."""
        pass

    async def suggest_renames(
        self,
        code: str,
        request_config: Optional[RequestConfig] = None,
    ) -> list[RenameSuggestion]:
        """Ask the LLM for rename suggestions for one chunk of code."""
        response = await self.process_code(self.build_request(code, request_config))
        return response.suggestions

    def build_request(self, code: str, request_config: Optional[RequestConfig] = None) -> ProviderRequest:
        overrides = request_config or RequestConfig()
        return ProviderRequest(
            code=code,
            model=overrides.model or self.model,
            temperature=self.temperature if overrides.temperature is None else overrides.temperature,
            max_tokens=overrides.max_tokens or self.max_tokens,
        )

    async def process_code(self, request: ProviderRequest) -> ProviderResponse:
        """Run one request with retries and normalize the reply."""
        from unmangle.config import PROMPTS

        prompt = self.create_user_prompt(request.code)
        started = time.perf_counter()
        completion = await self._complete_with_retry(prompt, request, PROMPTS["system"])
        latency_ms = (time.perf_counter() - started) * 1000

        self.request_count += 1
        self.total_tokens_used += completion.tokens_used

        suggestions = self.parse_rename_suggestions(completion.text)
        logger.debug(
            "%s returned %d suggestions (%d tokens, %.0f ms)",
            self.name, len(suggestions), completion.tokens_used, latency_ms,
        )
        return ProviderResponse(
            suggestions=suggestions,
            tokens_used=completion.tokens_used,
            latency_ms=latency_ms,
            model=completion.model or request.model,
        )

    async def _complete_with_retry(self, prompt: str, request: ProviderRequest, system_prompt: str) -> Completion:
        policy = self.retry_policy
        for attempt in range(policy.max_attempts):
            try:
                return await asyncio.wait_for(
                    self.complete(prompt, request, system_prompt), timeout=self.timeout
                )
            except asyncio.TimeoutError as exc:
                error: UnmangleError = TransientNetworkError(
                    f"timed out after {self.timeout}s", provider=self.name, cause=exc
                )
            except UnmangleError as exc:
                error = exc
            except Exception as exc:
                error = self.classify_error(exc)

            if not error.retryable or attempt + 1 >= policy.max_attempts:
                error.attempts = attempt + 1
                raise error from error.cause

            delay = policy.delay_for(attempt)
            if isinstance(error, RateLimitError) and error.retry_after is not None:
                delay = min(policy.max_delay, max(delay, error.retry_after))
            logger.warning(
                "%s request failed (attempt %d/%d): %s; retrying in %.2fs",
                self.name, attempt + 1, policy.max_attempts, error.message, delay,
            )
            await self._sleep(delay)

        raise AssertionError("unreachable")

    def classify_error(self, exc: Exception) -> UnmangleError:
        """Map a transport or SDK exception onto the provider error taxonomy."""
        if isinstance(exc, ProviderError):
            return exc
        if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
            return TransientNetworkError(str(exc) or type(exc).__name__, provider=self.name, cause=exc)

        status = getattr(exc, "status_code", None)
        response = getattr(exc, "response", None)
        if status is None and response is not None:
            status = getattr(response, "status_code", None)
        message = str(exc) or type(exc).__name__

        if status in (401, 403):
            return AuthError(message, provider=self.name, cause=exc)
        if status == 429:
            return RateLimitError(
                message, provider=self.name, retry_after=self._extract_retry_after_seconds(exc), cause=exc
            )
        if status == 404 and "model" in message.lower():
            return UnsupportedModelError(self.name, self.model, hint=message)
        if status is not None and (status in (408, 409) or status >= 500):
            return TransientNetworkError(message, provider=self.name, cause=exc)
        if status is not None:
            return ProviderRequestError(message, provider=self.name, cause=exc)

        if self._is_retryable_message(message):
            return TransientNetworkError(message, provider=self.name, cause=exc)
        return ProviderRequestError(message, provider=self.name, cause=exc)

    @staticmethod
    def _is_retryable_message(message: str) -> bool:
        """Whether an unclassified error message looks temporary."""
        message = message.lower()
        indicators = (
            "too many requests",
            "throttling",
            "rate limit",
            "timeout",
            "timed out",
            "connection error",
            "overloaded",
            "temporarily unavailable",
            "service unavailable",
            "try again later",
        )
        return any(indicator in message for indicator in indicators)

    @staticmethod
    def _extract_retry_after_seconds(exc: Exception) -> Optional[float]:
        """Try reading Retry-After from SDK exception response headers."""
        response = getattr(exc, "response", None)
        if response is None:
            return None
        headers = getattr(response, "headers", None)
        if headers is None:
            return None
        value = headers.get("retry-after") or headers.get("Retry-After")
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    def create_user_prompt(self, code: str) -> str:
        from unmangle.config import PROMPTS

        return PROMPTS["rename_chunk"].format(
            lines=code.count("\n") + 1,
            chars=len(code),
            complexity=self.estimate_complexity(code),
            code=code,
        )

    @staticmethod
    def estimate_complexity(code: str) -> str:
        function_count = len(re.findall(r"\bfunction\b|=>", code))
        lines = code.count("\n") + 1
        if lines > 1000 or function_count > 50:
            return "high"
        if lines > 300 or function_count > 15:
            return "medium"
        return "low"

    @staticmethod
    def extract_json_from_response(response: str) -> Any:
        """Extract JSON from LLM response, handling markdown code blocks.

        Args:
            response: Raw LLM response text

        Returns:
            Parsed JSON value (object or array)

        Raises:
            ValueError: If no valid JSON found
        """
        # Try to extract from markdown code block first
        code_block_pattern = r"```(?:json)?\s*\n?(.*?)\n?```"
        matches = re.findall(code_block_pattern, response, re.DOTALL)

        for match in matches:
            try:
                return json.loads(match.strip())
            except json.JSONDecodeError:
                continue

        # Try to parse the entire response as JSON
        try:
            return json.loads(response.strip())
        except json.JSONDecodeError:
            pass

        # Try the outermost braces, then flat objects in the text
        first, last = response.find("{"), response.rfind("}")
        if 0 <= first < last:
            try:
                return json.loads(_strip_trailing_commas(response[first:last + 1]))
            except json.JSONDecodeError:
                pass

        json_pattern = r"\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}"
        matches = re.findall(json_pattern, response, re.DOTALL)
        for match in matches:
            try:
                return json.loads(match)
            except json.JSONDecodeError:
                continue

        raise ValueError(f"Could not extract valid JSON from response: {response[:200]}...")

    def parse_rename_suggestions(self, response: str) -> list[RenameSuggestion]:
        """Parse and normalize rename suggestions from an LLM reply.

        Raises:
            MalformedResponseError: If the reply has no recognizable suggestions
        """
        try:
            payload = self.extract_json_from_response(response)
        except ValueError as exc:
            raise MalformedResponseError(str(exc), provider=self.name, cause=exc) from exc

        items = _suggestion_items(payload)
        if items is None:
            raise MalformedResponseError(
                f"response does not contain a suggestions list: {str(payload)[:200]}",
                provider=self.name,
            )

        suggestions: list[RenameSuggestion] = []
        for index, item in enumerate(items):
            suggestion = normalize_suggestion(item)
            if suggestion is None:
                logger.debug("Skipping invalid suggestion at index %d: %r", index, item)
                continue
            suggestions.append(suggestion)
        return suggestions

    def get_statistics(self) -> dict[str, int]:
        return {
            "request_count": self.request_count,
            "total_tokens_used": self.total_tokens_used,
            "average_tokens_per_request": (
                round(self.total_tokens_used / self.request_count) if self.request_count else 0
            ),
        }

    def reset_statistics(self) -> None:
        self.request_count = 0
        self.total_tokens_used = 0


def _strip_trailing_commas(text: str) -> str:
    return re.sub(r",\s*([}\]])", r"\1", text)


def _suggestion_items(payload: Any) -> Optional[list]:
    """Find the list of suggestion objects in any of the accepted reply shapes."""
    if isinstance(payload, list):
        # [{"name": [...], "newName": [...]}]
        if len(payload) == 1 and isinstance(payload[0], dict) and isinstance(payload[0].get("name"), list):
            return _suggestion_items(payload[0])
        return payload
    if not isinstance(payload, dict):
        return None

    for key in _SUGGESTION_LIST_KEYS:
        value = payload.get(key)
        if isinstance(value, list):
            return _suggestion_items(value)

    names, new_names = payload.get("name"), payload.get("newName")
    if isinstance(names, list) and isinstance(new_names, list):
        return [{"name": old, "newName": new} for old, new in zip(names, new_names)]

    # Flat {"old": "new"} mapping
    if payload and all(isinstance(k, str) and isinstance(v, str) for k, v in payload.items()):
        return [{"originalName": old, "suggestedName": new} for old, new in payload.items()]
    return None


def normalize_suggestion(item: Any) -> Optional[RenameSuggestion]:
    """Build a RenameSuggestion from one reply item, or None if unusable."""
    if not isinstance(item, dict):
        return None

    original = _first_string(item, "originalName", "name", "from", "original")
    suggested = _first_string(item, "suggestedName", "newName", "to", "suggested")
    if not original or not suggested:
        return None

    reasoning = _first_string(item, "reasoning", "reason")
    return RenameSuggestion(
        original_name=original,
        suggested_name=suggested,
        confidence=normalize_confidence(item.get("confidence")),
        kind=normalize_kind(item.get("kind", item.get("type"))),
        reasoning=reasoning or None,
    )


def _first_string(item: dict, *keys: str) -> str:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def normalize_confidence(value: Any) -> float:
    """Clamp confidence into [0, 1]; missing or non-numeric values get 0.5."""
    if isinstance(value, bool):
        return _DEFAULT_CONFIDENCE
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%")) / (100 if value.strip().endswith("%") else 1)
        except ValueError:
            return _DEFAULT_CONFIDENCE
    if not isinstance(value, (int, float)) or math.isnan(value):
        return _DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, float(value)))


def normalize_kind(value: Any) -> RenameKind:
    """Map a free-form kind onto the closed set; unknown kinds are variables."""
    if not isinstance(value, str):
        return RenameKind.VARIABLE
    normalized = value.strip().lower()
    try:
        return RenameKind(normalized)
    except ValueError:
        return _KIND_ALIASES.get(normalized, RenameKind.VARIABLE)
