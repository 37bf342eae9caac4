"""Anthropic LLM client implementation."""

from typing import Optional

import anthropic
from anthropic import AsyncAnthropic

from unmangle.errors import (
    AuthError,
    ProviderRequestError,
    RateLimitError,
    TransientNetworkError,
    UnmangleError,
    UnsupportedModelError,
)
from unmangle.llm.base import BaseLLMClient, Completion
from unmangle.models import ProviderRequest, RetryPolicy


class AnthropicClient(BaseLLMClient):
    """Anthropic API client."""

    name = "anthropic"
    api_key_env = "ANTHROPIC_API_KEY"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "claude-sonnet-4-6-20250514",
        base_url: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.3,
        timeout: float = 60.0,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature, timeout, retry_policy)
        self._client = AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

    def supports_model(self, model: str) -> bool:
        return bool(self.base_url) or model.startswith("claude-")

    async def complete(
        self,
        prompt: str,
        request: ProviderRequest,
        system_prompt: Optional[str] = None,
    ) -> Completion:
        """Send a completion request to Anthropic."""
        kwargs = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }

        if system_prompt:
            kwargs["system"] = system_prompt

        response = await self._client.messages.create(**kwargs)

        # Extract text from response
        text_content = ""
        for block in response.content:
            if hasattr(block, "text"):
                text_content += block.text

        if not text_content:
            raise ProviderRequestError("Anthropic returned empty response", provider=self.name)

        usage = getattr(response, "usage", None)
        tokens_used = (getattr(usage, "input_tokens", 0) or 0) + (getattr(usage, "output_tokens", 0) or 0)
        return Completion(text=text_content, tokens_used=tokens_used, model=getattr(response, "model", None))

    def classify_error(self, exc: Exception) -> UnmangleError:
        if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
            return AuthError(str(exc), provider=self.name, cause=exc)
        if isinstance(exc, anthropic.RateLimitError):
            return RateLimitError(
                str(exc), provider=self.name, retry_after=self._extract_retry_after_seconds(exc), cause=exc
            )
        if isinstance(exc, (anthropic.APITimeoutError, anthropic.APIConnectionError, anthropic.InternalServerError)):
            return TransientNetworkError(str(exc), provider=self.name, cause=exc)
        if isinstance(exc, anthropic.NotFoundError):
            return UnsupportedModelError(self.name, self.model, hint=str(exc))
        return super().classify_error(exc)

    async def close(self) -> None:
        """Close the Anthropic client."""
        await self._client.close()
