"""OpenAI LLM client implementation."""

from typing import Any, Optional

import openai
from openai import AsyncOpenAI

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

_MODEL_PREFIXES = ("gpt-", "o1", "o3", "o4", "chatgpt-", "ft:gpt-")


class OpenAIClient(BaseLLMClient):
    """OpenAI API client."""

    name = "openai"
    api_key_env = "OPENAI_API_KEY"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o",
        base_url: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.3,
        timeout: float = 60.0,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature, timeout, retry_policy)
        # Retries are handled by BaseLLMClient
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

    def supports_model(self, model: str) -> bool:
        if self.base_url:
            return True
        return model.startswith(_MODEL_PREFIXES)

    async def complete(
        self,
        prompt: str,
        request: ProviderRequest,
        system_prompt: Optional[str] = None,
    ) -> Completion:
        """Send a completion request to OpenAI.

        Args:
            prompt: The user prompt to send
            request: Model parameters for the call
            system_prompt: Optional system prompt

        Returns:
            The LLM's response text and token usage
        """
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = await self._client.chat.completions.create(
            model=request.model,
            messages=messages,
            max_tokens=request.max_tokens,
            temperature=request.temperature,
        )

        content = self._extract_content_from_response(response)
        if content is None or not content.strip():
            error_detail = self._describe_unusable_response(response)
            raise ProviderRequestError(
                "OpenAI-compatible API returned no usable content. "
                f"response_type={type(response).__name__}. {error_detail}",
                provider=self.name,
            )

        usage = getattr(response, "usage", None)
        tokens_used = getattr(usage, "total_tokens", 0) or 0
        return Completion(text=content, tokens_used=tokens_used, model=getattr(response, "model", None))

    def classify_error(self, exc: Exception) -> UnmangleError:
        if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return AuthError(str(exc), provider=self.name, cause=exc)
        if isinstance(exc, openai.RateLimitError):
            if "insufficient_quota" in str(exc):
                return AuthError(str(exc), provider=self.name, cause=exc)
            return RateLimitError(
                str(exc), provider=self.name, retry_after=self._extract_retry_after_seconds(exc), cause=exc
            )
        if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError, openai.InternalServerError)):
            return TransientNetworkError(str(exc), provider=self.name, cause=exc)
        if isinstance(exc, openai.NotFoundError):
            return UnsupportedModelError(self.name, self.model, hint=str(exc))
        return super().classify_error(exc)

    @staticmethod
    def _extract_content_from_response(response: Any) -> Optional[str]:
        """Extract text content from a variety of OpenAI-compatible response formats."""
        if response is None:
            return None

        # Standard Chat Completions format.
        choices = getattr(response, "choices", None)
        if choices:
            first_choice = choices[0]
            message = getattr(first_choice, "message", None)
            if message is not None:
                message_content = getattr(message, "content", None)
                extracted = OpenAIClient._normalize_message_content(message_content)
                if extracted:
                    return extracted

            # Some compatible providers may put text directly on choice.
            direct_text = getattr(first_choice, "text", None)
            if isinstance(direct_text, str) and direct_text.strip():
                return direct_text

        # Fallback: OpenAI "responses" style attribute.
        output_text = getattr(response, "output_text", None)
        if isinstance(output_text, str) and output_text.strip():
            return output_text

        return None

    @staticmethod
    def _normalize_message_content(content: Any) -> Optional[str]:
        """Normalize message content that may be either string or structured blocks."""
        if isinstance(content, str):
            return content

        if isinstance(content, list):
            text_parts: list[str] = []
            for item in content:
                if isinstance(item, dict):
                    text_value = item.get("text") or item.get("content")
                else:
                    text_value = getattr(item, "text", None)
                if isinstance(text_value, str) and text_value:
                    text_parts.append(text_value)

            if text_parts:
                return "".join(text_parts)

        return None

    @staticmethod
    def _describe_unusable_response(response: Any) -> str:
        """Build an actionable diagnostic string from an unusable response."""
        dump = getattr(response, "model_dump", None)
        if callable(dump):
            dumped = dump()
            details = []
            status = dumped.get("status")
            msg = dumped.get("msg")
            if status is not None:
                details.append(f"status={status}")
            if isinstance(msg, str) and msg.strip():
                details.append(f"msg={msg.strip()}")
            if details:
                return "provider_details: " + ", ".join(details)

        return "provider did not include parseable error details"

    async def close(self) -> None:
        """Close the OpenAI client."""
        await self._client.close()


class AzureOpenAIClient(OpenAIClient):
    """Azure OpenAI deployment, served through the OpenAI-compatible client."""

    name = "azure"
    api_key_env = "AZURE_OPENAI_API_KEY"

    def supports_model(self, model: str) -> bool:
        # Deployment names are chosen by the user
        return True
