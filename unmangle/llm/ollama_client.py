"""Ollama (local model) client implementation."""

from typing import Optional

import httpx

from unmangle.errors import ProviderRequestError
from unmangle.llm.base import BaseLLMClient, Completion
from unmangle.models import ProviderRequest, RetryPolicy

DEFAULT_OLLAMA_URL = "http://localhost:11434"


class OllamaClient(BaseLLMClient):
    """Client for a local Ollama server's chat API."""

    name = "ollama"
    requires_api_key = False

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "llama3.1",
        base_url: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.3,
        timeout: float = 120.0,
        retry_policy: Optional[RetryPolicy] = None,
        num_ctx: Optional[int] = None,
    ):
        super().__init__(api_key, model, base_url or DEFAULT_OLLAMA_URL, max_tokens, temperature, timeout, retry_policy)
        self.num_ctx = num_ctx
        self._client = httpx.AsyncClient(base_url=self.base_url.rstrip("/"), timeout=timeout)

    async def complete(
        self,
        prompt: str,
        request: ProviderRequest,
        system_prompt: Optional[str] = None,
    ) -> Completion:
        """Send a single chat request to Ollama and return the response text."""
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        options = {
            "temperature": request.temperature,
            "num_predict": request.max_tokens,
        }
        if self.num_ctx:
            options["num_ctx"] = self.num_ctx

        payload = {
            "model": request.model,
            "messages": messages,
            "options": options,
            "format": "json",
            "stream": False,
        }
        r = await self._client.post("/api/chat", json=payload)
        r.raise_for_status()
        data = r.json()

        content = (data.get("message") or {}).get("content")
        if not isinstance(content, str) or not content.strip():
            raise ProviderRequestError(f"Ollama returned empty response: {str(data)[:200]}", provider=self.name)

        tokens_used = (data.get("prompt_eval_count") or 0) + (data.get("eval_count") or 0)
        return Completion(text=content, tokens_used=tokens_used, model=data.get("model"))

    async def close(self) -> None:
        await self._client.aclose()
