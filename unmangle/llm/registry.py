"""Provider selection and per-job client registry."""

import hashlib
import logging

from unmangle.config import Config, LLMProvider
from unmangle.errors import ConfigError
from unmangle.llm.anthropic_client import AnthropicClient
from unmangle.llm.base import BaseLLMClient
from unmangle.llm.ollama_client import OllamaClient
from unmangle.llm.openai_client import AzureOpenAIClient, OpenAIClient

logger = logging.getLogger(__name__)

CLIENT_CLASSES: dict[LLMProvider, type[BaseLLMClient]] = {
    LLMProvider.OPENAI: OpenAIClient,
    LLMProvider.AZURE: AzureOpenAIClient,
    LLMProvider.ANTHROPIC: AnthropicClient,
    LLMProvider.OLLAMA: OllamaClient,
}


def supported_providers() -> list[str]:
    return [provider.value for provider in CLIENT_CLASSES]


def create_llm_client(config: Config) -> BaseLLMClient:
    """Create LLM client based on configuration."""
    try:
        provider = LLMProvider(config.llm_provider)
    except ValueError:
        raise ConfigError(
            f"Unsupported LLM provider: {config.llm_provider}",
            step="provider-setup",
            remediation=[f"Supported providers: {', '.join(supported_providers())}"],
        ) from None

    if provider == LLMProvider.AZURE and not config.llm_base_url:
        raise ConfigError(
            "Azure provider requires a base URL (the Azure endpoint)",
            step="provider-setup",
            remediation=[
                "Set UNMANGLE_LLM_BASE_URL or pass --base-url",
                "Example: https://your-resource.openai.azure.com/openai/deployments/<name>",
            ],
        )

    client_class = CLIENT_CLASSES[provider]
    logger.debug("Creating %s client for model %s", provider.value, config.llm_model)
    return client_class(
        api_key=config.llm_api_key,
        model=config.llm_model,
        base_url=config.llm_base_url,
        max_tokens=config.llm_max_tokens,
        temperature=config.llm_temperature,
        timeout=config.llm_timeout_seconds,
        retry_policy=config.retry_policy(),
    )


def config_fingerprint(config: Config) -> str:
    """Stable key for the settings that determine which client a job needs."""
    key_digest = hashlib.sha256((config.llm_api_key or "").encode()).hexdigest()[:12]
    parts = [
        LLMProvider(config.llm_provider).value,
        config.llm_model,
        config.llm_base_url or "",
        key_digest,
        str(config.llm_max_tokens),
        str(config.llm_temperature),
        str(config.llm_timeout_seconds),
        repr(config.retry_policy()),
    ]
    return hashlib.sha256("|".join(parts).encode()).hexdigest()


class ProviderRegistry:
    """Clients owned by one pipeline, reused across jobs with the same settings."""

    def __init__(self):
        self._clients: dict[str, BaseLLMClient] = {}

    def get(self, config: Config) -> BaseLLMClient:
        key = config_fingerprint(config)
        client = self._clients.get(key)
        if client is None:
            client = create_llm_client(config)
            self._clients[key] = client
        return client

    def register(self, config: Config, client: BaseLLMClient) -> None:
        self._clients[config_fingerprint(config)] = client

    def __len__(self) -> int:
        return len(self._clients)

    async def close_all(self) -> None:
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await client.close()

