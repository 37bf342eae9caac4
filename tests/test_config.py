"""Tests for configuration and provider selection."""

import pytest
from pydantic import ValidationError

from unmangle.config import DEFAULT_MODELS, PROMPTS, Config, LLMProvider
from unmangle.errors import ConfigError
from unmangle.llm import AnthropicClient, OllamaClient, OpenAIClient, ProviderRegistry, create_llm_client
from unmangle.llm.registry import config_fingerprint


class TestConfig:
    def test_default_model_follows_provider(self):
        config = Config(llm_provider=LLMProvider.ANTHROPIC, llm_api_key="k")

        assert config.llm_model == DEFAULT_MODELS[LLMProvider.ANTHROPIC]

    def test_api_key_falls_back_to_provider_env(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")

        config = Config(llm_provider=LLMProvider.ANTHROPIC)

        assert config.llm_api_key == "from-env"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("UNMANGLE_LLM_CONCURRENCY", "9")
        monkeypatch.setenv("UNMANGLE_MIN_CONFIDENCE", "0.6")

        config = Config(llm_api_key="k")

        assert config.llm_concurrency == 9
        assert config.min_confidence == 0.6

    def test_soft_ratio_cannot_exceed_hard(self):
        with pytest.raises(ValidationError):
            Config(soft_token_ratio=0.5, hard_token_ratio=0.4)

    def test_range_validation(self):
        with pytest.raises(ValidationError):
            Config(llm_concurrency=0)
        with pytest.raises(ValidationError):
            Config(trailing_comma="sometimes")

    def test_helpers(self):
        config = Config(
            llm_api_key="k",
            context_window_tokens=1000,
            retry_max_attempts=4,
            print_width=100,
            single_quote=True,
        )

        assert config.chunk_limits().hard == 330
        assert config.retry_policy().max_attempts == 4
        options = config.format_options()
        assert options.print_width == 100
        assert "--single-quote" in options.to_cli_args()

    def test_prompt_template_formats(self):
        prompt = PROMPTS["rename_chunk"].format(lines=1, chars=5, complexity="low", code="a();")

        assert "a();" in prompt
        assert '"suggestions": [' in prompt


class TestCreateClient:
    @pytest.mark.asyncio
    async def test_selects_variant(self):
        openai_client = create_llm_client(Config(llm_provider=LLMProvider.OPENAI, llm_api_key="k"))
        anthropic_client = create_llm_client(Config(llm_provider=LLMProvider.ANTHROPIC, llm_api_key="k"))
        ollama_client = create_llm_client(Config(llm_provider=LLMProvider.OLLAMA))

        assert isinstance(openai_client, OpenAIClient)
        assert isinstance(anthropic_client, AnthropicClient)
        assert isinstance(ollama_client, OllamaClient)

        for client in (openai_client, anthropic_client, ollama_client):
            await client.close()

    def test_azure_requires_base_url(self):
        with pytest.raises(ConfigError, match="base URL"):
            create_llm_client(Config(llm_provider=LLMProvider.AZURE, llm_api_key="k"))

    def test_unknown_provider(self):
        config = Config(llm_api_key="k").model_copy(update={"llm_provider": "palm"})

        with pytest.raises(ConfigError, match="Unsupported LLM provider"):
            create_llm_client(config)


class TestProviderRegistry:
    @pytest.mark.asyncio
    async def test_reuses_clients_with_same_settings(self):
        registry = ProviderRegistry()
        config = Config(llm_provider=LLMProvider.OPENAI, llm_api_key="k")

        first = registry.get(config)
        second = registry.get(Config(llm_provider=LLMProvider.OPENAI, llm_api_key="k"))
        other = registry.get(Config(llm_provider=LLMProvider.OPENAI, llm_api_key="k", llm_temperature=0.9))

        assert first is second
        assert other is not first
        assert len(registry) == 2

        await registry.close_all()
        assert len(registry) == 0

    def test_fingerprint_does_not_contain_key(self):
        config = Config(llm_provider=LLMProvider.OPENAI, llm_api_key="sk-secret")

        assert "sk-secret" not in config_fingerprint(config)
