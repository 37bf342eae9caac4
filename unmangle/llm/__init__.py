"""LLM client implementations."""

from unmangle.llm.base import BaseLLMClient, Completion
from unmangle.llm.openai_client import AzureOpenAIClient, OpenAIClient
from unmangle.llm.anthropic_client import AnthropicClient
from unmangle.llm.ollama_client import OllamaClient
from unmangle.llm.registry import ProviderRegistry, create_llm_client, supported_providers

__all__ = [
    "BaseLLMClient",
    "Completion",
    "OpenAIClient",
    "AzureOpenAIClient",
    "AnthropicClient",
    "OllamaClient",
    "ProviderRegistry",
    "create_llm_client",
    "supported_providers",
]
