"""Configuration management for unmangle."""

import os
from enum import Enum
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from unmangle.models import RetryPolicy

# Load .env from multiple locations
# 1. Current working directory
load_dotenv()
# 2. Project directory (where this package is installed)
_package_dir = Path(__file__).parent
load_dotenv(_package_dir.parent / ".env")
# 3. Home directory config
load_dotenv(Path.home() / ".config" / "unmangle" / ".env")


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    AZURE = "azure"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


_API_KEY_ENV = {
    LLMProvider.OPENAI: "OPENAI_API_KEY",
    LLMProvider.AZURE: "AZURE_OPENAI_API_KEY",
    LLMProvider.ANTHROPIC: "ANTHROPIC_API_KEY",
}

DEFAULT_MODELS = {
    LLMProvider.OPENAI: "gpt-4o",
    LLMProvider.AZURE: "gpt-4o",
    LLMProvider.ANTHROPIC: "claude-sonnet-4-6-20250514",
    LLMProvider.OLLAMA: "llama3.1",
}


def api_key_env_var(provider: LLMProvider) -> Optional[str]:
    """Environment variable holding the provider's API key, if it needs one."""
    return _API_KEY_ENV.get(provider)


class Config(BaseSettings):
    """Configuration for unmangle."""

    # LLM Settings
    llm_provider: LLMProvider = Field(default=LLMProvider.OPENAI, description="LLM provider to use")
    llm_model: str = Field(default="", validate_default=True, description="Model name to use")
    llm_api_key: Optional[str] = Field(
        default=None, validate_default=True, description="API key for the LLM provider"
    )
    llm_base_url: Optional[str] = Field(default=None, description="Base URL for API (for custom endpoints)")
    llm_max_tokens: int = Field(default=4096, ge=1, description="Maximum tokens for LLM response")
    llm_temperature: float = Field(default=0.3, ge=0.0, le=2.0, description="Temperature for LLM generation")
    llm_timeout_seconds: float = Field(default=60.0, gt=0, description="Timeout for a single LLM request")
    llm_concurrency: int = Field(default=5, ge=1, le=64, description="Number of concurrent chunk requests")

    # Retry Settings
    retry_max_attempts: int = Field(default=3, ge=1, description="Attempts per chunk request, first included")
    retry_base_delay: float = Field(default=1.0, ge=0.0, description="Delay before the first retry (seconds)")
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Backoff growth per attempt")
    retry_jitter: float = Field(default=0.1, ge=0.0, le=1.0, description="Random extra delay, as a fraction")

    # Chunking Settings
    context_window_tokens: int = Field(default=16000, ge=64, description="Model context size used for chunking")
    soft_token_ratio: float = Field(default=0.25, gt=0.0, le=1.0, description="Target chunk size (fraction)")
    hard_token_ratio: float = Field(default=0.33, gt=0.0, le=1.0, description="Maximum chunk size (fraction)")
    overlap_ratio: float = Field(default=0.2, ge=0.0, lt=1.0, description="Chunk tail kept as next chunk's head")
    tokenizer_model: Optional[str] = Field(
        default=None, description="Model name for tiktoken (defaults to llm_model)"
    )

    # Processing Settings
    min_confidence: float = Field(default=0.3, ge=0.0, le=1.0, description="Drop suggestions below this confidence")
    job_timeout_seconds: Optional[float] = Field(default=None, gt=0, description="Abort dispatch after this long")
    chunk_timeout_seconds: Optional[float] = Field(
        default=None, gt=0, description="Limit for one chunk including its retries"
    )
    all_or_nothing: bool = Field(default=False, description="Fail the job if any chunk does not complete")

    # Cache Settings
    cache_enabled: bool = Field(default=True, description="Cache suggestions per chunk")
    cache_dir: Path = Field(default=Path(".unmangle_cache"), description="Suggestion cache directory")
    cache_ttl_seconds: int = Field(default=7 * 24 * 3600, ge=0, description="Cache entry lifetime")

    # Output Settings
    output_dir: Optional[Path] = Field(default=None, description="Output directory for renamed files")
    prettier_format: bool = Field(default=True, description="Apply prettier formatting to output")
    print_width: int = Field(default=80, ge=20, description="Prettier print width")
    tab_width: int = Field(default=2, ge=1, description="Prettier tab width")
    single_quote: bool = Field(default=False, description="Prettier single quotes")
    trailing_comma: str = Field(default="all", pattern="^(all|es5|none)$", description="Prettier trailing commas")

    model_config = {
        "env_prefix": "UNMANGLE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("llm_model", mode="before")
    @classmethod
    def set_default_model(cls, v: Optional[str], info) -> str:
        """Set default model based on provider if not specified."""
        if v:
            return v
        provider = info.data.get("llm_provider", LLMProvider.OPENAI)
        return DEFAULT_MODELS.get(LLMProvider(provider), "")

    @field_validator("llm_api_key", mode="before")
    @classmethod
    def validate_api_key(cls, v: Optional[str], info) -> Optional[str]:
        """Validate and load API key from environment if not provided."""
        if v:
            return v

        provider = info.data.get("llm_provider", LLMProvider.OPENAI)
        env_var = api_key_env_var(LLMProvider(provider))
        if env_var:
            return os.environ.get(env_var)
        return v

    @model_validator(mode="after")
    def check_token_ratios(self) -> "Config":
        if self.soft_token_ratio > self.hard_token_ratio:
            raise ValueError("soft_token_ratio must not exceed hard_token_ratio")
        return self

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay,
            backoff_multiplier=self.retry_backoff_multiplier,
            jitter=self.retry_jitter,
        )

    def chunk_limits(self):
        from unmangle.core.chunker import ChunkLimits

        return ChunkLimits(
            max_tokens=self.context_window_tokens,
            soft_ratio=self.soft_token_ratio,
            hard_ratio=self.hard_token_ratio,
            overlap_ratio=self.overlap_ratio,
        )

    def format_options(self):
        from unmangle.plugins.beautify import FormatOptions

        return FormatOptions(
            print_width=self.print_width,
            tab_width=self.tab_width,
            single_quote=self.single_quote,
            trailing_comma=self.trailing_comma,
        )


# LLM Prompt templates
PROMPTS = {
    "system": """You are a senior JavaScript developer specialized in code analysis and refactoring.

Your task is to analyze minified/obfuscated JavaScript code and suggest meaningful variable and function names based on their usage context.

Guidelines:
1. Analyze the code structure and data flow
2. Suggest descriptive names that reflect the purpose/functionality
3. Use camelCase for variables and functions
4. Use PascalCase for classes and constructors
5. Avoid generic names like 'temp', 'data', 'obj' unless absolutely necessary
6. Only suggest renames for identifiers that appear in the code you are given
7. Do not rename properties accessed with a dot, string contents or built-in globals""",

    "rename_chunk": """Analyze this JavaScript code and suggest meaningful variable/function names.

The code may be a fragment cut from a larger file; it can start or end in the middle of a statement.

Code Statistics:
- Lines: {lines}
- Characters: {chars}
- Estimated complexity: {complexity}

Code to analyze:
```javascript
{code}
```

Output MUST be a valid JSON object wrapped in a markdown code block, in this format:
```json
{{
  "suggestions": [
    {{"originalName": "a", "suggestedName": "userCount", "confidence": 0.9, "kind": "variable", "reasoning": "counts users"}},
    {{"originalName": "b", "suggestedName": "fetchUser", "confidence": 0.7, "kind": "function", "reasoning": "calls the users API"}}
  ]
}}
```

"kind" is one of: variable, function, class, method, property. "confidence" is between 0 and 1.

Now provide the rename suggestions:""",
}
