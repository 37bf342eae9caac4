"""Error taxonomy for unmangle.

Job-level errors (configuration, parsing, authentication) abort a job.
Chunk-level errors are recorded as warnings and the job carries on.
"""

from typing import Optional, Sequence


class UnmangleError(Exception):
    """Base class for all unmangle errors."""

    code: str = "UNKNOWN_ERROR"
    recoverable: bool = False
    retryable: bool = False
    attempts: int = 1
    default_remediation: tuple[str, ...] = ()

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        remediation: Optional[Sequence[str]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.step = step
        self.remediation = list(remediation) if remediation is not None else list(self.default_remediation)
        self.cause = cause

    def describe(self) -> str:
        """Return the message followed by remediation hints, one per line."""
        lines = [self.message]
        lines.extend(f"  - {hint}" for hint in self.remediation)
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "step": self.step,
            "recoverable": self.recoverable,
            "remediation": list(self.remediation),
        }


class ConfigError(UnmangleError):
    """Invalid configuration, detected before any request is sent."""

    code = "INVALID_CONFIG"
    default_remediation = (
        "Check UNMANGLE_* environment variables and .env files",
        "Run `unmangle providers` to list supported providers",
    )


class MissingApiKeyError(ConfigError):
    code = "MISSING_API_KEY"

    def __init__(self, provider: str, env_var: Optional[str] = None):
        env_var = env_var or f"{provider.upper()}_API_KEY"
        super().__init__(
            f"API key required for {provider}",
            step="provider-setup",
            remediation=[
                f"Set {env_var} or UNMANGLE_LLM_API_KEY",
                "Pass --api-key on the command line",
            ],
        )
        self.provider = provider


class UnsupportedModelError(ConfigError):
    code = "INVALID_MODEL"

    def __init__(self, provider: str, model: str, hint: Optional[str] = None):
        remediation = [hint] if hint else []
        remediation.append("Pass --model with a model the provider serves")
        super().__init__(
            f"Model '{model}' is not supported by {provider}",
            step="provider-setup",
            remediation=remediation,
        )
        self.provider = provider
        self.model = model


class ParseError(UnmangleError):
    """Source could not be parsed; renaming it would not be safe."""

    code = "PARSE_FAILED"
    default_remediation = (
        "Check that the input is valid JavaScript",
        "Unpack or pre-format bundled input before renaming",
    )

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        location = f" (line {line}, column {column})" if line is not None else ""
        super().__init__(f"{message}{location}", step="parse")
        self.line = line
        self.column = column


class ProviderError(UnmangleError):
    """Failure reported by, or while talking to, an LLM provider."""

    code = "LLM_REQUEST_FAILED"
    recoverable = True
    retryable = False
    fatal = False

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        cause: Optional[BaseException] = None,
        remediation: Optional[Sequence[str]] = None,
    ):
        prefix = f"{provider} request failed: " if provider else ""
        super().__init__(f"{prefix}{message}", step="llm-processing", remediation=remediation, cause=cause)
        self.provider = provider


class AuthError(ProviderError):
    code = "LLM_AUTH_FAILED"
    recoverable = False
    fatal = True
    default_remediation = (
        "Check that the API key is valid and has access to the model",
    )


class ProviderTransientError(ProviderError):
    """Temporary failure; retried with backoff."""

    retryable = True


class RateLimitError(ProviderTransientError):
    code = "LLM_RATE_LIMITED"

    def __init__(self, message: str, provider: Optional[str] = None, retry_after: Optional[float] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message, provider=provider, cause=cause)
        self.retry_after = retry_after


class TransientNetworkError(ProviderTransientError):
    code = "LLM_TIMEOUT"


class MalformedResponseError(ProviderError):
    code = "LLM_INVALID_RESPONSE"
    default_remediation = (
        "Try a different model",
        "Reduce the chunk size so the model has room to answer",
    )


SchemaError = MalformedResponseError


class ProviderRequestError(ProviderError):
    """Request rejected for a reason that retrying will not fix."""


class ChunkProcessingError(UnmangleError):
    """One chunk produced no suggestions; the job continues without them."""

    code = "CHUNK_FAILED"
    recoverable = True

    def __init__(self, chunk_index: int, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, step="llm-processing", cause=cause)
        self.chunk_index = chunk_index


class JobCancelledError(UnmangleError):
    code = "JOB_CANCELLED"
    default_remediation = (
        "Increase --timeout",
        "Drop --all-or-nothing to keep partial results",
    )


def is_fatal(exc: BaseException) -> bool:
    """Whether an error must abort the whole job rather than one chunk."""
    if isinstance(exc, ConfigError):
        return True
    return isinstance(exc, ProviderError) and exc.fatal
