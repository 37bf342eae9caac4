"""Data model shared by the chunker, providers, dispatcher and merger."""

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class RenameKind(str, Enum):
    """Kinds of identifiers a suggestion can target."""
    VARIABLE = "variable"
    FUNCTION = "function"
    CLASS = "class"
    METHOD = "method"
    PROPERTY = "property"


@dataclass(frozen=True)
class CodeChunk:
    """Contiguous slice of the source sent as one LLM request."""
    index: int
    text: str
    start_offset: int
    end_offset: int

    def __len__(self) -> int:
        return self.end_offset - self.start_offset

    def describe(self) -> str:
        return f"chars {self.start_offset}-{self.end_offset}"


@dataclass(frozen=True)
class RenameSuggestion:
    """Proposed (original, new) identifier pair."""
    original_name: str
    suggested_name: str
    confidence: float = 0.5
    kind: RenameKind = RenameKind.VARIABLE
    reasoning: Optional[str] = None

    def __post_init__(self):
        if not self.original_name or not self.suggested_name:
            raise ValueError("rename suggestion names must be non-empty")

    def to_dict(self) -> dict:
        return {
            "originalName": self.original_name,
            "suggestedName": self.suggested_name,
            "confidence": self.confidence,
            "kind": self.kind.value,
            "reasoning": self.reasoning,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RenameSuggestion":
        return cls(
            original_name=data["originalName"],
            suggested_name=data["suggestedName"],
            confidence=float(data.get("confidence", 0.5)),
            kind=RenameKind(data.get("kind", RenameKind.VARIABLE.value)),
            reasoning=data.get("reasoning"),
        )


# originalName -> finalName, in first-seen order
RenameMap = dict[str, str]


@dataclass(frozen=True)
class RequestConfig:
    """Per-call overrides of the client's model parameters."""
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass(frozen=True)
class ProviderRequest:
    code: str
    model: str
    temperature: float = 0.3
    max_tokens: int = 4096


@dataclass
class ProviderResponse:
    suggestions: list[RenameSuggestion]
    tokens_used: int = 0
    latency_ms: float = 0.0
    model: Optional[str] = None


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: base_delay * backoff_multiplier ** attempt."""
    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.0
    max_delay: float = 120.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.backoff_multiplier < 1:
            raise ValueError("base_delay must be >= 0 and backoff_multiplier >= 1")

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after the given 0-based attempt failed."""
        delay = min(self.max_delay, self.base_delay * (self.backoff_multiplier ** attempt))
        if self.jitter:
            delay += random.uniform(0, self.jitter * delay)
        return delay


@dataclass
class ChunkOutcome:
    """Result of dispatching one chunk: suggestions or an error, never both."""
    chunk: CodeChunk
    suggestions: list[RenameSuggestion] = field(default_factory=list)
    error: Optional[Exception] = None
    tokens_used: int = 0
    cached: bool = False
    abandoned: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class JobResult:
    job_id: str
    code: str
    rename_map: RenameMap
    warnings: list[str] = field(default_factory=list)
    stats: dict = field(default_factory=dict)
