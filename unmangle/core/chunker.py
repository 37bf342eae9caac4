"""Split source code into overlapping, token-bounded chunks."""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Optional

import tiktoken

from unmangle.models import CodeChunk

logger = logging.getLogger(__name__)

TokenCounter = Callable[[str], int]

_FALLBACK_ENCODING = "cl100k_base"


@dataclass(frozen=True)
class ChunkLimits:
    """Token budget per chunk, as fractions of the model context."""
    max_tokens: int = 16000
    soft_ratio: float = 0.25
    hard_ratio: float = 0.33
    overlap_ratio: float = 0.2

    def __post_init__(self):
        if not 0 < self.soft_ratio <= self.hard_ratio:
            raise ValueError("expected 0 < soft_ratio <= hard_ratio")
        if not 0 <= self.overlap_ratio < 1:
            raise ValueError("overlap_ratio must be in [0, 1)")
        if self.hard < 1:
            raise ValueError("hard token threshold must be at least one token")

    @property
    def soft(self) -> int:
        return int(self.max_tokens * self.soft_ratio)

    @property
    def hard(self) -> int:
        return int(self.max_tokens * self.hard_ratio)


@lru_cache(maxsize=8)
def _encoding_for(model: Optional[str]) -> "tiktoken.Encoding":
    if model:
        try:
            return tiktoken.encoding_for_model(model)
        except KeyError:
            logger.debug("tiktoken has no encoding for %s, using %s", model, _FALLBACK_ENCODING)
    return tiktoken.get_encoding(_FALLBACK_ENCODING)


def tiktoken_counter(model: Optional[str] = None) -> TokenCounter:
    """Build a token counter for the given model family."""
    encoding = _encoding_for(model)

    def count_tokens(text: str) -> int:
        return len(encoding.encode(text, disallowed_special=()))

    return count_tokens


def divide_into_chunks(
    code: str,
    limits: ChunkLimits,
    count_tokens: TokenCounter,
) -> list[CodeChunk]:
    """Divide code into chunks that each fit the hard token threshold.

    Every chunk but the last starts ``overlap_ratio`` of the previous chunk's
    length before that chunk's end, so identifiers near a boundary are seen
    with context on both sides.

    Args:
        code: Source code to divide
        limits: Token thresholds and overlap ratio
        count_tokens: Tokenizer oracle

    Returns:
        Chunks in source order
    """
    chunks: list[CodeChunk] = []
    start = 0
    total = len(code)

    while start < total:
        end = _find_chunk_end(code, start, limits, count_tokens)
        chunks.append(CodeChunk(index=len(chunks), text=code[start:end], start_offset=start, end_offset=end))
        if end >= total:
            break

        overlap = int((end - start) * limits.overlap_ratio)
        start = max(end - overlap, start + 1)

    logger.debug("Divided %d chars into %d chunks", total, len(chunks))
    return chunks


def _find_chunk_end(code: str, start: int, limits: ChunkLimits, count_tokens: TokenCounter) -> int:
    """Binary search the largest prefix of code[start:] within the hard threshold."""
    remaining = len(code) - start
    if count_tokens(code[start:]) <= limits.hard:
        return len(code)

    low, high = 1, remaining - 1
    best = 0
    while low <= high:
        mid = (low + high) // 2
        if count_tokens(code[start:start + mid]) <= limits.hard:
            best = mid
            low = mid + 1
        else:
            high = mid - 1

    if best == 0:
        # A single character already exceeds the budget
        logger.warning("Character at offset %d exceeds the hard token threshold", start)
        best = 1
    elif count_tokens(code[start:start + best]) < limits.soft:
        logger.debug("Chunk at offset %d ends below the soft threshold", start)

    return start + best
