"""End-to-end rename job: parse, chunk, dispatch, merge, apply."""

import asyncio
import logging
import uuid
from typing import Optional

from unmangle.cache import SuggestionCache
from unmangle.config import Config
from unmangle.core.chunker import TokenCounter, divide_into_chunks, tiktoken_counter
from unmangle.core.dispatcher import Dispatcher
from unmangle.core.generator import apply_renames
from unmangle.core.merger import merge
from unmangle.core.parser import parse_javascript
from unmangle.errors import UnmangleError
from unmangle.events import ProgressCallback, ProgressEmitter
from unmangle.llm.base import BaseLLMClient
from unmangle.llm.registry import ProviderRegistry
from unmangle.models import ChunkOutcome, CodeChunk, JobResult, RenameSuggestion

logger = logging.getLogger(__name__)

# Percentages reported at each stage boundary
_PARSED = 5.0
_CHUNKED = 10.0
_DISPATCHED = 80.0
_MERGED = 85.0
_APPLIED = 95.0


def format_chunk_warning(outcome: ChunkOutcome, total_chunks: int) -> str:
    chunk = outcome.chunk
    return f"Chunk {chunk.index + 1}/{total_chunks} ({chunk.describe()}) failed: {outcome.error}"


class RenamePipeline:
    """Runs rename jobs with clients taken from a registry the pipeline owns."""

    def __init__(
        self,
        config: Config,
        registry: Optional[ProviderRegistry] = None,
        count_tokens: Optional[TokenCounter] = None,
        cache: Optional[SuggestionCache] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.config = config
        self.registry = registry or ProviderRegistry()
        self._count_tokens = count_tokens
        self.cache = cache
        self.on_progress = on_progress

    @property
    def count_tokens(self) -> TokenCounter:
        if self._count_tokens is None:
            self._count_tokens = tiktoken_counter(self.config.tokenizer_model or self.config.llm_model)
        return self._count_tokens

    def client(self) -> BaseLLMClient:
        return self.registry.get(self.config)

    def plan_chunks(self, source_code: str) -> list[CodeChunk]:
        return divide_into_chunks(source_code, self.config.chunk_limits(), self.count_tokens)

    async def run(
        self,
        source_code: str,
        job_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> JobResult:
        """Rename identifiers in source_code.

        Chunk failures are reported in ``JobResult.warnings``, one per failed
        chunk. Configuration, authentication and parse errors abort the job.

        Args:
            source_code: JavaScript source to rename
            job_id: Identifier reported in progress events
            cancel_event: Set it to stop issuing requests and keep what has arrived

        Returns:
            The renamed code with its rename map, warnings and statistics
        """
        job_id = job_id or uuid.uuid4().hex[:12]
        emitter = ProgressEmitter(job_id, self.on_progress)
        step = "parse"
        percentage = 0.0
        emitter.start(step, f"{len(source_code)} characters")

        try:
            # Fail before spending tokens on source that cannot be rewritten
            tree = parse_javascript(source_code)
            taken_names = tree.identifier_names()
            percentage = _PARSED
            emitter.progress(percentage, step, f"{len(taken_names)} distinct identifiers")

            step = "chunk"
            chunks = self.plan_chunks(source_code)
            percentage = _CHUNKED
            emitter.progress(percentage, step, f"{len(chunks)} chunks")

            step = "dispatch"
            client = self.client()
            dispatcher = Dispatcher(
                client,
                concurrency=self.config.llm_concurrency,
                cache=self.cache,
                chunk_timeout=self.config.chunk_timeout_seconds,
            )
            completed = 0

            def on_outcome(outcome: ChunkOutcome) -> None:
                nonlocal completed, percentage
                completed += 1
                percentage = _CHUNKED + (_DISPATCHED - _CHUNKED) * completed / max(1, len(chunks))
                status = "ok" if outcome.ok else "failed"
                emitter.progress(percentage, step, f"chunk {outcome.chunk.index + 1}/{len(chunks)} {status}")

            outcomes = await dispatcher.run(
                chunks,
                cancel_event=cancel_event,
                timeout=self.config.job_timeout_seconds,
                all_or_nothing=self.config.all_or_nothing,
                on_outcome=on_outcome,
            )

            step = "merge"
            outcomes.sort(key=lambda outcome: outcome.chunk.index)
            warnings = [format_chunk_warning(o, len(chunks)) for o in outcomes if not o.ok]
            suggestion_lists, low_confidence = self._filter_by_confidence(outcomes)
            rename_map = merge(suggestion_lists, taken_names=taken_names)
            percentage = _MERGED
            emitter.progress(percentage, step, f"{len(rename_map)} renames")

            step = "apply"
            code = apply_renames(source_code, rename_map)
            percentage = _APPLIED
            emitter.progress(percentage, step)
        except UnmangleError as exc:
            emitter.error(percentage, step, exc.message)
            raise

        stats = {
            "chunks": len(chunks),
            "failed_chunks": len(warnings),
            "cached_chunks": sum(1 for o in outcomes if o.cached),
            "suggestions": sum(len(s) for s in suggestion_lists),
            "low_confidence_dropped": low_confidence,
            "renames": len(rename_map),
            "tokens_used": sum(o.tokens_used for o in outcomes),
            "peak_in_flight": dispatcher.peak_in_flight,
            **client.get_statistics(),
        }
        logger.info("Job %s: %d renames from %d chunks (%d failed)", job_id, len(rename_map), len(chunks), len(warnings))
        emitter.complete(f"{len(rename_map)} renames, {len(warnings)} warnings")
        return JobResult(job_id=job_id, code=code, rename_map=rename_map, warnings=warnings, stats=stats)

    def _filter_by_confidence(self, outcomes: list[ChunkOutcome]) -> tuple[list[list[RenameSuggestion]], int]:
        threshold = self.config.min_confidence
        kept: list[list[RenameSuggestion]] = []
        dropped = 0
        for outcome in outcomes:
            suggestions = [s for s in outcome.suggestions if s.confidence >= threshold]
            dropped += len(outcome.suggestions) - len(suggestions)
            kept.append(suggestions)
        if dropped:
            logger.info("%d suggestions below confidence %.2f were dropped", dropped, threshold)
        return kept, dropped

    async def close(self) -> None:
        await self.registry.close_all()
