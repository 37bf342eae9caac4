"""Concurrent dispatch of chunk requests with partial-failure tolerance."""

import asyncio
import logging
from typing import Callable, Iterable, Optional

from unmangle.cache import SuggestionCache
from unmangle.errors import (
    ChunkProcessingError,
    JobCancelledError,
    TransientNetworkError,
    UnmangleError,
    is_fatal,
)
from unmangle.llm.base import BaseLLMClient
from unmangle.models import ChunkOutcome, CodeChunk, RequestConfig

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[ChunkOutcome], None]


class Dispatcher:
    """Runs one provider request per chunk, at most ``concurrency`` at a time."""

    def __init__(
        self,
        client: BaseLLMClient,
        concurrency: int = 5,
        request_config: Optional[RequestConfig] = None,
        cache: Optional[SuggestionCache] = None,
        chunk_timeout: Optional[float] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.client = client
        self.concurrency = concurrency
        self.request_config = request_config
        self.cache = cache
        self.chunk_timeout = chunk_timeout
        self.in_flight = 0
        self.peak_in_flight = 0

    async def run(
        self,
        chunks: Iterable[CodeChunk],
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
        all_or_nothing: bool = False,
        on_outcome: Optional[OutcomeCallback] = None,
    ) -> list[ChunkOutcome]:
        """Dispatch every chunk and collect exactly one outcome per chunk.

        Outcomes are returned in completion order. A chunk whose request fails
        gets an outcome carrying a ChunkProcessingError; its siblings keep
        running. Authentication and configuration errors abort the run.

        Args:
            chunks: Chunks to dispatch
            cancel_event: When set, no new requests are issued and in-flight ones are abandoned
            timeout: Job-level time limit for the whole dispatch, in seconds
            all_or_nothing: Raise JobCancelledError instead of returning partial results
            on_outcome: Called as each outcome is collected

        Returns:
            One ChunkOutcome per chunk
        """
        semaphore = asyncio.Semaphore(self.concurrency)
        tasks: dict[asyncio.Task, CodeChunk] = {}
        for chunk in chunks:
            task = asyncio.create_task(self._run_one(chunk, semaphore, cancel_event))
            tasks[task] = chunk

        outcomes: list[ChunkOutcome] = []
        pending: set[asyncio.Task] = set(tasks)
        cancel_waiter = asyncio.create_task(cancel_event.wait()) if cancel_event is not None else None
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        stop_reason: Optional[str] = None

        try:
            while pending:
                remaining = None if deadline is None else deadline - loop.time()
                if remaining is not None and remaining <= 0:
                    stop_reason = f"job timed out after {timeout}s"
                    break

                waiting = pending | {cancel_waiter} if cancel_waiter is not None else pending
                done, _ = await asyncio.wait(waiting, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)

                for task in done:
                    if task is cancel_waiter:
                        continue
                    pending.discard(task)
                    outcome = task.result()
                    outcomes.append(outcome)
                    if on_outcome is not None:
                        on_outcome(outcome)

                if cancel_waiter is not None and cancel_waiter in done:
                    stop_reason = "job cancelled"
                    break
        except BaseException:
            await _cancel_all(pending)
            raise
        finally:
            if cancel_waiter is not None:
                await _cancel_all({cancel_waiter})

        if pending:
            logger.warning("Abandoning %d in-flight chunk requests: %s", len(pending), stop_reason)
            await _cancel_all(pending)
            for task in sorted(pending, key=lambda t: tasks[t].index):
                chunk = tasks[task]
                outcome = ChunkOutcome(
                    chunk=chunk,
                    error=ChunkProcessingError(chunk.index, f"abandoned: {stop_reason}"),
                    abandoned=True,
                )
                outcomes.append(outcome)
                if on_outcome is not None:
                    on_outcome(outcome)

        if all_or_nothing:
            unfinished = [o for o in outcomes if o.abandoned]
            if unfinished:
                raise JobCancelledError(
                    f"{len(unfinished)} of {len(outcomes)} chunks did not complete "
                    f"({stop_reason or 'job cancelled'})",
                    step="dispatch",
                )
        return outcomes

    async def _run_one(
        self,
        chunk: CodeChunk,
        semaphore: asyncio.Semaphore,
        cancel_event: Optional[asyncio.Event],
    ) -> ChunkOutcome:
        async with semaphore:
            if cancel_event is not None and cancel_event.is_set():
                return ChunkOutcome(
                    chunk=chunk,
                    error=ChunkProcessingError(chunk.index, "abandoned: job cancelled before dispatch"),
                    abandoned=True,
                )
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                return await self._process(chunk)
            finally:
                self.in_flight -= 1

    async def _process(self, chunk: CodeChunk) -> ChunkOutcome:
        request = self.client.build_request(chunk.text, self.request_config)
        cache_key = None
        if self.cache is not None:
            cache_key = SuggestionCache.make_key(self.client.name, request.model, request.temperature, chunk.text)
            cached = await asyncio.to_thread(self.cache.get, cache_key)
            if cached is not None:
                logger.debug("Chunk %d served from cache", chunk.index)
                return ChunkOutcome(chunk=chunk, suggestions=cached, cached=True)

        try:
            if self.chunk_timeout is not None:
                response = await asyncio.wait_for(self.client.process_code(request), timeout=self.chunk_timeout)
            else:
                response = await self.client.process_code(request)
        except asyncio.TimeoutError as exc:
            cause = TransientNetworkError(
                f"timed out after {self.chunk_timeout}s", provider=self.client.name, cause=exc
            )
            return self._failed(chunk, cause)
        except UnmangleError as exc:
            if is_fatal(exc):
                raise
            return self._failed(chunk, exc)
        except Exception as exc:
            logger.exception("Unexpected error while processing chunk %d", chunk.index)
            return self._failed(chunk, exc)

        if self.cache is not None and cache_key is not None:
            await asyncio.to_thread(self.cache.set, cache_key, response.suggestions)
        return ChunkOutcome(chunk=chunk, suggestions=response.suggestions, tokens_used=response.tokens_used)

    @staticmethod
    def _failed(chunk: CodeChunk, exc: Exception) -> ChunkOutcome:
        message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
        attempts = getattr(exc, "attempts", 1)
        if attempts > 1:
            message = f"{message} (after {attempts} attempts)"
        logger.warning("Chunk %d failed: %s", chunk.index, message)
        return ChunkOutcome(chunk=chunk, error=ChunkProcessingError(chunk.index, message, cause=exc))


async def _cancel_all(tasks: set[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)

