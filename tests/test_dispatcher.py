"""Tests for concurrent chunk dispatch."""

import asyncio
import threading

import pytest

from unmangle.cache import SuggestionCache
from unmangle.core.dispatcher import Dispatcher
from unmangle.errors import (
    AuthError,
    ChunkProcessingError,
    JobCancelledError,
    MissingApiKeyError,
    ProviderRequestError,
    TransientNetworkError,
)
from unmangle.models import CodeChunk, RetryPolicy

from conftest import FakeClient, suggestions_json


def make_chunks(count: int) -> list[CodeChunk]:
    chunks = []
    offset = 0
    for index in range(count):
        text = f"var v{index} = {index};"
        chunks.append(CodeChunk(index=index, text=text, start_offset=offset, end_offset=offset + len(text)))
        offset += len(text)
    return chunks


def chunk_index(request) -> int:
    # "var v3 = 3;" -> 3
    return int(request.code.split("=")[1].strip(" ;"))


def rename_reply(request) -> str:
    index = chunk_index(request)
    return suggestions_json((f"v{index}", f"value{index}"))


class TestConcurrencyBound:
    @pytest.mark.asyncio
    async def test_at_most_bound_calls_in_flight(self):
        latencies = [0.05, 0.01, 0.04, 0.02, 0.03]
        client = FakeClient(rename_reply, delay=lambda request: latencies[chunk_index(request)])
        dispatcher = Dispatcher(client, concurrency=2)

        outcomes = await dispatcher.run(make_chunks(5))

        assert client.peak_in_flight <= 2
        assert dispatcher.peak_in_flight <= 2
        assert dispatcher.in_flight == 0
        assert sorted(o.chunk.index for o in outcomes) == [0, 1, 2, 3, 4]
        assert all(o.ok for o in outcomes)
        assert len(client.calls) == 5

    @pytest.mark.asyncio
    async def test_bound_is_reached_when_work_allows(self):
        client = FakeClient(rename_reply, delay=0.02)
        dispatcher = Dispatcher(client, concurrency=3)

        await dispatcher.run(make_chunks(6))

        assert client.peak_in_flight == 3

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValueError):
            Dispatcher(FakeClient(rename_reply), concurrency=0)

    @pytest.mark.asyncio
    async def test_outcome_callback_sees_every_chunk_once(self):
        seen = []
        dispatcher = Dispatcher(FakeClient(rename_reply), concurrency=2)

        await dispatcher.run(make_chunks(4), on_outcome=lambda outcome: seen.append(outcome.chunk.index))

        assert sorted(seen) == [0, 1, 2, 3]


class TestPartialFailure:
    @pytest.mark.asyncio
    async def test_failed_chunk_does_not_stop_siblings(self):
        def reply(request):
            if chunk_index(request) == 2:
                return ProviderRequestError("bad request", provider="fake")
            return rename_reply(request)

        dispatcher = Dispatcher(FakeClient(reply), concurrency=2)

        outcomes = await dispatcher.run(make_chunks(4))

        failed = [o for o in outcomes if not o.ok]
        assert len(outcomes) == 4
        assert [o.chunk.index for o in failed] == [2]
        assert isinstance(failed[0].error, ChunkProcessingError)
        assert failed[0].error.chunk_index == 2
        assert "bad request" in str(failed[0].error)
        assert failed[0].suggestions == []

    @pytest.mark.asyncio
    async def test_attempt_count_is_reported(self):
        client = FakeClient(
            lambda request: TransientNetworkError("connection reset", provider="fake"),
            retry_policy=RetryPolicy(max_attempts=3, base_delay=0.0),
        )

        outcomes = await Dispatcher(client).run(make_chunks(1))

        assert "after 3 attempts" in str(outcomes[0].error)

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_chunk_failure(self):
        class Broken(FakeClient):
            def parse_rename_suggestions(self, response):
                raise RuntimeError("boom")

        outcomes = await Dispatcher(Broken(rename_reply)).run(make_chunks(2))

        assert all(not o.ok for o in outcomes)
        assert all("boom" in str(o.error) for o in outcomes)

    @pytest.mark.asyncio
    async def test_chunk_timeout_fails_only_that_chunk(self):
        client = FakeClient(rename_reply, delay=lambda request: 1.0 if chunk_index(request) == 0 else 0.0)
        dispatcher = Dispatcher(client, concurrency=2, chunk_timeout=0.05)

        outcomes = await dispatcher.run(make_chunks(3))

        by_index = {o.chunk.index: o for o in outcomes}
        assert not by_index[0].ok
        assert isinstance(by_index[0].error.cause, TransientNetworkError)
        assert not by_index[0].abandoned
        assert by_index[1].ok and by_index[2].ok


class TestFatalErrors:
    @pytest.mark.asyncio
    async def test_auth_error_aborts_and_cancels_siblings(self):
        def reply(request):
            if chunk_index(request) == 0:
                return AuthError("invalid api key", provider="fake")
            return rename_reply(request)

        client = FakeClient(reply, delay=lambda request: 0.0 if chunk_index(request) == 0 else 5.0)
        dispatcher = Dispatcher(client, concurrency=3)

        with pytest.raises(AuthError):
            await dispatcher.run(make_chunks(3))

        assert client.in_flight == 0

    @pytest.mark.asyncio
    async def test_config_error_aborts(self):
        client = FakeClient(lambda request: MissingApiKeyError("fake"))

        with pytest.raises(MissingApiKeyError):
            await Dispatcher(client).run(make_chunks(2))


class TestCancellation:
    @pytest.mark.asyncio
    async def test_job_timeout_keeps_completed_outcomes(self):
        client = FakeClient(rename_reply, delay=lambda request: 5.0 if chunk_index(request) == 1 else 0.0)
        dispatcher = Dispatcher(client, concurrency=3)

        outcomes = await dispatcher.run(make_chunks(3), timeout=0.2)

        by_index = {o.chunk.index: o for o in outcomes}
        assert len(outcomes) == 3
        assert by_index[0].ok and by_index[2].ok
        assert by_index[1].abandoned
        assert "timed out" in str(by_index[1].error)
        assert client.in_flight == 0

    @pytest.mark.asyncio
    async def test_all_or_nothing_raises_on_timeout(self):
        client = FakeClient(rename_reply, delay=lambda request: 5.0 if chunk_index(request) == 1 else 0.0)

        with pytest.raises(JobCancelledError):
            await Dispatcher(client, concurrency=3).run(make_chunks(3), timeout=0.2, all_or_nothing=True)

    @pytest.mark.asyncio
    async def test_all_or_nothing_ignores_ordinary_failures(self):
        def reply(request):
            if chunk_index(request) == 0:
                return ProviderRequestError("bad request", provider="fake")
            return rename_reply(request)

        outcomes = await Dispatcher(FakeClient(reply)).run(make_chunks(2), all_or_nothing=True)

        assert sum(o.ok for o in outcomes) == 1

    @pytest.mark.asyncio
    async def test_cancel_event_stops_new_requests(self):
        cancel = asyncio.Event()
        client = FakeClient(rename_reply, delay=0.1)
        dispatcher = Dispatcher(client, concurrency=1)

        outcomes = await dispatcher.run(make_chunks(4), cancel_event=cancel, on_outcome=lambda outcome: cancel.set())

        assert len(outcomes) == 4
        assert sum(o.ok for o in outcomes) == 1
        assert all(o.abandoned for o in outcomes if not o.ok)
        assert len(client.calls) <= 2

    @pytest.mark.asyncio
    async def test_cancel_before_start(self):
        cancel = asyncio.Event()
        cancel.set()
        client = FakeClient(rename_reply)

        outcomes = await Dispatcher(client).run(make_chunks(3), cancel_event=cancel)

        assert len(outcomes) == 3
        assert all(o.abandoned for o in outcomes)
        assert client.calls == []


class TestCache:
    @pytest.mark.asyncio
    async def test_second_run_is_served_from_cache(self, tmp_path):
        cache = SuggestionCache(tmp_path / "cache")
        client = FakeClient(rename_reply)
        chunks = make_chunks(3)

        first = await Dispatcher(client, cache=cache).run(chunks)
        second = await Dispatcher(client, cache=cache).run(chunks)

        assert len(client.calls) == 3
        assert not any(o.cached for o in first)
        assert all(o.cached for o in second)
        assert {o.chunk.index: o.suggestions for o in first} == {o.chunk.index: o.suggestions for o in second}

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, tmp_path):
        cache = SuggestionCache(tmp_path / "cache")
        replies = [ProviderRequestError("bad request", provider="fake"), suggestions_json(("v0", "value0"))]
        client = FakeClient(lambda request: replies.pop(0))

        first = await Dispatcher(client, cache=cache).run(make_chunks(1))
        second = await Dispatcher(client, cache=cache).run(make_chunks(1))

        assert not first[0].ok
        assert second[0].ok and not second[0].cached

    @pytest.mark.asyncio
    async def test_cache_io_runs_off_the_event_loop(self, tmp_path):
        loop_thread = threading.get_ident()
        threads = []

        class RecordingCache(SuggestionCache):
            def get(self, key):
                threads.append(threading.get_ident())
                return super().get(key)

            def set(self, key, suggestions):
                threads.append(threading.get_ident())
                super().set(key, suggestions)

        cache = RecordingCache(tmp_path / "cache")

        outcomes = await Dispatcher(FakeClient(rename_reply), cache=cache).run(make_chunks(2))

        assert all(o.ok for o in outcomes)
        assert len(threads) == 4
        assert loop_thread not in threads
