"""Tests for progress events and the error taxonomy."""

from unmangle.errors import (
    AuthError,
    ChunkProcessingError,
    ConfigError,
    MalformedResponseError,
    MissingApiKeyError,
    RateLimitError,
    SchemaError,
    TransientNetworkError,
    is_fatal,
)
from unmangle.events import EventType, ProgressEmitter


class TestProgressEmitter:
    def test_emits_to_callback(self):
        events = []
        emitter = ProgressEmitter("job", events.append)

        emitter.start("parse", "starting")
        emitter.progress(42.345, "dispatch")
        emitter.complete("done")

        assert [e.type for e in events] == [EventType.START, EventType.PROGRESS, EventType.COMPLETE]
        assert events[1].percentage == 42.3
        assert events[2].percentage == 100.0
        assert events[0].to_dict()["type"] == "start"

    def test_percentage_is_clamped(self):
        events = []
        emitter = ProgressEmitter("job", events.append)

        emitter.progress(140.0, "x")
        emitter.progress(-3.0, "x")

        assert [e.percentage for e in events] == [100.0, 0.0]

    def test_no_callback_is_fine(self):
        ProgressEmitter("job").start("parse")

    def test_failing_callback_is_disabled(self):
        calls = []

        def callback(event):
            calls.append(event)
            raise RuntimeError("observer down")

        emitter = ProgressEmitter("job", callback)
        emitter.start("parse")
        emitter.progress(50.0, "dispatch")
        emitter.error(50.0, "dispatch", "failed")

        assert len(calls) == 1


class TestErrors:
    def test_fatal_classification(self):
        assert is_fatal(AuthError("bad key", provider="openai"))
        assert is_fatal(MissingApiKeyError("openai", "OPENAI_API_KEY"))
        assert is_fatal(ConfigError("bad"))
        assert not is_fatal(TransientNetworkError("reset", provider="openai"))
        assert not is_fatal(MalformedResponseError("junk", provider="openai"))
        assert not is_fatal(ValueError("x"))

    def test_retryable_classification(self):
        assert RateLimitError("slow", retry_after=2.0).retryable
        assert TransientNetworkError("reset").retryable
        assert not MalformedResponseError("junk").retryable
        assert SchemaError is MalformedResponseError

    def test_describe_includes_remediation(self):
        error = MissingApiKeyError("openai", "OPENAI_API_KEY")

        text = error.describe()

        assert text.startswith("API key required for openai")
        assert "OPENAI_API_KEY" in text
        assert error.to_dict()["code"] == "MISSING_API_KEY"

    def test_provider_prefix_and_chunk_error(self):
        cause = TransientNetworkError("reset", provider="openai")
        error = ChunkProcessingError(3, cause.message, cause=cause)

        assert cause.message == "openai request failed: reset"
        assert error.chunk_index == 3
        assert error.recoverable
