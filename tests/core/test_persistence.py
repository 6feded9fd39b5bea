"""Unit tests for durable JSON state and the error taxonomy."""
import json

import pytest

from src.sentinel.core.errors import (
    CircuitOpenError,
    ErrorCategory,
    InvariantViolationError,
    RemoteRejectedError,
    TransientIOError,
)
from src.sentinel.core.persistence import JsonStateStore


class TestJsonStateStore:
    """Test load/save behaviour of a state file."""

    @pytest.mark.asyncio
    async def test_missing_file_loads_none(self, tmp_path):
        """Test that an absent file means a fresh start."""
        store = JsonStateStore(str(tmp_path / "deployment-state.json"))
        assert await store.load() is None
        assert store.last_error is None

    @pytest.mark.asyncio
    async def test_save_then_load(self, tmp_path):
        """Test that a saved document is read back."""
        store = JsonStateStore(str(tmp_path / "nested" / "rollback-tracking.json"))
        document = {"cooldown_until": None, "history": [{"id": "rollback-1"}]}

        assert await store.save(document) is True
        assert await store.load() == document
        # No temp files left next to the target
        assert [p.name for p in (tmp_path / "nested").iterdir()] == ["rollback-tracking.json"]

    @pytest.mark.asyncio
    async def test_corrupt_file_loads_none(self, tmp_path):
        """Test that unreadable JSON is reported and ignored."""
        path = tmp_path / "notification-queue.json"
        path.write_text("{not json")
        store = JsonStateStore(str(path))

        assert await store.load() is None
        assert store.last_error

    @pytest.mark.asyncio
    async def test_non_object_document_loads_none(self, tmp_path):
        """Test that a JSON list is not accepted as state."""
        path = tmp_path / "performance-metrics.json"
        path.write_text(json.dumps([1, 2, 3]))
        store = JsonStateStore(str(path))

        assert await store.load() is None
        assert "not a JSON object" in store.last_error

    @pytest.mark.asyncio
    async def test_save_failure_returns_false(self, tmp_path):
        """Test that a write failure is logged and reported, never raised."""
        blocker = tmp_path / "blocker"
        blocker.write_text("I am a file")
        store = JsonStateStore(str(blocker / "state.json"))

        assert await store.save({"a": 1}) is False
        assert store.last_error


class TestErrors:
    """Test error categories and serialization."""

    def test_transient_errors_are_retryable(self):
        error = TransientIOError("ci_dispatch returned HTTP 502", {"status_code": 502})
        assert error.retryable
        assert error.to_dict() == {
            "error": "transient_io",
            "message": "ci_dispatch returned HTTP 502",
            "retryable": True,
            "details": {"status_code": 502},
        }

    def test_rejections_are_not_retryable(self):
        """Test that 4xx rejections and open circuits are transient I/O but final."""
        for error in (RemoteRejectedError("HTTP 422"), CircuitOpenError("open")):
            assert error.category == ErrorCategory.TRANSIENT_IO
            assert not error.retryable

    def test_invariant_violation(self):
        error = InvariantViolationError("Deployment deploy-1 is already in progress")
        assert error.category == ErrorCategory.INVARIANT_VIOLATION
        assert error.details == {}
        assert str(error) == "Deployment deploy-1 is already in progress"
