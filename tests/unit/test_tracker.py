"""
Tests for the registration attempt tracker and error descriptions.
"""

import threading

from content.exceptions import ContentUnreachable, DigestMismatch, StoreUnavailable
from registration.exceptions import (
    ContentNotPropagated,
    DigestMismatchError,
    InsufficientFunds,
    describe_error,
)
from registration.tracker import AttemptStatus, RegistrationAttempt, RegistrationTracker


def attempt(status, duration_ms=None, error=None, name="asset"):
    return RegistrationAttempt(status=status, duration_ms=duration_ms, error=error, name=name)


class TestRegistrationTracker:
    def test_empty_stats(self):
        stats = RegistrationTracker().get_stats()

        assert stats == {
            "total": 0,
            "success": 0,
            "failure": 0,
            "success_rate": 0.0,
            "average_duration_ms": 0,
            "recent_failures": [],
        }

    def test_stats(self):
        tracker = RegistrationTracker()
        tracker.record(attempt(AttemptStatus.SUCCESS, duration_ms=100))
        tracker.record(attempt(AttemptStatus.SUCCESS, duration_ms=300))
        tracker.record(attempt(AttemptStatus.FAILURE, duration_ms=200, error="boom"))

        stats = tracker.get_stats()

        assert stats["total"] == 3
        assert stats["success"] == 2
        assert stats["failure"] == 1
        assert stats["success_rate"] == 66.7
        assert stats["average_duration_ms"] == 200
        assert stats["recent_failures"][0]["error"] == "boom"

    def test_newest_first_and_bounded(self):
        tracker = RegistrationTracker(max_attempts=3)
        for i in range(5):
            tracker.record(attempt(AttemptStatus.SUCCESS, name=f"asset-{i}"))

        assert [a.name for a in tracker.attempts()] == ["asset-4", "asset-3", "asset-2"]

    def test_recent_failures_limited(self):
        tracker = RegistrationTracker()
        for i in range(8):
            tracker.record(attempt(AttemptStatus.FAILURE, name=f"asset-{i}"))

        failures = tracker.get_stats()["recent_failures"]

        assert len(failures) == 5
        assert failures[0]["name"] == "asset-7"
        assert failures[0]["error"] == "Unknown error"

    def test_concurrent_recording(self):
        tracker = RegistrationTracker(max_attempts=1000)

        def record_many():
            for _ in range(100):
                tracker.record(attempt(AttemptStatus.SUCCESS))

        threads = [threading.Thread(target=record_many) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert tracker.get_stats()["total"] == 400

    def test_attempt_serialization(self):
        data = attempt(AttemptStatus.FAILURE, error="boom").to_dict()

        assert data["status"] == "failure"
        assert data["attempt_id"].startswith("reg_")

    def test_clear(self):
        tracker = RegistrationTracker()
        tracker.record(attempt(AttemptStatus.SUCCESS))
        tracker.clear()

        assert tracker.attempts() == []


class TestDescribeError:
    """Test classification of registration and lower-layer errors."""

    def test_registration_error(self):
        info = describe_error(InsufficientFunds("0x" + "1" * 40, step="preflight"))

        assert info.code == "INSUFFICIENT_FUNDS"
        assert info.step == "preflight"
        assert not info.retryable
        assert info.to_dict()["suggestion"]

    def test_store_error(self):
        info = describe_error(StoreUnavailable("rate limited", status_code=429, retryable=True))

        assert info.code == "STORE_UNAVAILABLE"
        assert info.retryable

    def test_content_errors(self):
        mismatch = describe_error(DigestMismatch("QmX", "0x" + "a" * 64, "0x" + "b" * 64))
        unreachable = describe_error(ContentUnreachable("QmX", waited=0.0, attempts=2))

        assert mismatch.code == DigestMismatchError.code
        assert not mismatch.retryable
        assert unreachable.code == ContentNotPropagated.code
        assert unreachable.retryable

    def test_unexpected_error(self):
        info = describe_error(RuntimeError("surprise"))

        assert info.message == "surprise"
        assert not info.retryable
