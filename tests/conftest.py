"""Shared fixtures for the waiting room tests."""

import hashlib
import itertools

import pytest

from fairline.app.core.config import Settings


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float = 1.0) -> None:
        self.now += seconds


def solve_challenge(server_nonce: str, difficulty: int) -> tuple[str, str]:
    """Brute-force a proof-of-work solution, returning (solution, digest)."""
    prefix = "0" * difficulty
    for n in itertools.count():
        digest = hashlib.sha256(f"{server_nonce}:{n}".encode()).hexdigest()
        if digest.startswith(prefix):
            return str(n), digest


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        queue_jwt_secret="test-queue-secret",
        pow_jwt_secret="test-pow-secret",
        position_secret="test-position-secret",
        admin_key="test-admin",
        pow_difficulty=1,
        admit_per_minute=60,
        scheduler_enabled=False,
        ws_update_interval_seconds=30.0,
        sse_update_interval_seconds=30.0,
        event_log_path=str(tmp_path / "events.jsonl"),
        audit_dead_letter_path=str(tmp_path / "audit-dead.jsonl"),
    )


@pytest.fixture
def solver():
    return solve_challenge
