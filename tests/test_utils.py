"""Tests for conveyor.utils: backoff computation, interruptible sleep, dotenv loading."""

import os
import threading
from unittest.mock import patch

import pytest

from conveyor.utils import env, timing
from conveyor.utils.timing import backoff, compute_backoff

# =====================================================================
#   compute_backoff
# =====================================================================


class TestComputeBackoff:
    def test_zero_backoff_returns_zero(self):
        assert compute_backoff(backoff=0, multiplier=2, cap=10, attempt=5) == 0

    def test_linear_constant_delay(self):
        for attempt in range(6):
            assert compute_backoff(backoff=2.0, multiplier=1, cap=0, attempt=attempt) == 2.0

    def test_exponential_growth(self):
        expected = [1, 2, 4, 8, 16]
        for attempt, exp in enumerate(expected):
            assert compute_backoff(backoff=1, multiplier=2, cap=0, attempt=attempt) == exp

    def test_exponential_with_cap(self):
        # floor(log2(5/1)) = 2 → 1*2^2 = 4
        assert compute_backoff(backoff=1, multiplier=2, cap=5, attempt=10) == 4

    def test_cap_below_backoff(self):
        assert compute_backoff(backoff=1, multiplier=2, cap=0.5, attempt=0) == 0.5

    def test_large_attempt_does_not_overflow(self):
        assert compute_backoff(backoff=1, multiplier=2, cap=30, attempt=10_000) <= 30


# =====================================================================
#   backoff
# =====================================================================


class TestBackoff:
    def test_zero_delay_does_not_sleep(self):
        with patch("conveyor.utils.timing.time.sleep") as mock_sleep:
            assert backoff(0, 2, 10, 3) is True

        mock_sleep.assert_not_called()

    def test_sleeps_computed_delay(self):
        with patch("conveyor.utils.timing.time.sleep") as mock_sleep:
            assert backoff(1, 2, 0, 2) is True

        mock_sleep.assert_called_once_with(4)

    def test_stop_event_interrupts(self):
        stop = threading.Event()
        stop.set()

        assert backoff(60, 1, 0, 0, stop_event=stop) is False

    def test_stop_event_not_set_completes(self):
        stop = threading.Event()

        assert backoff(0.01, 1, 0, 0, stop_event=stop) is True

    def test_wake_time_is_iso(self):
        assert "T" in timing._get_wake_time_iso(1.0)


# =====================================================================
#   load_env
# =====================================================================


@pytest.fixture
def fresh_env(monkeypatch):
    monkeypatch.setattr(env, "ENV_LOADED", False)
    monkeypatch.delenv("ENV_FILE", raising=False)
    return env


class TestLoadEnv:
    def test_loads_file(self, fresh_env, tmp_path, monkeypatch):
        monkeypatch.delenv("BROKER_EXCHANGE", raising=False)
        dotenv = tmp_path / ".env.test"
        dotenv.write_text("BROKER_EXCHANGE=from-file\n", encoding="utf-8")

        assert fresh_env.load_env(str(dotenv)) is True

        assert os.environ["BROKER_EXCHANGE"] == "from-file"
        monkeypatch.delenv("BROKER_EXCHANGE")

    def test_exported_variables_win(self, fresh_env, tmp_path, monkeypatch):
        monkeypatch.setenv("BROKER_EXCHANGE", "exported")
        dotenv = tmp_path / ".env.test"
        dotenv.write_text("BROKER_EXCHANGE=from-file\n", encoding="utf-8")

        fresh_env.load_env(str(dotenv))

        assert os.environ["BROKER_EXCHANGE"] == "exported"

    def test_env_file_variable(self, fresh_env, tmp_path, monkeypatch):
        dotenv = tmp_path / ".env.local"
        dotenv.write_text("CONSUMER_ACK_MODE=after\n", encoding="utf-8")
        monkeypatch.setenv("ENV_FILE", str(dotenv))
        monkeypatch.delenv("CONSUMER_ACK_MODE", raising=False)

        assert fresh_env.load_env() is True
        monkeypatch.delenv("CONSUMER_ACK_MODE")

    def test_missing_file_is_skipped(self, fresh_env, tmp_path):
        assert fresh_env.load_env(str(tmp_path / "nope.env")) is False
        assert fresh_env.ENV_LOADED is False

    def test_loads_only_once(self, fresh_env, tmp_path, monkeypatch):
        dotenv = tmp_path / ".env.test"
        dotenv.write_text("X_CONVEYOR_ONCE=1\n", encoding="utf-8")

        assert fresh_env.load_env(str(dotenv)) is True
        assert fresh_env.load_env(str(dotenv)) is False
        monkeypatch.delenv("X_CONVEYOR_ONCE")
