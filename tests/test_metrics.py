"""Tests for the coach.metrics module."""

import unittest

from prometheus_client import REGISTRY

from coach.metrics import (
    record_journal_write_failure,
    record_model_round,
    record_rate_limited,
    record_tool_call,
    record_turn_started,
    record_turn_completed,
    record_undo,
)

def _sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {})

class TestMetrics(unittest.TestCase):
    """Test the metrics recording functions."""

    def test_record_model_round(self):
        before = _sample("coach_model_round_latency_seconds_count", {"model": "test-model", "status": "success"}) or 0
        record_model_round("test-model", 0.25)
        record_model_round("test-model", 0.5, status="error")
        after = _sample("coach_model_round_latency_seconds_count", {"model": "test-model", "status": "success"})
        self.assertEqual(after, before + 1)
        self.assertIsNotNone(_sample("coach_model_round_latency_seconds_count", {"model": "test-model", "status": "error"}))

    def test_record_tool_call(self):
        labels = {"tool": "log_set", "status": "ok"}
        before = _sample("coach_tool_calls_total", labels) or 0
        record_tool_call("log_set", "ok")
        record_tool_call("log_set", "ok")
        self.assertEqual(_sample("coach_tool_calls_total", labels), before + 2)

    def test_turn_lifecycle(self):
        """A completed turn leaves the active gauge where it started."""
        active_before = _sample("coach_active_turns")
        labels = {"mode": "planner", "status": "ok"}
        total_before = _sample("coach_turn_execution_total", labels) or 0
        rounds_before = _sample("coach_tool_rounds_count") or 0

        record_turn_started()
        self.assertEqual(_sample("coach_active_turns"), active_before + 1)
        record_turn_completed("planner", "ok", rounds=2)

        self.assertEqual(_sample("coach_active_turns"), active_before)
        self.assertEqual(_sample("coach_turn_execution_total", labels), total_before + 1)
        self.assertEqual(_sample("coach_tool_rounds_count"), rounds_before + 1)

    def test_fallback_turn_does_not_observe_rounds(self):
        rounds_before = _sample("coach_tool_rounds_count") or 0
        record_turn_started()
        record_turn_completed("fallback", "ok")
        self.assertEqual(_sample("coach_tool_rounds_count") or 0, rounds_before)

    def test_record_undo(self):
        labels = {"scope": "turn", "outcome": "conflict"}
        before = _sample("coach_undo_total", labels) or 0
        record_undo("turn", "conflict")
        self.assertEqual(_sample("coach_undo_total", labels), before + 1)

    def test_record_journal_write_failure(self):
        labels = {"action_kind": "delete_set"}
        before = _sample("coach_journal_write_failures_total", labels) or 0
        record_journal_write_failure("delete_set")
        self.assertEqual(_sample("coach_journal_write_failures_total", labels), before + 1)

    def test_record_rate_limited(self):
        labels = {"scope": "coach:turn"}
        before = _sample("coach_rate_limited_total", labels) or 0
        record_rate_limited("coach:turn")
        self.assertEqual(_sample("coach_rate_limited_total", labels), before + 1)

if __name__ == '__main__':
    unittest.main()
