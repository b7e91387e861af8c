"""Prometheus metrics for the coach agent."""

from prometheus_client import Counter, Gauge, Histogram
import structlog

log = structlog.get_logger(__name__)

# Latency of one streamed model round
MODEL_ROUND_LATENCY = Histogram(
    'coach_model_round_latency_seconds',
    'Latency of a single streamed model round in seconds',
    ['model', 'status']
)

# Tool dispatch outcomes
TOOL_CALLS_TOTAL = Counter(
    'coach_tool_calls_total',
    'Total number of tool calls dispatched',
    ['tool', 'status']  # status: 'ok', 'invalid_arguments', 'unsupported_tool', 'error'
)

# Rounds used per turn
TOOL_ROUNDS = Histogram(
    'coach_tool_rounds',
    'Number of model/tool rounds used by a planner turn',
    buckets=(1, 2, 3, 4, 5, 6, 8, 10, 20)
)

# Turn metrics
TURN_EXECUTION_TOTAL = Counter(
    'coach_turn_execution_total',
    'Total number of turns executed',
    ['mode', 'status']  # mode: 'planner' or 'fallback'
)

ACTIVE_TURNS = Gauge(
    'coach_active_turns',
    'Number of currently active turns'
)

# Journal metrics
UNDO_TOTAL = Counter(
    'coach_undo_total',
    'Undo attempts by scope and outcome',
    ['scope', 'outcome']  # scope: 'action' or 'turn'; outcome: 'ok' or a failure reason
)

JOURNAL_WRITE_FAILURES = Counter(
    'coach_journal_write_failures_total',
    'Action records that could not be written after a successful mutation',
    ['action_kind']
)

RATE_LIMITED_TOTAL = Counter(
    'coach_rate_limited_total',
    'Requests rejected by the per-user rate limiter',
    ['scope']
)

# Helper functions for tracking metrics

def record_model_round(model: str, duration_seconds: float, status: str = "success") -> None:
    MODEL_ROUND_LATENCY.labels(model=model, status=status).observe(duration_seconds)

def record_tool_call(tool: str, status: str) -> None:
    TOOL_CALLS_TOTAL.labels(tool=tool, status=status).inc()

def record_turn_started() -> None:
    """Record that a new turn has started."""
    ACTIVE_TURNS.inc()

def record_turn_completed(mode: str, status: str, rounds: int = 0) -> None:
    """
    Record that a turn has completed.

    Args:
        mode: 'planner' or 'fallback'
        status: Completion status ('ok' or 'error')
        rounds: Model rounds used (planner turns only)
    """
    ACTIVE_TURNS.dec()
    TURN_EXECUTION_TOTAL.labels(mode=mode, status=status).inc()
    if rounds > 0:
        TOOL_ROUNDS.observe(rounds)

def record_undo(scope: str, outcome: str) -> None:
    UNDO_TOTAL.labels(scope=scope, outcome=outcome).inc()

def record_journal_write_failure(action_kind: str) -> None:
    JOURNAL_WRITE_FAILURES.labels(action_kind=action_kind).inc()

def record_rate_limited(scope: str) -> None:
    RATE_LIMITED_TOTAL.labels(scope=scope).inc()
