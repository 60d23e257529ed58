"""
Metrics Collection for the Case Copilot

Tracks pipeline outcomes (clarifications, quota denials, approvals,
fallbacks) and run latency for monitoring.
"""

import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

logger = logging.getLogger(__name__)


# Terminal outcomes of one pipeline run
OUTCOME_COMPLETED = "completed"
OUTCOME_FALLBACK = "fallback"
OUTCOME_CLARIFIED = "clarified"
OUTCOME_QUOTA_DENIED = "quota_denied"
OUTCOME_AWAITING_APPROVAL = "awaiting_approval"
OUTCOME_REJECTED = "rejected"
OUTCOME_MEMORY = "memory"


@dataclass
class RunMetrics:
    """Metrics for a single pipeline run (or resumed run)."""
    run_id: str
    account_id: str
    mode: str
    start_time: float
    end_time: float = 0
    latency_ms: float = 0
    outcome: Optional[str] = None
    tool_calls: int = 0
    credits_consumed: int = 0
    error: Optional[str] = None


@dataclass
class CopilotMetrics:
    """Aggregated pipeline metrics."""
    total_runs: int = 0
    completed: int = 0
    fallbacks: int = 0
    clarifications: int = 0
    quota_denials: int = 0
    memory_instructions: int = 0
    failed_runs: int = 0

    approvals_requested: int = 0
    approvals_approved: int = 0
    approvals_rejected: int = 0
    stale_resolutions: int = 0

    credits_consumed: int = 0

    # Latency tracking (in ms)
    total_latency_ms: float = 0
    latencies: list = field(default_factory=list)

    errors_by_type: dict = field(default_factory=lambda: defaultdict(int))
    runs_by_mode: dict = field(default_factory=lambda: defaultdict(int))

    @property
    def avg_latency_ms(self) -> float:
        if self.total_runs == 0:
            return 0
        return self.total_latency_ms / self.total_runs

    @property
    def p95_latency_ms(self) -> float:
        """Calculate 95th percentile latency."""
        if not self.latencies:
            return 0
        sorted_latencies = sorted(self.latencies)
        index = int(len(sorted_latencies) * 0.95)
        return sorted_latencies[min(index, len(sorted_latencies) - 1)]

    @property
    def fallback_rate(self) -> float:
        generated = self.completed + self.fallbacks
        if generated == 0:
            return 0
        return self.fallbacks / generated

    def to_dict(self) -> dict:
        """Convert to dictionary for display."""
        return {
            "runs": {
                "total": self.total_runs,
                "completed": self.completed,
                "fallbacks": self.fallbacks,
                "fallback_rate": f"{self.fallback_rate:.2%}",
                "clarifications": self.clarifications,
                "quota_denials": self.quota_denials,
                "memory_instructions": self.memory_instructions,
                "failed": self.failed_runs,
            },
            "approvals": {
                "requested": self.approvals_requested,
                "approved": self.approvals_approved,
                "rejected": self.approvals_rejected,
                "stale": self.stale_resolutions,
            },
            "credits_consumed": self.credits_consumed,
            "latency_ms": {
                "avg": round(self.avg_latency_ms, 2),
                "p95": round(self.p95_latency_ms, 2),
            },
            "by_mode": dict(self.runs_by_mode),
            "errors": dict(self.errors_by_type),
        }


class MetricsCollector:
    """
    Collects and aggregates pipeline metrics.

    Usage:
        collector = MetricsCollector()

        with collector.track_run(run_id, account_id, "general") as tracker:
            message = run_pipeline()
            tracker.set_outcome(OUTCOME_COMPLETED, tool_calls=len(message.tool_calls))

        metrics = collector.get_metrics_dict()
    """

    def __init__(self, max_history: int = 1000):
        self.metrics = CopilotMetrics()
        self._lock = threading.Lock()
        self._history: list[RunMetrics] = []
        self._max_history = max_history
        self._start_time = datetime.now()

    def reset(self):
        """Reset all metrics (for testing)."""
        with self._lock:
            self.metrics = CopilotMetrics()
            self._history = []
            self._start_time = datetime.now()

    class RunTracker:
        """Context manager for tracking one run."""

        def __init__(self, collector: "MetricsCollector", run_id: str, account_id: str, mode: str):
            self.collector = collector
            self.run = RunMetrics(run_id=run_id, account_id=account_id, mode=mode, start_time=time.time())

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc_val, exc_tb):
            self.run.end_time = time.time()
            self.run.latency_ms = (self.run.end_time - self.run.start_time) * 1000
            if exc_type:
                self.run.error = str(exc_val)
                self.collector._record_error(exc_type.__name__)
            self.collector._record_run(self.run)
            return False  # Don't suppress exceptions

        def set_outcome(self, outcome: str, tool_calls: int = 0, credits_consumed: int = 0):
            self.run.outcome = outcome
            self.run.tool_calls = tool_calls
            self.run.credits_consumed = credits_consumed

    def track_run(self, run_id: str, account_id: str, mode: str) -> RunTracker:
        return self.RunTracker(self, run_id, account_id, mode)

    def _record_run(self, run: RunMetrics):
        with self._lock:
            m = self.metrics
            m.total_runs += 1
            m.runs_by_mode[run.mode] += 1
            m.credits_consumed += run.credits_consumed

            if run.error:
                m.failed_runs += 1
            elif run.outcome == OUTCOME_COMPLETED:
                m.completed += 1
            elif run.outcome == OUTCOME_FALLBACK:
                m.fallbacks += 1
            elif run.outcome == OUTCOME_CLARIFIED:
                m.clarifications += 1
            elif run.outcome == OUTCOME_QUOTA_DENIED:
                m.quota_denials += 1
            elif run.outcome == OUTCOME_MEMORY:
                m.memory_instructions += 1
            elif run.outcome == OUTCOME_AWAITING_APPROVAL:
                m.approvals_requested += 1

            m.total_latency_ms += run.latency_ms
            m.latencies.append(run.latency_ms)
            if len(m.latencies) > self._max_history:
                m.latencies = m.latencies[-self._max_history:]

            self._history.append(run)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history:]

    def _record_error(self, error_type: str):
        with self._lock:
            self.metrics.errors_by_type[error_type] += 1

    def record_approval(self, approved: bool):
        with self._lock:
            if approved:
                self.metrics.approvals_approved += 1
            else:
                self.metrics.approvals_rejected += 1

    def record_stale_resolution(self):
        with self._lock:
            self.metrics.stale_resolutions += 1

    def get_metrics(self) -> CopilotMetrics:
        return self.metrics

    def get_metrics_dict(self) -> dict:
        with self._lock:
            return self.metrics.to_dict()

    def get_recent_runs(self, limit: int = 10) -> list[RunMetrics]:
        return self._history[-limit:]

    def get_uptime(self) -> timedelta:
        return datetime.now() - self._start_time


# Global metrics collector instance
_collector = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector
