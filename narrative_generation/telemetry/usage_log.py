"""
Usage Log - Per-Batch Telemetry of Generation Attempts

Every backend call the orchestrator makes is recorded here, together with
every state machine transition. The log is an explicitly owned service:
the pipeline creates one per batch run, injects it into the orchestrator,
and closes it when the batch ends.

Record Types:
    UsageLogRecord   → one per attempt (model, outcome, tokens, latency, score)
    StateTransition  → one per task state change

Persistence:
    Optional JSONL sink. Each record is written as one line at append
    time, tagged with ``"kind": "attempt"`` or ``"kind": "transition"``,
    so a crash mid-batch still leaves a complete prefix on disk.

Usage:
    with UsageLog("logs/usage.jsonl") as usage_log:
        orchestrator = GenerationOrchestrator(..., usage_log=usage_log)
        ...
    print(usage_log.summary().total_calls)
"""

import json
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from narrative_generation.core.enums import AttemptOutcome
from narrative_generation.core.models import StateTransition, UsageLogRecord


# =============================================================================
# STAGE 1: SUMMARY MODEL
# =============================================================================


@dataclass
class UsageGroup:
    """Aggregate counters for one model or one domain."""

    calls: int = 0
    successful_calls: int = 0
    total_tokens: int = 0
    total_duration_ms: float = 0.0

    @property
    def failed_calls(self) -> int:
        return self.calls - self.successful_calls

    @property
    def mean_latency_ms(self) -> float:
        return self.total_duration_ms / self.calls if self.calls else 0.0

    def add(self, record: UsageLogRecord) -> None:
        self.calls += 1
        self.successful_calls += 1 if record.success else 0
        self.total_tokens += record.total_tokens
        self.total_duration_ms += record.duration_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calls": self.calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "total_tokens": self.total_tokens,
            "mean_latency_ms": round(self.mean_latency_ms, 2),
        }


@dataclass
class UsageSummary:
    """Aggregate view over all attempt records of a log."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    timed_out_calls: int = 0
    total_tokens: int = 0
    total_duration_ms: float = 0.0
    validated_calls: int = 0
    passed_validation: int = 0
    by_model: Dict[str, UsageGroup] = field(default_factory=dict)
    by_domain: Dict[str, UsageGroup] = field(default_factory=dict)

    @property
    def mean_latency_ms(self) -> float:
        return self.total_duration_ms / self.total_calls if self.total_calls else 0.0

    @property
    def models_used(self) -> List[str]:
        return sorted(self.by_model)

    @property
    def domains_processed(self) -> List[str]:
        return sorted(self.by_domain)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "timed_out_calls": self.timed_out_calls,
            "total_tokens": self.total_tokens,
            "total_time_minutes": round(self.total_duration_ms / 60000, 2),
            "mean_latency_ms": round(self.mean_latency_ms, 2),
            "validated_calls": self.validated_calls,
            "passed_validation": self.passed_validation,
            "by_model": {k: v.to_dict() for k, v in self.by_model.items()},
            "by_domain": {k: v.to_dict() for k, v in self.by_domain.items()},
        }


# =============================================================================
# STAGE 2: USAGE LOG SERVICE
# =============================================================================


class UsageLog:
    """
    Append-only, thread-safe telemetry log for one batch run.

    What it does:
        Stores attempt records and state transitions in memory, optionally
        mirroring each one to a JSONL file, and answers summary queries.

    Why it exists:
        1. Cost and latency accounting per model and per domain
        2. Audit trail of every retry and fallback decision
        3. Exact attempt counts under concurrent workers

    Thread Safety:
        All appends and reads take one lock, so the number of attempt
        records after N attempts is exactly N regardless of how many
        workers append concurrently.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        """
        Initialize the log.

        Args:
            path: JSONL sink; None keeps records in memory only
        """
        self._records: List[UsageLogRecord] = []
        self._transitions: List[StateTransition] = []
        self._lock = threading.Lock()
        self._path = Path(path) if path else None
        self._sink = None
        self._closed = False

        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._sink = open(self._path, "a", encoding="utf-8")

        logger.debug(f"UsageLog opened | Sink: {self._path or 'memory'}")

    # =========================================================================
    # STAGE 2.1: APPEND API
    # =========================================================================

    def append(self, record: UsageLogRecord) -> None:
        """Record one generation attempt."""
        with self._lock:
            self._ensure_open()
            self._records.append(record)
            self._write_line({"kind": "attempt", **record.to_dict()})

    def record_transition(self, transition: StateTransition) -> None:
        """Record one state machine transition."""
        with self._lock:
            self._ensure_open()
            self._transitions.append(transition)
            self._write_line({"kind": "transition", **transition.to_dict()})

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("UsageLog is closed")

    def _write_line(self, payload: Dict[str, Any]) -> None:
        if self._sink is not None:
            self._sink.write(json.dumps(payload, ensure_ascii=False) + "\n")

    # =========================================================================
    # STAGE 2.2: QUERY API
    # =========================================================================

    def records(
        self, task_id: Optional[str] = None, model_id: Optional[str] = None
    ) -> List[UsageLogRecord]:
        """Attempt records in append order, optionally filtered."""
        with self._lock:
            snapshot = list(self._records)
        return [
            r
            for r in snapshot
            if (task_id is None or r.task_id == task_id)
            and (model_id is None or r.model_id == model_id)
        ]

    def transitions(self, task_id: Optional[str] = None) -> List[StateTransition]:
        with self._lock:
            snapshot = list(self._transitions)
        return [t for t in snapshot if task_id is None or t.task_id == task_id]

    def summary(self) -> UsageSummary:
        """Totals plus per-model and per-domain aggregates."""
        summary = UsageSummary()
        by_model: Dict[str, UsageGroup] = defaultdict(UsageGroup)
        by_domain: Dict[str, UsageGroup] = defaultdict(UsageGroup)

        for record in self.records():
            summary.total_calls += 1
            if record.success:
                summary.successful_calls += 1
            else:
                summary.failed_calls += 1
            if record.outcome == AttemptOutcome.TIMEOUT:
                summary.timed_out_calls += 1
            summary.total_tokens += record.total_tokens
            summary.total_duration_ms += record.duration_ms
            if record.validation_passed is not None:
                summary.validated_calls += 1
                summary.passed_validation += 1 if record.validation_passed else 0
            by_model[record.model_id].add(record)
            by_domain[record.domain_key].add(record)

        summary.by_model = dict(by_model)
        summary.by_domain = dict(by_domain)
        return summary

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # =========================================================================
    # STAGE 2.3: LIFECYCLE
    # =========================================================================

    def flush(self) -> None:
        with self._lock:
            if self._sink is not None:
                self._sink.flush()

    def close(self) -> None:
        """Flush and close the sink. Records stay queryable."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._sink is not None:
                self._sink.close()
                self._sink = None

        logger.debug(
            f"UsageLog closed | Attempts: {len(self._records)} | "
            f"Transitions: {len(self._transitions)}"
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def __enter__(self) -> "UsageLog":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # =========================================================================
    # STAGE 3: LOADING
    # =========================================================================

    @classmethod
    def load(cls, path: Union[str, Path]) -> "UsageLog":
        """
        Read a JSONL log back into a closed, query-only UsageLog.

        Transition lines are skipped; only attempt records are restored.
        """
        usage_log = cls()
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                payload = json.loads(line)
                if payload.get("kind") != "attempt":
                    continue
                usage_log._records.append(UsageLogRecord.from_dict(payload))

        usage_log.close()
        logger.info(f"UsageLog loaded | Path: {path} | Attempts: {len(usage_log)}")
        return usage_log
