"""
Tests for the per-batch usage telemetry log.
"""

import json
import threading
from datetime import datetime

import pytest

from narrative_generation.core.enums import AttemptOutcome, TaskState
from narrative_generation.core.models import StateTransition, UsageLogRecord
from narrative_generation.telemetry.usage_log import UsageLog


def record(task_id="memory", model_id="model-a", outcome=AttemptOutcome.SUCCESS, **fields):
    defaults = dict(
        timestamp=datetime(2025, 1, 1, 12, 0, 0),
        task_id=task_id,
        domain_key=task_id.split("-")[0],
        tier="domain",
        model_id=model_id,
        attempt_sequence=1,
        outcome=outcome,
        tokens_in=100,
        tokens_out=50,
        duration_ms=200.0,
    )
    defaults.update(fields)
    return UsageLogRecord(**defaults)


class TestAppendAndQuery:
    """Append-only records with filtered listing."""

    def test_records_filtered_by_task_and_model(self):
        log = UsageLog()
        log.append(record("memory", "model-a"))
        log.append(record("memory", "model-b"))
        log.append(record("executive", "model-a"))

        assert len(log.records()) == 3
        assert len(log.records(task_id="memory")) == 2
        assert len(log.records(model_id="model-a")) == 2
        assert len(log.records(task_id="memory", model_id="model-b")) == 1

    def test_transitions_are_kept_separately(self):
        log = UsageLog()
        log.record_transition(
            StateTransition("memory", TaskState.PENDING, TaskState.ATTEMPTING, "model-a", 1)
        )

        assert len(log) == 0
        assert log.transitions("memory")[0].to_state == TaskState.ATTEMPTING

    def test_concurrent_appends_are_neither_lost_nor_duplicated(self):
        log = UsageLog()

        def worker(n):
            for i in range(250):
                log.append(record(f"task-{n}", attempt_sequence=i + 1))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(log) == 2000
        for n in range(8):
            sequences = [r.attempt_sequence for r in log.records(task_id=f"task-{n}")]
            assert sequences == list(range(1, 251))


class TestSummary:
    """Aggregates by model and domain."""

    def test_totals_and_groups(self):
        log = UsageLog()
        log.append(record("memory", "model-a", quality_score=90.0, validation_passed=True))
        log.append(record("memory", "model-b", AttemptOutcome.ERROR, tokens_out=0))
        log.append(record("executive", "model-a", AttemptOutcome.TIMEOUT, duration_ms=800.0))

        summary = log.summary()

        assert summary.total_calls == 3
        assert summary.successful_calls == 1
        assert summary.failed_calls == 2
        assert summary.timed_out_calls == 1
        assert summary.total_tokens == 150 + 100 + 150
        assert summary.mean_latency_ms == pytest.approx(400.0)
        assert summary.validated_calls == 1
        assert summary.passed_validation == 1
        assert summary.models_used == ["model-a", "model-b"]
        assert summary.domains_processed == ["executive", "memory"]
        assert summary.by_model["model-a"].calls == 2
        assert summary.by_domain["memory"].failed_calls == 1

    def test_empty_summary(self):
        summary = UsageLog().summary()

        assert summary.total_calls == 0
        assert summary.mean_latency_ms == 0.0
        assert summary.to_dict()["by_model"] == {}


class TestLifecycle:
    """File sink, closing and reloading."""

    def test_jsonl_sink_and_reload(self, tmp_path):
        path = tmp_path / "logs" / "usage.jsonl"
        with UsageLog(path) as log:
            log.append(record("memory"))
            log.record_transition(
                StateTransition("memory", TaskState.PENDING, TaskState.ATTEMPTING)
            )
            log.append(record("executive", outcome=AttemptOutcome.ERROR))

        lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert [line["kind"] for line in lines] == ["attempt", "transition", "attempt"]

        reloaded = UsageLog.load(path)
        assert len(reloaded) == 2
        assert reloaded.closed is True
        assert reloaded.records("executive")[0].outcome == AttemptOutcome.ERROR

    def test_append_after_close_raises(self):
        log = UsageLog()
        log.append(record())
        log.close()

        with pytest.raises(RuntimeError):
            log.append(record())
        assert len(log.records()) == 1
