"""
Tests for the per-task generation state machine.
"""

import pytest

from narrative_generation.cache.narrative_cache import InMemoryNarrativeCache
from narrative_generation.core.enums import (
    AttemptOutcome,
    ExhaustionPolicy,
    ModelTier,
    TaskOutcome,
    TaskState,
)
from narrative_generation.core.exceptions import BackendUnavailableError
from narrative_generation.core.models import ModelDescriptor
from narrative_generation.selection.model_registry import ModelRegistry
from narrative_generation.validation.narrative_validator import NarrativeValidator

from tests.conftest import FakeBackend, ScriptedValidator, make_registry, make_task


ERROR = AttemptOutcome.ERROR
TIMEOUT = AttemptOutcome.TIMEOUT


def transition_states(usage_log, task_id):
    return [t.to_state for t in usage_log.transitions(task_id)]


class TestFallbackAndRetry:
    """Retry the same model, then fall back in priority order."""

    def test_errors_then_fallback_accepts_on_second_model(self, build_orchestrator, usage_log):
        backend = FakeBackend(
            available={"model-a", "model-b"},
            script={"model-a": [ERROR, ERROR], "model-b": ["narrative from b"]},
        )
        validator = ScriptedValidator({"narrative from b": 85})
        orchestrator = build_orchestrator(backend, validator, max_retries=2)

        result = orchestrator.run(make_task())

        assert result.outcome == TaskOutcome.ACCEPTED
        assert result.final_state == TaskState.ACCEPTED
        assert result.model_id == "model-b"
        assert result.text == "narrative from b"
        assert result.attempt_count == 3
        assert [a.model_id for a in result.attempts] == ["model-a", "model-a", "model-b"]
        states = transition_states(usage_log, "memory")
        assert states.count(TaskState.RETRY_SAME_MODEL) == 1
        assert states.count(TaskState.FALLBACK_NEXT_MODEL) == 1
        assert states[-1] == TaskState.ACCEPTED

    def test_first_candidate_passing_records_no_fallback(self, build_orchestrator, usage_log):
        backend = FakeBackend(available={"model-a", "model-b"}, script={"model-a": ["good"]})
        orchestrator = build_orchestrator(backend, ScriptedValidator({"good": 95}))

        result = orchestrator.run(make_task())

        assert result.attempt_count == 1
        states = transition_states(usage_log, "memory")
        assert TaskState.FALLBACK_NEXT_MODEL not in states
        assert TaskState.RETRY_SAME_MODEL not in states
        assert backend.calls_to("model-b") == 0

    def test_validation_failure_is_retried_like_an_error(self, build_orchestrator):
        backend = FakeBackend(available={"model-a"}, script={"model-a": ["weak", "strong"]})
        registry = make_registry(domain=["model-a"])
        orchestrator = build_orchestrator(
            backend, ScriptedValidator({"weak": 40, "strong": 90}), registry=registry
        )

        result = orchestrator.run(make_task())

        assert result.outcome == TaskOutcome.ACCEPTED
        assert result.text == "strong"
        assert result.attempt_count == 2

    def test_attempts_never_exceed_candidates_times_retries(self, build_orchestrator):
        backend = FakeBackend(
            available={"model-a", "model-b"},
            script={"model-a": [ERROR], "model-b": [TIMEOUT]},
        )
        orchestrator = build_orchestrator(backend, ScriptedValidator({}), max_retries=3)

        result = orchestrator.run(make_task())

        assert result.attempt_count == 2 * 3
        assert len(backend.calls) == 6

    def test_retry_delay_sleeps_only_between_same_model_retries(self, build_orchestrator):
        sleeps = []
        backend = FakeBackend(
            available={"model-a", "model-b"},
            script={"model-a": [ERROR], "model-b": [ERROR]},
        )
        orchestrator = build_orchestrator(
            backend, ScriptedValidator({}), retry_delay=5.0, sleep=sleeps.append
        )

        orchestrator.run(make_task())

        # One retry per model; falling back does not wait
        assert sleeps == [5.0, 5.0]


class TestExhaustion:
    """Behavior once every candidate and retry is used up."""

    def test_degrade_returns_best_attempt_flagged(self, build_orchestrator, usage_log):
        backend = FakeBackend(
            available={"model-a", "model-b"},
            script={"model-a": ["weak a"], "model-b": ["weak b"]},
        )
        validator = ScriptedValidator({"weak a": 50, "weak b": 50})
        orchestrator = build_orchestrator(backend, validator)

        result = orchestrator.run(make_task())

        assert result.outcome == TaskOutcome.FLAGGED
        assert result.final_state == TaskState.EXHAUSTED
        assert result.low_confidence is True
        assert result.attempt_count == 4
        # Equal scores: the later attempt wins
        assert result.text == "weak b"
        assert result.quality_score == 50

    def test_degrade_picks_highest_score_across_models(self, build_orchestrator):
        backend = FakeBackend(
            available={"model-a", "model-b"},
            script={"model-a": ["a1", "a2"], "model-b": ["b1", "b2"]},
        )
        validator = ScriptedValidator({"a1": 30, "a2": 65, "b1": 50, "b2": 20})
        orchestrator = build_orchestrator(backend, validator)

        result = orchestrator.run(make_task())

        assert result.text == "a2"
        assert result.model_id == "model-a"

    def test_flagged_result_is_not_cached(self, build_orchestrator):
        cache = InMemoryNarrativeCache()
        backend = FakeBackend(available={"model-a", "model-b"}, script={"model-a": ["weak"]})
        orchestrator = build_orchestrator(backend, ScriptedValidator({"weak": 50}), cache=cache)

        orchestrator.run(make_task())

        assert len(cache) == 0

    def test_hard_fail_policy_returns_no_text(self, build_orchestrator):
        backend = FakeBackend(
            available={"model-a", "model-b"},
            script={"model-a": ["weak"], "model-b": ["weak"]},
        )
        orchestrator = build_orchestrator(
            backend,
            ScriptedValidator({"weak": 50}),
            exhaustion_policy=ExhaustionPolicy.HARD_FAIL,
        )

        result = orchestrator.run(make_task())

        assert result.outcome == TaskOutcome.VALIDATION_FAILED
        assert result.final_state == TaskState.EXHAUSTED
        assert result.text is None
        assert result.validation.quality_score == 50
        assert "rejected by validator" in result.error

    def test_no_output_at_all_fails_without_flagged_text(self, build_orchestrator, usage_log):
        backend = FakeBackend(
            available={"model-a", "model-b"},
            script={"model-a": [ERROR], "model-b": [TIMEOUT]},
        )
        orchestrator = build_orchestrator(backend, ScriptedValidator({}))

        result = orchestrator.run(make_task())

        assert result.outcome == TaskOutcome.ALL_MODELS_FAILED
        assert result.final_state == TaskState.FAILED
        assert result.text is None
        assert result.attempt_count == 4
        outcomes = [r.outcome for r in usage_log.records("memory")]
        assert outcomes == [ERROR, ERROR, TIMEOUT, TIMEOUT]

    def test_empty_success_counts_as_no_output(self, build_orchestrator):
        backend = FakeBackend(available={"model-a"}, script={"model-a": ["   "]})
        orchestrator = build_orchestrator(
            backend, ScriptedValidator({}), registry=make_registry(domain=["model-a"])
        )

        result = orchestrator.run(make_task())

        assert result.outcome == TaskOutcome.ALL_MODELS_FAILED


class TestTimeBudget:
    """The task budget spans every retry and fallback."""

    def test_budget_caps_attempts_and_shrinks_timeout(self, build_orchestrator):
        now = [0.0]

        def responder(model_id, prompt):
            now[0] += 400.0
            return ERROR

        backend = FakeBackend(available={"model-a", "model-b"}, responder=responder)
        orchestrator = build_orchestrator(
            backend,
            ScriptedValidator({}),
            call_timeout=300.0,
            task_time_budget=600.0,
            clock=lambda: now[0],
        )

        result = orchestrator.run(make_task())

        assert result.attempt_count == 2
        assert result.outcome == TaskOutcome.ALL_MODELS_FAILED
        assert backend.calls[0][2].timeout_seconds == 300.0
        assert backend.calls[1][2].timeout_seconds == 200.0

    def test_budget_exhaustion_still_degrades_with_output(self, build_orchestrator):
        now = [0.0]

        def responder(model_id, prompt):
            now[0] += 700.0
            return "weak"

        backend = FakeBackend(available={"model-a", "model-b"}, responder=responder)
        orchestrator = build_orchestrator(
            backend, ScriptedValidator({"weak": 55}), clock=lambda: now[0]
        )

        result = orchestrator.run(make_task())

        assert result.attempt_count == 1
        assert result.outcome == TaskOutcome.FLAGGED


class TestCandidates:
    """Availability and context filtering."""

    def test_no_available_model_fails_without_calls(self, build_orchestrator, usage_log):
        backend = FakeBackend(available=set())
        orchestrator = build_orchestrator(backend, ScriptedValidator({}))

        result = orchestrator.run(make_task())

        assert result.outcome == TaskOutcome.NO_MODEL_AVAILABLE
        assert result.final_state == TaskState.FAILED
        assert backend.calls == []
        assert len(usage_log) == 0

    def test_missing_tier_does_not_affect_other_tiers(self, build_orchestrator):
        backend = FakeBackend(available={"model-a"}, script={"model-a": ["good"]})
        orchestrator = build_orchestrator(backend, ScriptedValidator({"good": 90}))

        synthesis = orchestrator.run(make_task("sirf", tier=ModelTier.SYNTHESIS))
        domain = orchestrator.run(make_task("memory"))

        assert synthesis.outcome == TaskOutcome.NO_MODEL_AVAILABLE
        assert domain.outcome == TaskOutcome.ACCEPTED

    def test_small_context_models_are_skipped(self, build_orchestrator):
        registry = ModelRegistry(
            [
                ModelDescriptor("tiny", ModelTier.DOMAIN, priority=0, context_limit=64),
                ModelDescriptor("roomy", ModelTier.DOMAIN, priority=1, context_limit=32768),
            ]
        )
        backend = FakeBackend(available={"tiny", "roomy"}, script={"roomy": ["good"]})
        orchestrator = build_orchestrator(
            backend, ScriptedValidator({"good": 90}), registry=registry
        )

        result = orchestrator.run(make_task())

        assert result.model_id == "roomy"
        assert backend.calls_to("tiny") == 0


class TestBackendOutage:
    """An unreachable backend ends the task but leaves a complete trail."""

    def test_outage_attempt_is_logged_before_raising(self, build_orchestrator, usage_log):
        outage = BackendUnavailableError("connection refused", provider="fake")
        backend = FakeBackend(available={"model-a"}, script={"model-a": [outage]})
        orchestrator = build_orchestrator(backend, ScriptedValidator({}))

        with pytest.raises(BackendUnavailableError):
            orchestrator.run(make_task())

        (record,) = usage_log.records("memory")
        assert record.outcome == ERROR
        assert record.model_id == "model-a"
        states = transition_states(usage_log, "memory")
        assert states[-2:] == [TaskState.ATTEMPTING, TaskState.FAILED]


class TestCacheInteraction:
    """Accepted narratives are cached and reused."""

    def test_second_run_is_served_from_cache(self, build_orchestrator, usage_log):
        cache = InMemoryNarrativeCache()
        backend = FakeBackend(available={"model-a", "model-b"}, script={"model-a": ["good"]})
        orchestrator = build_orchestrator(backend, ScriptedValidator({"good": 90}), cache=cache)

        first = orchestrator.run(make_task())
        second = orchestrator.run(make_task())

        assert first.from_cache is False
        assert second.from_cache is True
        assert second.text == "good"
        assert second.attempt_count == 0
        assert len(backend.calls) == 1
        assert len(usage_log) == 1

    def test_changed_input_misses_cache(self, build_orchestrator):
        backend = FakeBackend(available={"model-a", "model-b"}, script={"model-a": ["good"]})
        orchestrator = build_orchestrator(backend, ScriptedValidator({"good": 90}))

        orchestrator.run(make_task(input_text="Memory scores: average."))
        orchestrator.run(make_task(input_text="Memory scores: low average."))

        assert len(backend.calls) == 2


class TestRealValidator:
    """End to end with the rule-based validator."""

    def test_reasoning_block_is_stripped_and_accepted(self, build_orchestrator, good_narrative):
        backend = FakeBackend(
            available={"model-a"},
            script={"model-a": [f"<think>plan the paragraph</think>\n{good_narrative}"]},
        )
        orchestrator = build_orchestrator(
            backend, NarrativeValidator(threshold=70), registry=make_registry(domain=["model-a"])
        )

        result = orchestrator.run(make_task())

        assert result.outcome == TaskOutcome.ACCEPTED
        assert "<think>" not in result.text
        assert result.quality_score >= 70

    def test_telemetry_matches_attempts(self, build_orchestrator, usage_log, good_narrative):
        backend = FakeBackend(
            available={"model-a", "model-b"},
            script={"model-a": ["too short.", ERROR], "model-b": [good_narrative]},
        )
        orchestrator = build_orchestrator(backend, NarrativeValidator())

        result = orchestrator.run(make_task())

        records = usage_log.records("memory")
        assert len(records) == result.attempt_count == 3
        assert [r.attempt_sequence for r in records] == [1, 2, 3]
        assert records[0].validation_passed is False
        assert records[1].validation_passed is None
        assert records[2].validation_passed is True
