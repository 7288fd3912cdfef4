"""
Generation Orchestrator - Retry, Fallback and Quality Gating per Task

This module runs one GenerationTask to a terminal result. It is the single
place where the retry / fallback / validation policy lives.

State Machine:
    PENDING → ATTEMPTING(model, n) → VALIDATING → ACCEPTED
                                                → RETRY_SAME_MODEL    → ATTEMPTING
                                                → FALLBACK_NEXT_MODEL → ATTEMPTING
                                                → EXHAUSTED
    A failed call (error / timeout / empty) skips VALIDATING and goes
    straight to RETRY_SAME_MODEL or FALLBACK_NEXT_MODEL.

Algorithm:
    0. Cache lookup over every available candidate, in priority order
    1. No available candidate → NO_MODEL_AVAILABLE
    2. For each candidate, up to ``max_retries`` attempts; a validation
       failure counts as a failed attempt
    3. First passing attempt → ACCEPTED, written to the cache
    4. Candidates exhausted:
         some attempt produced text → EXHAUSTED, then per policy
             degrade   → best-scoring text, flagged low-confidence
             hard_fail → validation_failed, no text
         nothing produced text     → ALL_MODELS_FAILED

Why One Canonical Algorithm:
    Every tier, backend and task kind goes through this same loop, so
    retry counts, fallback order and thresholds come from configuration
    only.

Pipeline Position:
    Scheduler → [Orchestrator] → BackendAdapter → Validator → Cache
                ^^^^^^^^^^^^^^
                You are here
"""

import time
from datetime import datetime
from typing import Callable, List, Optional

from loguru import logger

from narrative_generation.cache.narrative_cache import NarrativeCacheProtocol, make_cache_key
from narrative_generation.clients.llm_client import BackendAdapterProtocol
from narrative_generation.core.enums import (
    AttemptOutcome,
    ExhaustionPolicy,
    TaskOutcome,
    TaskState,
)
from narrative_generation.core.exceptions import (
    AllModelsFailedError,
    BackendUnavailableError,
    NoModelAvailableError,
    ValidationFailure,
)
from narrative_generation.core.models import (
    CacheEntry,
    GenerationAttempt,
    GenerationParams,
    GenerationPrompt,
    GenerationTask,
    ModelDescriptor,
    StateTransition,
    TaskResult,
    UsageLogRecord,
    ValidationResult,
)
from narrative_generation.core.text_utils import estimate_tokens, strip_think_blocks
from narrative_generation.generation.prompt_builder import PromptBuilder
from narrative_generation.selection.model_selector import ModelSelector
from narrative_generation.telemetry.usage_log import UsageLog
from narrative_generation.validation.narrative_validator import NarrativeValidator


# =============================================================================
# STAGE 1: PER-TASK RUN STATE
# =============================================================================


class _TaskRun:
    """
    Mutable state of one task while the orchestrator works on it.

    Every state change goes through ``move_to`` so that the telemetry log
    sees each transition before the next step runs.
    """

    def __init__(self, task: GenerationTask, usage_log: UsageLog):
        self.task = task
        self.state = TaskState.PENDING
        self.attempts: List[GenerationAttempt] = []
        self.best_attempt: Optional[GenerationAttempt] = None
        self.best_validation: Optional[ValidationResult] = None
        self._usage_log = usage_log

    def move_to(
        self,
        state: TaskState,
        model_id: Optional[str] = None,
        sequence: Optional[int] = None,
        detail: str = "",
    ) -> None:
        self._usage_log.record_transition(
            StateTransition(
                task_id=self.task.task_id,
                from_state=self.state,
                to_state=state,
                model_id=model_id,
                attempt_sequence=sequence,
                detail=detail,
            )
        )
        self.state = state

    def record_attempt(
        self, attempt: GenerationAttempt, validation: Optional[ValidationResult] = None
    ) -> None:
        self.attempts.append(attempt)
        self._usage_log.append(UsageLogRecord.from_attempt(attempt, self.task, validation))

        # Ties go to the later attempt
        if validation is not None and (
            self.best_validation is None
            or validation.quality_score >= self.best_validation.quality_score
        ):
            self.best_attempt = attempt
            self.best_validation = validation

    @property
    def next_sequence(self) -> int:
        return len(self.attempts) + 1


# =============================================================================
# STAGE 2: ORCHESTRATOR
# =============================================================================


class GenerationOrchestrator:
    """
    Runs the per-task generation state machine.

    What it does:
        Takes one task, finds its candidate models, calls the backend,
        validates, retries, falls back and finally returns exactly one
        TaskResult. Transient failures never escape as exceptions.

    Why it exists:
        1. One implementation of the retry/fallback/validation policy
        2. Every attempt and transition lands in the telemetry log
        3. Stateless between tasks, so one instance serves all workers

    Error Propagation:
        BackendUnavailableError is the only domain exception that escapes
        ``run``. The failed attempt is logged first, then the scheduler
        aborts the batch on it.

    Example:
        >>> orchestrator = GenerationOrchestrator(
        ...     adapter, selector, validator, cache, prompt_builder, usage_log
        ... )
        >>> result = orchestrator.run(task)
        >>> result.outcome
        <TaskOutcome.ACCEPTED: 'accepted'>
    """

    def __init__(
        self,
        adapter: BackendAdapterProtocol,
        selector: ModelSelector,
        validator: NarrativeValidator,
        cache: NarrativeCacheProtocol,
        prompt_builder: PromptBuilder,
        usage_log: UsageLog,
        max_retries: int = 2,
        call_timeout: float = 120.0,
        task_time_budget: float = 600.0,
        exhaustion_policy: ExhaustionPolicy = ExhaustionPolicy.DEGRADE,
        retry_delay: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            adapter: Backend adapter executing calls
            selector: Availability-filtered model candidates
            validator: Quality gate
            cache: Narrative cache (insert-if-absent)
            prompt_builder: Builds prompts from task templates
            usage_log: Per-batch telemetry log
            max_retries: Attempts per candidate before falling back
            call_timeout: Hard timeout of a single backend call (seconds)
            task_time_budget: Wall-clock budget across all attempts (seconds)
            exhaustion_policy: Degrade to flagged text or hard-fail
            retry_delay: Pause before retrying the same model (seconds)
            clock / sleep: Injectable time functions
        """
        self._adapter = adapter
        self._selector = selector
        self._validator = validator
        self._cache = cache
        self._prompt_builder = prompt_builder
        self._usage_log = usage_log
        self._max_retries = max(1, max_retries)
        self._call_timeout = call_timeout
        self._task_time_budget = task_time_budget
        self._exhaustion_policy = exhaustion_policy
        self._retry_delay = retry_delay
        self._clock = clock
        self._sleep = sleep

        logger.debug(
            f"GenerationOrchestrator initialized | Max retries: {self._max_retries} | "
            f"Call timeout: {call_timeout}s | Task budget: {task_time_budget}s | "
            f"Policy: {exhaustion_policy.value}"
        )

    # =========================================================================
    # STAGE 3: MAIN ENTRY POINT
    # =========================================================================

    def run(self, task: GenerationTask) -> TaskResult:
        """
        Run a task to its terminal result.

        Raises:
            BackendUnavailableError: If the backend cannot be reached at all
        """
        run = _TaskRun(task, self._usage_log)
        temperature = task.effective_temperature

        # =====================================================================
        # STAGE 3.1: CANDIDATES
        # =====================================================================
        candidates = self._selector.available_candidates(task.tier)
        if not candidates:
            error = NoModelAvailableError(
                task.tier.value,
                [m.model_id for m in self._selector.registry.candidates(task.tier)],
            )
            run.move_to(TaskState.FAILED, detail=error.message)
            logger.error(f"No model available | Task: {task.task_id} | Tier: {task.tier.value}")
            return self._result(run, TaskOutcome.NO_MODEL_AVAILABLE, error=str(error))

        # =====================================================================
        # STAGE 3.2: CACHE LOOKUP
        # =====================================================================
        for model in candidates:
            key = make_cache_key(
                task.input_text, model.model_id, task.prompt_template_id, temperature
            )
            entry = self._cache.get(key)
            if entry is not None:
                run.move_to(TaskState.ACCEPTED, model_id=entry.model_id, detail="cache hit")
                logger.info(
                    f"Cache hit | Task: {task.task_id} | Model: {entry.model_id} | "
                    f"Score: {entry.validation.quality_score:.0f}"
                )
                return self._result(
                    run,
                    TaskOutcome.ACCEPTED,
                    text=entry.text,
                    model_id=entry.model_id,
                    validation=entry.validation,
                    from_cache=True,
                )

        # =====================================================================
        # STAGE 3.3: ATTEMPT LOOP
        # =====================================================================
        prompt = self._prompt_builder.build(task)
        candidates = self._fit_to_context(task, prompt, candidates)
        deadline = self._clock() + self._task_time_budget
        budget_exhausted = False

        for index, model in enumerate(candidates):
            for retry in range(1, self._max_retries + 1):
                if retry > 1 and self._retry_delay > 0:
                    self._sleep(min(self._retry_delay, max(0.0, deadline - self._clock())))

                remaining = deadline - self._clock()
                if remaining <= 0:
                    budget_exhausted = True
                    break

                timeout = min(self._call_timeout, remaining)
                accepted = self._attempt(run, model, prompt, temperature, timeout)
                if accepted is not None:
                    return accepted

                # Decide the next step; the last attempt of the last candidate ends the loop
                if retry < self._max_retries:
                    run.move_to(TaskState.RETRY_SAME_MODEL, model_id=model.model_id)
                elif index < len(candidates) - 1:
                    next_model = candidates[index + 1].model_id
                    run.move_to(
                        TaskState.FALLBACK_NEXT_MODEL,
                        model_id=model.model_id,
                        detail=f"next: {next_model}",
                    )
                    logger.warning(
                        f"Falling back | Task: {task.task_id} | From: {model.model_id} | "
                        f"To: {next_model}"
                    )

            if budget_exhausted:
                break

        # =====================================================================
        # STAGE 3.4: EXHAUSTION
        # =====================================================================
        return self._exhaust(run, budget_exhausted)

    # =========================================================================
    # STAGE 4: SINGLE ATTEMPT
    # =========================================================================

    def _attempt(
        self,
        run: _TaskRun,
        model: ModelDescriptor,
        prompt: GenerationPrompt,
        temperature: float,
        timeout: float,
    ) -> Optional[TaskResult]:
        """Make one call; returns the accepted result, or None to continue."""
        task = run.task
        sequence = run.next_sequence
        run.move_to(TaskState.ATTEMPTING, model_id=model.model_id, sequence=sequence)

        params = GenerationParams(
            temperature=temperature,
            max_output_tokens=task.max_output_tokens,
            timeout_seconds=timeout,
        )
        started_at = datetime.now()
        try:
            response = self._adapter.generate(model.model_id, prompt, params)
        except BackendUnavailableError as e:
            run.record_attempt(
                GenerationAttempt(
                    attempt_id=f"{task.task_id}#{sequence}",
                    task_id=task.task_id,
                    model_id=model.model_id,
                    sequence=sequence,
                    started_at=started_at,
                    ended_at=datetime.now(),
                    outcome=AttemptOutcome.ERROR,
                    raw_text="",
                    tokens_in=estimate_tokens(prompt.full_text),
                    tokens_out=0,
                    error_message=e.message,
                )
            )
            run.move_to(TaskState.FAILED, model_id=model.model_id, detail=e.message)
            raise
        ended_at = datetime.now()

        attempt = GenerationAttempt(
            attempt_id=f"{task.task_id}#{sequence}",
            task_id=task.task_id,
            model_id=model.model_id,
            sequence=sequence,
            started_at=started_at,
            ended_at=ended_at,
            outcome=response.status,
            raw_text=strip_think_blocks(response.text) if response.succeeded else "",
            tokens_in=response.tokens_in,
            tokens_out=response.tokens_out,
            error_message=response.error_message,
        )

        if not attempt.produced_output:
            run.record_attempt(attempt)
            logger.warning(
                f"Attempt failed | Task: {task.task_id} | Model: {model.model_id} | "
                f"Attempt: {sequence} | Outcome: {attempt.outcome.value} | "
                f"Error: {attempt.error_message or 'empty output'}"
            )
            return None

        run.move_to(TaskState.VALIDATING, model_id=model.model_id, sequence=sequence)
        validation = self._validator.validate(attempt.raw_text, task, attempt.attempt_id)
        run.record_attempt(attempt, validation)

        if not validation.passed:
            logger.info(
                f"Attempt rejected | Task: {task.task_id} | Model: {model.model_id} | "
                f"Attempt: {sequence} | Score: {validation.quality_score:.0f} | "
                f"Issues: {len(validation.issues)}"
            )
            return None

        run.move_to(
            TaskState.ACCEPTED,
            model_id=model.model_id,
            sequence=sequence,
            detail=f"score {validation.quality_score:.0f}",
        )
        return self._accept(run, attempt, validation, temperature)

    def _accept(
        self,
        run: _TaskRun,
        attempt: GenerationAttempt,
        validation: ValidationResult,
        temperature: float,
    ) -> TaskResult:
        """Write the accepted narrative to the cache; the first writer wins."""
        task = run.task
        key = make_cache_key(
            task.input_text, attempt.model_id, task.prompt_template_id, temperature
        )
        entry = CacheEntry(
            key=key,
            text=attempt.raw_text,
            validation=validation,
            model_id=attempt.model_id,
            prompt_template_id=task.prompt_template_id,
        )

        if not self._cache.put_if_absent(key, entry):
            existing = self._cache.get(key)
            if existing is not None:
                logger.info(
                    f"Cache race lost | Task: {task.task_id} | Using stored entry from "
                    f"{existing.model_id}"
                )
                return self._result(
                    run,
                    TaskOutcome.ACCEPTED,
                    text=existing.text,
                    model_id=existing.model_id,
                    validation=existing.validation,
                    from_cache=True,
                )

        logger.info(
            f"Narrative accepted | Task: {task.task_id} | Model: {attempt.model_id} | "
            f"Attempts: {len(run.attempts)} | Score: {validation.quality_score:.0f}"
        )
        return self._result(
            run,
            TaskOutcome.ACCEPTED,
            text=attempt.raw_text,
            model_id=attempt.model_id,
            validation=validation,
        )

    # =========================================================================
    # STAGE 5: TERMINAL OUTCOMES
    # =========================================================================

    def _exhaust(self, run: _TaskRun, budget_exhausted: bool) -> TaskResult:
        task = run.task
        reason = "time budget exhausted" if budget_exhausted else "candidates exhausted"

        if run.best_attempt is None:
            error = AllModelsFailedError(task.task_id, len(run.attempts))
            run.move_to(TaskState.FAILED, detail=reason)
            logger.error(
                f"All models failed | Task: {task.task_id} | Attempts: {len(run.attempts)} | "
                f"Reason: {reason}"
            )
            return self._result(run, TaskOutcome.ALL_MODELS_FAILED, error=str(error))

        best, validation = run.best_attempt, run.best_validation
        run.move_to(TaskState.EXHAUSTED, model_id=best.model_id, detail=reason)

        if self._exhaustion_policy == ExhaustionPolicy.HARD_FAIL:
            error = ValidationFailure(validation.quality_score, validation.issues)
            logger.error(
                f"Validation failed | Task: {task.task_id} | Attempts: {len(run.attempts)} | "
                f"Best score: {validation.quality_score:.0f}"
            )
            return self._result(
                run, TaskOutcome.VALIDATION_FAILED, validation=validation, error=str(error)
            )

        logger.warning(
            f"Returning low-confidence narrative | Task: {task.task_id} | "
            f"Model: {best.model_id} | Score: {validation.quality_score:.0f} | Reason: {reason}"
        )
        return self._result(
            run,
            TaskOutcome.FLAGGED,
            text=best.raw_text,
            model_id=best.model_id,
            validation=validation,
        )

    def _result(self, run: _TaskRun, outcome: TaskOutcome, **fields) -> TaskResult:
        return TaskResult(
            task_id=run.task.task_id,
            domain_key=run.task.domain_key,
            outcome=outcome,
            final_state=run.state,
            attempts=list(run.attempts),
            **fields,
        )

    # =========================================================================
    # STAGE 6: HELPERS
    # =========================================================================

    def _fit_to_context(
        self, task: GenerationTask, prompt: GenerationPrompt, candidates: List[ModelDescriptor]
    ) -> List[ModelDescriptor]:
        """Drop candidates whose context cannot hold the prompt plus output."""
        needed = estimate_tokens(prompt.full_text) + task.max_output_tokens
        fitting = [m for m in candidates if m.context_limit >= needed]

        if not fitting:
            logger.warning(
                f"Prompt exceeds every candidate context | Task: {task.task_id} | "
                f"Needed: {needed} tokens | Trying all candidates"
            )
            return candidates

        if len(fitting) < len(candidates):
            skipped = [m.model_id for m in candidates if m not in fitting]
            logger.info(f"Skipping small-context models | Task: {task.task_id} | Models: {skipped}")

        return fitting

    @property
    def usage_log(self) -> UsageLog:
        return self._usage_log
