"""
Domain Models for Narrative Generation

This module defines the core data structures used throughout the
orchestrator. Models that describe something already recorded (attempts,
telemetry records, transitions) are frozen; models that accumulate state
during a run are plain dataclasses.

Model Hierarchy:
    ModelDescriptor   → A candidate model within a tier
    GenerationParams  → Sampling and timeout parameters for one call
    GenerationPrompt  → System + user prompt sent to a backend
    BackendResponse   → Uniform result of one backend call
    GenerationTask    → One unit of narrative work (domain or synthesis)
    GenerationAttempt → One backend call made for a task
    ValidationResult  → Quality gate outcome for an attempt's output
    CacheEntry        → Accepted narrative stored under a content key
    UsageLogRecord    → Telemetry row, one per attempt
    StateTransition   → Telemetry row, one per state machine transition
    TaskResult        → Terminal result of a task
    BatchReport       → Aggregate result of a scheduler batch

Usage:
    from narrative_generation.core.models import GenerationTask
    from narrative_generation.core.enums import ModelTier

    task = GenerationTask(
        task_id="memory",
        domain_key="memory",
        input_text="Memory domain scores ...",
        tier=ModelTier.DOMAIN,
        prompt_template_id="promem@1a2b3c4d",
    )
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from narrative_generation.core.enums import (
    AttemptOutcome,
    ModelTier,
    TaskOutcome,
    TaskState,
)


# =============================================================================
# STAGE 1: MODEL DESCRIPTOR
# =============================================================================


@dataclass(frozen=True)
class ModelDescriptor:
    """
    A candidate language model within a tier.

    Attributes:
        model_id: Backend model identifier (e.g., "qwen3:8b-q4_K_M")
        tier: Tier this model serves
        priority: Rank within the tier (0 = preferred)
        context_limit: Declared context size in tokens
    """

    model_id: str
    tier: ModelTier
    priority: int = 0
    context_limit: int = 8192


# =============================================================================
# STAGE 2: BACKEND CALL PRIMITIVES
# =============================================================================


@dataclass(frozen=True)
class GenerationParams:
    """Sampling and timeout parameters for a single backend call."""

    temperature: float = 0.2
    max_output_tokens: int = 1024
    timeout_seconds: float = 120.0


@dataclass(frozen=True)
class GenerationPrompt:
    """System and user messages sent to a backend."""

    system: str
    user: str

    @property
    def full_text(self) -> str:
        """Both messages joined, for providers without a system role."""
        if not self.system:
            return self.user
        return f"{self.system}\n\n{self.user}"


@dataclass
class BackendResponse:
    """
    Uniform result of one backend call.

    The caller never branches on backend kind: every adapter returns this
    shape, with ``status`` distinguishing success, error and timeout.
    """

    text: str
    tokens_in: int = 0
    tokens_out: int = 0
    duration_ms: float = 0.0
    status: AttemptOutcome = AttemptOutcome.SUCCESS
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == AttemptOutcome.SUCCESS


# =============================================================================
# STAGE 3: GENERATION TASK
# =============================================================================


@dataclass
class GenerationTask:
    """
    One unit of narrative work.

    Domain tasks carry the structured text of one assessment area.
    Synthesis tasks list the task ids they aggregate in ``dependencies``;
    the scheduler appends those narratives to ``input_text`` before
    dispatch.

    Attributes:
        task_id: Unique id within a batch
        domain_key: Output slot key (e.g., "memory", "sirf")
        input_text: Structured text produced by the data-processing stage
        tier: Model tier used for candidate selection
        prompt_template_id: Id of the prompt template (keyword + digest)
        temperature: Sampling temperature; None uses the tier default
        max_output_tokens: Output token cap per call
        dependencies: Task ids that must be terminal before dispatch
    """

    task_id: str
    domain_key: str
    input_text: str
    tier: ModelTier = ModelTier.DOMAIN
    prompt_template_id: str = ""
    temperature: Optional[float] = None
    max_output_tokens: int = 1024
    dependencies: List[str] = field(default_factory=list)

    @property
    def is_synthesis(self) -> bool:
        return len(self.dependencies) > 0

    @property
    def effective_temperature(self) -> float:
        """Configured temperature, or the tier default when unset."""
        if self.temperature is not None:
            return self.temperature
        return self.tier.default_temperature

    def with_input(self, input_text: str) -> "GenerationTask":
        """Copy of this task with a different input text."""
        return dataclasses.replace(self, input_text=input_text)


# =============================================================================
# STAGE 4: GENERATION ATTEMPT
# =============================================================================


@dataclass(frozen=True)
class GenerationAttempt:
    """
    One backend call made on behalf of a task. Immutable once recorded.

    Attributes:
        attempt_id: Unique id ("<task_id>#<sequence>")
        task_id: Parent task id
        model_id: Model that was called
        sequence: 1-based attempt number within the task
        started_at / ended_at: Wall-clock bounds of the call
        outcome: success, error or timeout
        raw_text: Output text (empty unless outcome is success)
        tokens_in / tokens_out: Token counts reported or estimated
        error_message: Backend error description, if any
    """

    attempt_id: str
    task_id: str
    model_id: str
    sequence: int
    started_at: datetime
    ended_at: datetime
    outcome: AttemptOutcome
    raw_text: str = ""
    tokens_in: int = 0
    tokens_out: int = 0
    error_message: Optional[str] = None

    @property
    def duration_ms(self) -> float:
        return (self.ended_at - self.started_at).total_seconds() * 1000

    @property
    def produced_output(self) -> bool:
        """Check if the call returned any text at all."""
        return self.outcome == AttemptOutcome.SUCCESS and bool(self.raw_text.strip())


# =============================================================================
# STAGE 5: VALIDATION RESULT
# =============================================================================


@dataclass
class ValidationResult:
    """
    Quality gate outcome for generated narrative text.

    Attributes:
        passed: Score at or above threshold and no blocking issues
        quality_score: 0-100, 100 minus weighted deductions
        issues: Blocking problems (force failure)
        warnings: Advisory problems (recorded only)
        attempt_id: Attempt whose output was scored
        metrics: Measured values for each check
    """

    passed: bool
    quality_score: float = 0.0
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    attempt_id: Optional[str] = None
    metrics: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "passed": self.passed,
            "quality_score": self.quality_score,
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "attempt_id": self.attempt_id,
            "metrics": dict(self.metrics),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationResult":
        """Create from dictionary (JSON deserialization)."""
        return cls(
            passed=bool(data["passed"]),
            quality_score=float(data.get("quality_score", 0.0)),
            issues=list(data.get("issues", [])),
            warnings=list(data.get("warnings", [])),
            attempt_id=data.get("attempt_id"),
            metrics=dict(data.get("metrics", {})),
        )


# =============================================================================
# STAGE 6: CACHE ENTRY
# =============================================================================


@dataclass
class CacheEntry:
    """
    Accepted narrative stored under its content-addressed key.

    Written once, on the first accepted result for the key; never
    overwritten afterwards.
    """

    key: str
    text: str
    validation: ValidationResult
    model_id: str
    prompt_template_id: str = ""
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "text": self.text,
            "validation": self.validation.to_dict(),
            "model_id": self.model_id,
            "prompt_template_id": self.prompt_template_id,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            key=data["key"],
            text=data["text"],
            validation=ValidationResult.from_dict(data["validation"]),
            model_id=data["model_id"],
            prompt_template_id=data.get("prompt_template_id", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


# =============================================================================
# STAGE 7: TELEMETRY RECORDS
# =============================================================================


@dataclass(frozen=True)
class UsageLogRecord:
    """
    One telemetry row per generation attempt. Append-only.

    ``success`` refers to the backend call; ``validation_passed`` is set
    only when the output reached the validator.
    """

    timestamp: datetime
    task_id: str
    domain_key: str
    tier: str
    model_id: str
    attempt_sequence: int
    outcome: AttemptOutcome
    tokens_in: int = 0
    tokens_out: int = 0
    duration_ms: float = 0.0
    quality_score: Optional[float] = None
    validation_passed: Optional[bool] = None

    @property
    def total_tokens(self) -> int:
        return self.tokens_in + self.tokens_out

    @property
    def success(self) -> bool:
        return self.outcome == AttemptOutcome.SUCCESS

    @classmethod
    def from_attempt(
        cls,
        attempt: GenerationAttempt,
        task: GenerationTask,
        validation: Optional[ValidationResult] = None,
    ) -> "UsageLogRecord":
        """Build the telemetry row for a finished attempt."""
        return cls(
            timestamp=attempt.ended_at,
            task_id=task.task_id,
            domain_key=task.domain_key,
            tier=task.tier.value,
            model_id=attempt.model_id,
            attempt_sequence=attempt.sequence,
            outcome=attempt.outcome,
            tokens_in=attempt.tokens_in,
            tokens_out=attempt.tokens_out,
            duration_ms=attempt.duration_ms,
            quality_score=validation.quality_score if validation else None,
            validation_passed=validation.passed if validation else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "task_id": self.task_id,
            "domain_key": self.domain_key,
            "tier": self.tier,
            "model_id": self.model_id,
            "attempt_sequence": self.attempt_sequence,
            "outcome": self.outcome.value,
            "tokens_in": self.tokens_in,
            "tokens_out": self.tokens_out,
            "total_tokens": self.total_tokens,
            "duration_ms": round(self.duration_ms, 2),
            "quality_score": self.quality_score,
            "validation_passed": self.validation_passed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageLogRecord":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            task_id=data["task_id"],
            domain_key=data["domain_key"],
            tier=data["tier"],
            model_id=data["model_id"],
            attempt_sequence=int(data["attempt_sequence"]),
            outcome=AttemptOutcome(data["outcome"]),
            tokens_in=int(data.get("tokens_in", 0)),
            tokens_out=int(data.get("tokens_out", 0)),
            duration_ms=float(data.get("duration_ms", 0.0)),
            quality_score=data.get("quality_score"),
            validation_passed=data.get("validation_passed"),
        )


@dataclass(frozen=True)
class StateTransition:
    """One state machine transition of a task."""

    task_id: str
    from_state: TaskState
    to_state: TaskState
    model_id: Optional[str] = None
    attempt_sequence: Optional[int] = None
    detail: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "model_id": self.model_id,
            "attempt_sequence": self.attempt_sequence,
            "detail": self.detail,
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# STAGE 8: TASK AND BATCH RESULTS
# =============================================================================


@dataclass
class TaskResult:
    """
    Terminal result of one task.

    Attributes:
        task_id: Task this result belongs to
        domain_key: Output slot key
        outcome: Terminal outcome (accepted, flagged, failed..., skipped)
        final_state: Terminal state machine state
        text: Narrative text (accepted or flagged outcomes only)
        model_id: Model that produced ``text``
        validation: Validation of ``text``
        attempts: Every attempt made for this task, in order
        from_cache: Text came from the cache rather than this run's attempt
        error: Failure description for failed or skipped outcomes
    """

    task_id: str
    domain_key: str
    outcome: TaskOutcome
    final_state: TaskState
    text: Optional[str] = None
    model_id: Optional[str] = None
    validation: Optional[ValidationResult] = None
    attempts: List[GenerationAttempt] = field(default_factory=list)
    from_cache: bool = False
    error: Optional[str] = None

    @property
    def low_confidence(self) -> bool:
        """Best-effort text returned after exhaustion."""
        return self.outcome == TaskOutcome.FLAGGED

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def quality_score(self) -> Optional[float]:
        return self.validation.quality_score if self.validation else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "domain_key": self.domain_key,
            "outcome": self.outcome.value,
            "final_state": self.final_state.value,
            "text": self.text,
            "model_id": self.model_id,
            "quality_score": self.quality_score,
            "low_confidence": self.low_confidence,
            "from_cache": self.from_cache,
            "attempts": self.attempt_count,
            "error": self.error,
        }


@dataclass
class BatchReport:
    """Aggregate result of a scheduler batch."""

    results: Dict[str, TaskResult] = field(default_factory=dict)
    elapsed_seconds: float = 0.0

    def _count(self, *outcomes: TaskOutcome) -> int:
        return sum(1 for r in self.results.values() if r.outcome in outcomes)

    @property
    def accepted(self) -> int:
        return self._count(TaskOutcome.ACCEPTED)

    @property
    def flagged(self) -> int:
        return self._count(TaskOutcome.FLAGGED)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results.values() if r.outcome.is_failure)

    @property
    def skipped(self) -> int:
        return self._count(TaskOutcome.SKIPPED)

    @property
    def total_attempts(self) -> int:
        return sum(r.attempt_count for r in self.results.values())

    @property
    def narratives(self) -> Dict[str, str]:
        """Domain key → narrative text for accepted and flagged tasks."""
        return {
            r.domain_key: r.text
            for r in self.results.values()
            if r.outcome.has_text and r.text is not None
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted": self.accepted,
            "flagged": self.flagged,
            "failed": self.failed,
            "skipped": self.skipped,
            "total_attempts": self.total_attempts,
            "elapsed_seconds": round(self.elapsed_seconds, 2),
            "tasks": {task_id: r.to_dict() for task_id, r in self.results.items()},
        }
