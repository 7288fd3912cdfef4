"""
Enumerations for Narrative Generation

This module defines the enumeration types shared by every layer of the
narrative generation orchestrator. Enums provide:
    1. Type safety for categorical values
    2. Stable string values for logs, cache files and telemetry
    3. Clear domain semantics

Enumeration Categories:
    ModelTier         → Size bucket of candidate models
    BackendKind       → Local inference process vs hosted API
    AttemptOutcome    → Result status of a single backend call
    TaskState         → Orchestrator state machine states
    TaskOutcome       → Terminal outcome reported for a task
    ExhaustionPolicy  → What to do when every attempt fails validation
    CheckSeverity     → Whether a validation check blocks acceptance
"""

from enum import Enum


# =============================================================================
# STAGE 1: MODEL TIERS
# =============================================================================
# Tiers size the candidate models to the complexity of the narrative.


class ModelTier(str, Enum):
    """
    Named bucket of candidate models.

    Tier Hierarchy (by model size):
        DOMAIN:    single-domain narrative, small instruct models (~4-8B)
        SYNTHESIS: cross-domain synthesis, mid-size models (~8-14B)
        LARGE:     comprehensive synthesis, large models (20B+)
    """

    DOMAIN = "domain"
    SYNTHESIS = "synthesis"
    LARGE = "large"

    @property
    def default_temperature(self) -> float:
        """Tier-specific sampling temperature used when none is configured."""
        return {
            ModelTier.DOMAIN: 0.2,
            ModelTier.SYNTHESIS: 0.35,
            ModelTier.LARGE: 0.3,
        }[self]


# =============================================================================
# STAGE 2: BACKEND KIND
# =============================================================================


class BackendKind(str, Enum):
    """Where the language model runs."""

    LOCAL = "local"
    """Local inference server (Ollama)."""

    HOSTED = "hosted"
    """Hosted API (OpenAI, Gemini)."""


# =============================================================================
# STAGE 3: ATTEMPT OUTCOME
# =============================================================================


class AttemptOutcome(str, Enum):
    """
    Status of one backend call.

    TIMEOUT is kept distinct from ERROR so telemetry can separate slow
    backends from rejected or malformed calls.
    """

    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"


# =============================================================================
# STAGE 4: ORCHESTRATOR STATES
# =============================================================================


class TaskState(str, Enum):
    """
    States of the per-task generation state machine.

    Transitions:
        PENDING → ATTEMPTING → VALIDATING → ACCEPTED
                                          → RETRY_SAME_MODEL → ATTEMPTING
                                          → FALLBACK_NEXT_MODEL → ATTEMPTING
                                          → EXHAUSTED
        ATTEMPTING → RETRY_SAME_MODEL | FALLBACK_NEXT_MODEL (call failed)
        PENDING → FAILED (no candidates, or nothing ever produced output)
        PENDING → SKIPPED (a dependency failed; scheduler only)
    """

    PENDING = "PENDING"
    ATTEMPTING = "ATTEMPTING"
    VALIDATING = "VALIDATING"
    ACCEPTED = "ACCEPTED"
    RETRY_SAME_MODEL = "RETRY_SAME_MODEL"
    FALLBACK_NEXT_MODEL = "FALLBACK_NEXT_MODEL"
    EXHAUSTED = "EXHAUSTED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"

    @property
    def is_terminal(self) -> bool:
        """Check if no further transitions can follow this state."""
        return self in (
            TaskState.ACCEPTED,
            TaskState.EXHAUSTED,
            TaskState.FAILED,
            TaskState.SKIPPED,
        )


# =============================================================================
# STAGE 5: TERMINAL TASK OUTCOME
# =============================================================================


class TaskOutcome(str, Enum):
    """
    Terminal outcome of a task as seen by the caller and the batch report.

    Report buckets:
        accepted → ACCEPTED
        flagged  → FLAGGED
        failed   → VALIDATION_FAILED, ALL_MODELS_FAILED, NO_MODEL_AVAILABLE
        skipped  → SKIPPED
    """

    ACCEPTED = "accepted"
    FLAGGED = "flagged"
    VALIDATION_FAILED = "validation_failed"
    ALL_MODELS_FAILED = "all_models_failed"
    NO_MODEL_AVAILABLE = "no_model_available"
    SKIPPED = "skipped"

    @property
    def has_text(self) -> bool:
        """Whether this outcome carries narrative text for downstream use."""
        return self in (TaskOutcome.ACCEPTED, TaskOutcome.FLAGGED)

    @property
    def is_failure(self) -> bool:
        return self in (
            TaskOutcome.VALIDATION_FAILED,
            TaskOutcome.ALL_MODELS_FAILED,
            TaskOutcome.NO_MODEL_AVAILABLE,
        )


# =============================================================================
# STAGE 6: POLICIES AND SEVERITIES
# =============================================================================


class ExhaustionPolicy(str, Enum):
    """
    Behavior when all candidates and retries fail validation.

    DEGRADE returns the best-scoring attempt flagged as low-confidence.
    HARD_FAIL reports the task as failed and returns no text.
    """

    DEGRADE = "degrade"
    HARD_FAIL = "hard_fail"


class CheckSeverity(str, Enum):
    """Effect of a violated validation check."""

    BLOCKING = "blocking"
    """Produces an issue; forces validation failure regardless of score."""

    ADVISORY = "advisory"
    """Produces a warning; recorded but does not block."""
