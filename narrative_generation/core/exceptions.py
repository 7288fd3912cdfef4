"""
Domain Exceptions for Narrative Generation

This module defines the custom exceptions used by the orchestrator.
Well-defined exceptions enable:
    1. Clear error categorization for debugging
    2. Specific catch blocks for different failure modes
    3. Rich error context for troubleshooting

Exception Hierarchy:
    NarrativeGenerationError (base)
    ├── ConfigurationError        → Invalid configuration or batch definition
    ├── BackendError              → Backend adapter failures
    │   ├── BackendUnavailableError   (fatal for the whole batch)
    │   └── BackendCallError          (transient, one attempt)
    ├── NoModelAvailableError     → Tier has zero reachable candidates
    ├── GenerationError           → Per-attempt generation failures
    │   └── GenerationTimeoutError
    ├── ValidationFailure         → Output rejected by the validator
    ├── AllModelsFailedError      → No attempt for a task produced output
    ├── CacheError
    │   └── CacheCorruptionError  (handled as a cache miss)
    └── PromptTemplateError       → Template missing or malformed

Propagation:
    Transient errors (BackendCallError, GenerationTimeoutError,
    ValidationFailure) are resolved inside the orchestrator. Only
    BackendUnavailableError aborts a batch.
"""

from typing import Optional


# =============================================================================
# STAGE 1: BASE EXCEPTION
# =============================================================================


class NarrativeGenerationError(Exception):
    """
    Base exception for all narrative generation errors.

    Attributes:
        message: Human-readable error description
        context: Dictionary of additional context for debugging
    """

    def __init__(self, message: str, context: Optional[dict] = None):
        self.message = message
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format message with context for display."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{context_str}]"
        return self.message


# =============================================================================
# STAGE 2: CONFIGURATION ERRORS
# =============================================================================


class ConfigurationError(NarrativeGenerationError):
    """
    Error in orchestrator configuration or batch definition.

    When raised:
        - Missing API key for the selected hosted provider
        - Numeric settings out of range
        - Duplicate task ids, unknown or cyclic dependencies in a batch
    """

    pass


# =============================================================================
# STAGE 3: BACKEND ERRORS
# =============================================================================


class BackendError(NarrativeGenerationError):
    """
    Base exception for backend adapter failures.

    Attributes:
        provider: Backend provider name (ollama, openai, gemini)
        original_error: The wrapped original exception
    """

    def __init__(
        self,
        message: str,
        provider: str,
        original_error: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        self.provider = provider
        self.original_error = original_error
        merged = {
            "provider": provider,
            "original_error": str(original_error) if original_error else None,
        }
        merged.update(context or {})
        super().__init__(message, context=merged)


class BackendUnavailableError(BackendError):
    """
    No reachable backend at all.

    Fatal for the entire batch: the scheduler cancels queued tasks and
    re-raises this immediately.
    """

    pass


class BackendCallError(BackendError):
    """
    A single backend call was rejected or returned malformed output.

    Adapters raise this from their provider-specific call; the base adapter
    converts it into an attempt with status ``error``.
    """

    pass


# =============================================================================
# STAGE 4: MODEL SELECTION ERRORS
# =============================================================================


class NoModelAvailableError(NarrativeGenerationError):
    """
    A tier has zero available candidate models.

    Fatal only for tasks of that tier; tasks of other tiers continue.

    Attributes:
        tier: The tier with no reachable candidates
        configured: Model ids configured for the tier
    """

    def __init__(self, tier: str, configured: Optional[list] = None):
        self.tier = tier
        self.configured = list(configured or [])
        super().__init__(
            f"No available model for tier '{tier}'",
            context={"tier": tier, "configured": ", ".join(self.configured) or "none"},
        )


# =============================================================================
# STAGE 5: GENERATION ERRORS
# =============================================================================


class GenerationError(NarrativeGenerationError):
    """A generation attempt failed (transient, retried by the orchestrator)."""

    pass


class GenerationTimeoutError(GenerationError):
    """
    A backend call exceeded its hard timeout.

    Attributes:
        timeout_seconds: The timeout that was exceeded
    """

    def __init__(self, model_id: str, timeout_seconds: float):
        self.model_id = model_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Generation timed out after {timeout_seconds}s",
            context={"model": model_id, "timeout_seconds": timeout_seconds},
        )


class ValidationFailure(NarrativeGenerationError):
    """
    Output was produced but rejected by the quality validator.

    Attributes:
        score: Quality score of the rejected output
        issues: Blocking issues found
    """

    def __init__(self, score: float, issues: Optional[list] = None):
        self.score = score
        self.issues = list(issues or [])
        super().__init__(
            f"Narrative rejected by validator (score {score:.0f})",
            context={"issues": "; ".join(self.issues) or "below threshold"},
        )


class AllModelsFailedError(NarrativeGenerationError):
    """
    No attempt for a task produced any output at all.

    Reported as a task-level failure and isolated from sibling tasks.
    """

    def __init__(self, task_id: str, attempts: int):
        self.task_id = task_id
        self.attempts = attempts
        super().__init__(
            "All candidate models failed to produce output",
            context={"task_id": task_id, "attempts": attempts},
        )


# =============================================================================
# STAGE 6: CACHE ERRORS
# =============================================================================


class CacheError(NarrativeGenerationError):
    """Base exception for cache store errors."""

    pass


class CacheCorruptionError(CacheError):
    """
    A cache entry could not be read or decoded.

    Never propagated past the cache: the entry is treated as a miss and
    the narrative is regenerated.
    """

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(
            f"Unreadable cache entry {key[:12]}: {reason}",
            context={"key": key, "reason": reason},
        )


# =============================================================================
# STAGE 7: PROMPT TEMPLATE ERRORS
# =============================================================================


class PromptTemplateError(NarrativeGenerationError):
    """
    Prompt template could not be found or parsed.

    Attributes:
        keyword: Domain keyword or template id that was requested
    """

    def __init__(self, keyword: str, message: Optional[str] = None):
        self.keyword = keyword
        super().__init__(
            message or f"No prompt template for '{keyword}'", context={"keyword": keyword}
        )
