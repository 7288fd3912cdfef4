"""
Core Layer - Domain Models, Enums, and Configuration

This layer contains the foundation of the narrative generation
orchestrator: data structures, enumerations, configuration, constants and
the exception hierarchy.

Submodules:
    models.py     → Data structures (GenerationTask, GenerationAttempt, TaskResult)
    enums.py      → Enumerations (ModelTier, TaskState, TaskOutcome)
    config.py     → Configuration dataclass
    constants.py  → Default model lists, domain keywords, validation patterns
    exceptions.py → Domain-specific exceptions
    logging.py    → loguru sink setup

Dependency Rule:
    This layer depends on NOTHING else in the package.
    All other layers may depend on this layer.
"""

from narrative_generation.core.models import (
    ModelDescriptor,
    GenerationParams,
    GenerationPrompt,
    BackendResponse,
    GenerationTask,
    GenerationAttempt,
    ValidationResult,
    CacheEntry,
    UsageLogRecord,
    StateTransition,
    TaskResult,
    BatchReport,
)
from narrative_generation.core.enums import (
    ModelTier,
    BackendKind,
    AttemptOutcome,
    TaskState,
    TaskOutcome,
    ExhaustionPolicy,
    CheckSeverity,
)
from narrative_generation.core.config import OrchestratorConfiguration
from narrative_generation.core.exceptions import (
    NarrativeGenerationError,
    ConfigurationError,
    BackendError,
    BackendUnavailableError,
    BackendCallError,
    NoModelAvailableError,
    GenerationError,
    GenerationTimeoutError,
    ValidationFailure,
    AllModelsFailedError,
    CacheError,
    CacheCorruptionError,
    PromptTemplateError,
)
from narrative_generation.core.logging import configure_logging

__all__ = [
    # Models
    "ModelDescriptor",
    "GenerationParams",
    "GenerationPrompt",
    "BackendResponse",
    "GenerationTask",
    "GenerationAttempt",
    "ValidationResult",
    "CacheEntry",
    "UsageLogRecord",
    "StateTransition",
    "TaskResult",
    "BatchReport",
    # Enums
    "ModelTier",
    "BackendKind",
    "AttemptOutcome",
    "TaskState",
    "TaskOutcome",
    "ExhaustionPolicy",
    "CheckSeverity",
    # Configuration
    "OrchestratorConfiguration",
    "configure_logging",
    # Exceptions
    "NarrativeGenerationError",
    "ConfigurationError",
    "BackendError",
    "BackendUnavailableError",
    "BackendCallError",
    "NoModelAvailableError",
    "GenerationError",
    "GenerationTimeoutError",
    "ValidationFailure",
    "AllModelsFailedError",
    "CacheError",
    "CacheCorruptionError",
    "PromptTemplateError",
]
