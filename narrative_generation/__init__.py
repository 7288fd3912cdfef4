"""
Narrative Generation Module

Turns per-domain structured assessment text into validated prose
narratives using local or hosted language models, with retry, model
fallback, a quality gate, a content-addressed cache and per-call
telemetry.

Architecture Overview:
    narrative_generation/
    ├── core/        → Models, enums, configuration, exceptions (Layer 0 - Pure)
    ├── clients/     → Backend adapters: Ollama, OpenAI, Gemini (Layer 1 - Infrastructure)
    ├── selection/   → Model registry and availability (Layer 2)
    ├── validation/  → Rule-based quality gate (Layer 2)
    ├── cache/       → Narrative cache (Layer 1 - Infrastructure)
    ├── telemetry/   → Usage log (Layer 1 - Infrastructure)
    ├── generation/  → Prompt builder and per-task orchestrator (Layer 3)
    ├── scheduling/  → Worker pool and dependency barriers (Layer 4)
    ├── output/      → Per-domain output slots (Layer 1 - Infrastructure)
    └── pipeline.py  → Main entry point (Layer 5 - Public API)

Quick Start:
    from narrative_generation import NarrativePipeline

    pipeline = NarrativePipeline.from_environment()
    report = pipeline.generate_narratives({"memory": memory_text})
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================

# Main Entry Point
from narrative_generation.pipeline import NarrativePipeline, load_domain_inputs

# Core Models
from narrative_generation.core.models import (
    GenerationTask,
    GenerationAttempt,
    ValidationResult,
    TaskResult,
    BatchReport,
)

# Enums
from narrative_generation.core.enums import (
    ModelTier,
    BackendKind,
    TaskState,
    TaskOutcome,
    ExhaustionPolicy,
)

# Configuration
from narrative_generation.core.config import OrchestratorConfiguration
from narrative_generation.core.logging import configure_logging

# Components (for custom wiring)
from narrative_generation.generation import GenerationOrchestrator, PromptBuilder
from narrative_generation.scheduling import TaskScheduler

__all__ = [
    # Main Entry Point (use this!)
    "NarrativePipeline",
    "load_domain_inputs",
    # Core Models
    "GenerationTask",
    "GenerationAttempt",
    "ValidationResult",
    "TaskResult",
    "BatchReport",
    # Enums
    "ModelTier",
    "BackendKind",
    "TaskState",
    "TaskOutcome",
    "ExhaustionPolicy",
    # Configuration
    "OrchestratorConfiguration",
    "configure_logging",
    # Components
    "GenerationOrchestrator",
    "PromptBuilder",
    "TaskScheduler",
]
