"""
Selection Layer - Tiered Model Registry and Availability Filtering

Submodules:
    model_registry.py → Configured candidates per tier (immutable)
    model_selector.py → Candidates filtered to what the backend serves

Dependencies:
    This layer depends on: core, clients (protocol only)
    This layer is used by: generation
"""

from narrative_generation.selection.model_registry import ModelRegistry, context_limit_for
from narrative_generation.selection.model_selector import ModelSelector, normalize_model_name

__all__ = [
    "ModelRegistry",
    "ModelSelector",
    "context_limit_for",
    "normalize_model_name",
]
