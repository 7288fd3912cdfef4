"""
Validation Layer - Narrative Quality Gate

Submodules:
    narrative_validator.py → Rule-based checks, rules and scoring
"""

from narrative_generation.validation.narrative_validator import (
    NarrativeValidator,
    RuleBasedChecks,
    ValidationRules,
)

__all__ = [
    "NarrativeValidator",
    "RuleBasedChecks",
    "ValidationRules",
]
