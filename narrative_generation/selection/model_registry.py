"""
Model Registry - Configured Candidate Models per Tier

Holds the ordered, immutable candidate list for each model tier. The
registry knows nothing about availability; it is the configured intent,
and the ModelSelector filters it against what the backend can serve.

Pipeline Position:
    Config → [ModelRegistry] → ModelSelector → Orchestrator
"""

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from loguru import logger

from narrative_generation.core.constants import (
    DEFAULT_CONTEXT_LIMIT,
    DEFAULT_TIER_MODELS,
    MODEL_CONTEXT_LIMITS,
)
from narrative_generation.core.enums import ModelTier
from narrative_generation.core.exceptions import ConfigurationError
from narrative_generation.core.models import ModelDescriptor


def context_limit_for(model_id: str) -> int:
    """Declared context size for a model id, by longest matching family prefix."""
    family = model_id.lower().split(":", 1)[0]
    matches = [prefix for prefix in MODEL_CONTEXT_LIMITS if family.startswith(prefix)]
    if not matches:
        return DEFAULT_CONTEXT_LIMIT
    return MODEL_CONTEXT_LIMITS[max(matches, key=len)]


class ModelRegistry:
    """
    Tier → ordered tuple of ModelDescriptor.

    What it does:
        Stores the configured candidates of each tier in priority order
        (index 0 preferred). Descriptors are frozen and the per-tier
        tuples never change after construction.

    Example:
        >>> registry = ModelRegistry.from_model_ids({ModelTier.DOMAIN: ["a", "b"]})
        >>> [m.model_id for m in registry.candidates(ModelTier.DOMAIN)]
        ['a', 'b']
    """

    def __init__(self, descriptors: Iterable[ModelDescriptor]):
        tiers: Dict[ModelTier, List[ModelDescriptor]] = {tier: [] for tier in ModelTier}
        seen = set()

        for descriptor in descriptors:
            key = (descriptor.tier, descriptor.model_id)
            if key in seen:
                raise ConfigurationError(
                    f"Model '{descriptor.model_id}' listed twice in tier '{descriptor.tier.value}'"
                )
            seen.add(key)
            tiers[descriptor.tier].append(descriptor)

        self._tiers: Dict[ModelTier, Tuple[ModelDescriptor, ...]] = {
            tier: tuple(sorted(models, key=lambda m: m.priority))
            for tier, models in tiers.items()
        }

        logger.debug(
            "ModelRegistry initialized | "
            + " | ".join(f"{tier.value}: {len(models)}" for tier, models in self._tiers.items())
        )

    # =========================================================================
    # FACTORY METHODS
    # =========================================================================

    @classmethod
    def from_model_ids(
        cls, tier_models: Mapping[ModelTier, Sequence[str]]
    ) -> "ModelRegistry":
        """Build from per-tier id lists; list order is priority order."""
        descriptors = [
            ModelDescriptor(
                model_id=model_id,
                tier=ModelTier(tier),
                priority=priority,
                context_limit=context_limit_for(model_id),
            )
            for tier, model_ids in tier_models.items()
            for priority, model_id in enumerate(model_ids)
        ]
        return cls(descriptors)

    @classmethod
    def default(cls) -> "ModelRegistry":
        """Registry of the default local candidate lists."""
        return cls.from_model_ids({ModelTier(t): ids for t, ids in DEFAULT_TIER_MODELS.items()})

    # =========================================================================
    # QUERIES
    # =========================================================================

    def candidates(self, tier: ModelTier) -> Tuple[ModelDescriptor, ...]:
        """Configured candidates of a tier, preferred first."""
        return self._tiers.get(tier, ())

    def get(self, model_id: str, tier: Optional[ModelTier] = None) -> Optional[ModelDescriptor]:
        tiers = [tier] if tier else list(ModelTier)
        for t in tiers:
            for descriptor in self._tiers.get(t, ()):
                if descriptor.model_id == model_id:
                    return descriptor
        return None

    @property
    def tiers(self) -> List[ModelTier]:
        return [tier for tier, models in self._tiers.items() if models]

    def __len__(self) -> int:
        return sum(len(models) for models in self._tiers.values())
