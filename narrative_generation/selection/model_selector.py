"""
Model Selector - Availability-Filtered Candidate Selection

Filters the configured candidates of each tier down to the models the
backend can actually serve, preserving configured priority.

Availability Matching:
    Installed model names are compared case-insensitively with any
    ``:latest`` tag removed. An installed model matches a configured id
    when it equals it or starts with it, so a configured ``qwen3:8b``
    matches an installed ``qwen3:8b-q4_K_M``.

Pipeline Position:
    ModelRegistry → [ModelSelector] → Orchestrator
                    ^^^^^^^^^^^^^^^
                    You are here
"""

import threading
from typing import FrozenSet, List, Optional

from loguru import logger

from narrative_generation.clients.llm_client import BackendAdapterProtocol
from narrative_generation.core.enums import ModelTier
from narrative_generation.core.exceptions import NoModelAvailableError
from narrative_generation.core.models import ModelDescriptor
from narrative_generation.selection.model_registry import ModelRegistry


def normalize_model_name(name: str) -> str:
    """Lowercase and drop a trailing ``:latest`` tag."""
    name = name.strip().lower()
    if name.endswith(":latest"):
        name = name[: -len(":latest")]
    return name


class ModelSelector:
    """
    Availability-aware view over a ModelRegistry.

    What it does:
        Queries the backend's model listing once per batch (``refresh``)
        and answers candidate queries from that snapshot.

    Why it exists:
        1. Local servers only serve what has been pulled
        2. One listing per batch instead of one per task

    Example:
        >>> selector = ModelSelector(registry, adapter)
        >>> selector.refresh()
        >>> selector.select_best(ModelTier.DOMAIN).model_id
        'gemma3:4b-it-qat'
    """

    def __init__(self, registry: ModelRegistry, adapter: BackendAdapterProtocol):
        self._registry = registry
        self._adapter = adapter
        self._available: Optional[FrozenSet[str]] = None
        self._lock = threading.Lock()

    # =========================================================================
    # STAGE 1: AVAILABILITY SNAPSHOT
    # =========================================================================

    def refresh(self) -> FrozenSet[str]:
        """
        Re-query the backend's available models.

        Raises:
            BackendUnavailableError: If the backend cannot be reached
        """
        installed = self._adapter.list_available_models()
        snapshot = frozenset(normalize_model_name(name) for name in installed)

        with self._lock:
            self._available = snapshot

        logger.info(
            f"Model availability refreshed | Provider: {self._adapter.provider_name} | "
            f"Installed: {len(snapshot)}"
        )
        return snapshot

    def _snapshot(self) -> FrozenSet[str]:
        with self._lock:
            snapshot = self._available
        if snapshot is None:
            snapshot = self.refresh()
        return snapshot

    def is_available(self, model_id: str) -> bool:
        wanted = normalize_model_name(model_id)
        return any(
            installed == wanted or installed.startswith(wanted) for installed in self._snapshot()
        )

    # =========================================================================
    # STAGE 2: CANDIDATE QUERIES
    # =========================================================================

    def available_candidates(self, tier: ModelTier) -> List[ModelDescriptor]:
        """Reachable candidates of a tier in configured priority order."""
        candidates = [m for m in self._registry.candidates(tier) if self.is_available(m.model_id)]

        if len(candidates) < len(self._registry.candidates(tier)):
            missing = [
                m.model_id for m in self._registry.candidates(tier) if m not in candidates
            ]
            logger.debug(f"Unavailable candidates | Tier: {tier.value} | Models: {missing}")

        return candidates

    def select_best(self, tier: ModelTier) -> ModelDescriptor:
        """
        First available candidate of a tier.

        Raises:
            NoModelAvailableError: If no candidate of the tier is available
        """
        candidates = self.available_candidates(tier)
        if not candidates:
            raise NoModelAvailableError(
                tier.value, [m.model_id for m in self._registry.candidates(tier)]
            )
        return candidates[0]

    @property
    def registry(self) -> ModelRegistry:
        return self._registry
