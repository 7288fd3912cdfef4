"""
Tests for the model registry and availability-filtered selection.
"""

import pytest

from narrative_generation.core.enums import ModelTier
from narrative_generation.core.exceptions import (
    BackendUnavailableError,
    ConfigurationError,
    NoModelAvailableError,
)
from narrative_generation.core.models import ModelDescriptor
from narrative_generation.selection.model_registry import ModelRegistry, context_limit_for
from narrative_generation.selection.model_selector import ModelSelector, normalize_model_name

from tests.conftest import FakeBackend, make_registry


class TestModelRegistry:
    """Configured candidates per tier."""

    def test_list_order_is_priority_order(self):
        registry = make_registry(domain=["b", "a", "c"])

        assert [m.model_id for m in registry.candidates(ModelTier.DOMAIN)] == ["b", "a", "c"]
        assert [m.priority for m in registry.candidates(ModelTier.DOMAIN)] == [0, 1, 2]

    def test_explicit_priorities_are_sorted(self):
        registry = ModelRegistry(
            [
                ModelDescriptor("late", ModelTier.DOMAIN, priority=5),
                ModelDescriptor("early", ModelTier.DOMAIN, priority=1),
            ]
        )

        assert registry.candidates(ModelTier.DOMAIN)[0].model_id == "early"

    def test_duplicate_in_tier_rejected(self):
        with pytest.raises(ConfigurationError):
            make_registry(domain=["a", "a"])

    def test_same_model_in_two_tiers_allowed(self):
        registry = make_registry(domain=["shared"], synthesis=["shared"])

        assert registry.get("shared", ModelTier.SYNTHESIS).tier == ModelTier.SYNTHESIS
        assert len(registry) == 3

    def test_default_registry_covers_every_tier(self):
        registry = ModelRegistry.default()

        assert set(registry.tiers) == set(ModelTier)

    def test_context_limit_uses_longest_family_prefix(self):
        assert context_limit_for("qwen3:8b-q4_K_M") == 32768
        assert context_limit_for("unknown-model") == 8192


class TestModelSelector:
    """Availability filtering preserves priority."""

    def test_unavailable_models_are_filtered(self):
        backend = FakeBackend(available={"model-b"})
        selector = ModelSelector(make_registry(domain=["model-a", "model-b"]), backend)

        candidates = selector.available_candidates(ModelTier.DOMAIN)

        assert [m.model_id for m in candidates] == ["model-b"]

    def test_installed_tag_variants_match(self):
        backend = FakeBackend(available={"Qwen3:8B-q4_K_M", "gemma3:4b:latest"})
        selector = ModelSelector(make_registry(domain=["gemma3:4b", "qwen3:8b"]), backend)

        names = [m.model_id for m in selector.available_candidates(ModelTier.DOMAIN)]

        assert names == ["gemma3:4b", "qwen3:8b"]

    def test_select_best_returns_first_available(self):
        backend = FakeBackend(available={"model-a", "model-b"})
        selector = ModelSelector(make_registry(), backend)

        assert selector.select_best(ModelTier.DOMAIN).model_id == "model-a"

    def test_select_best_raises_when_tier_empty(self):
        selector = ModelSelector(make_registry(), FakeBackend(available={"model-a"}))

        with pytest.raises(NoModelAvailableError) as exc_info:
            selector.select_best(ModelTier.SYNTHESIS)

        assert exc_info.value.configured == ["synth-a"]

    def test_snapshot_is_reused_until_refresh(self):
        backend = FakeBackend(available={"model-a"})
        selector = ModelSelector(make_registry(), backend)
        selector.available_candidates(ModelTier.DOMAIN)

        backend.available.add("model-b")
        assert len(selector.available_candidates(ModelTier.DOMAIN)) == 1

        selector.refresh()
        assert len(selector.available_candidates(ModelTier.DOMAIN)) == 2

    def test_unreachable_backend_propagates(self):
        backend = FakeBackend()
        backend.list_error = BackendUnavailableError("connection refused", "fake")
        selector = ModelSelector(make_registry(), backend)

        with pytest.raises(BackendUnavailableError):
            selector.refresh()

    def test_normalize_model_name(self):
        assert normalize_model_name(" Llama3:Latest ") == "llama3"
