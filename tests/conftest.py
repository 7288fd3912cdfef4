"""
Shared fixtures: a scripted in-process backend, a scripted validator and
helpers to wire an orchestrator around them.
"""

import threading
import time
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

import pytest

from narrative_generation.cache.narrative_cache import InMemoryNarrativeCache
from narrative_generation.core.enums import AttemptOutcome, BackendKind, ModelTier
from narrative_generation.core.models import (
    BackendResponse,
    GenerationParams,
    GenerationPrompt,
    GenerationTask,
    ValidationResult,
)
from narrative_generation.generation.orchestrator import GenerationOrchestrator
from narrative_generation.generation.prompt_builder import (
    InMemoryPromptTemplateStore,
    PromptBuilder,
)
from narrative_generation.selection.model_registry import ModelRegistry
from narrative_generation.selection.model_selector import ModelSelector
from narrative_generation.telemetry.usage_log import UsageLog


GOOD_NARRATIVE = (
    "Memory functioning was broadly within the average range for the patient's age. "
    "Verbal learning skills were a relative strength, and recall after a delay was "
    "consistent with initial learning. Visual memory performance showed mild difficulties "
    "when material was complex, which may contribute to everyday challenges."
)

# Scripted reply: text (success), an AttemptOutcome (error / timeout) or an exception to raise
Reply = Union[str, AttemptOutcome, Exception]


class FakeBackend:
    """
    Thread-safe scripted backend implementing the adapter protocol.

    Replies come from ``responder(model_id, prompt)`` when given, otherwise
    from a per-model script consumed in order (the last reply repeats).
    """

    def __init__(
        self,
        available: Iterable[str] = (),
        script: Optional[Dict[str, Sequence[Reply]]] = None,
        responder: Optional[Callable[[str, GenerationPrompt], Reply]] = None,
        delay: float = 0.0,
    ):
        self.available: Set[str] = set(available)
        self._script = {model: list(replies) for model, replies in (script or {}).items()}
        self._responder = responder
        self.delay = delay
        self.calls: List[tuple] = []
        self.max_active = 0
        self._active = 0
        self._lock = threading.Lock()
        self.list_error: Optional[Exception] = None

    # Protocol ----------------------------------------------------------------

    def generate(
        self, model_id: str, prompt: GenerationPrompt, params: GenerationParams
    ) -> BackendResponse:
        with self._lock:
            self.calls.append((model_id, prompt, params))
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            if self.delay:
                time.sleep(self.delay)
            reply = self._next_reply(model_id, prompt)
        finally:
            with self._lock:
                self._active -= 1

        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, AttemptOutcome):
            return BackendResponse(text="", status=reply, error_message=f"scripted {reply.value}")
        return BackendResponse(text=reply, tokens_in=100, tokens_out=50, duration_ms=5.0)

    def list_available_models(self) -> Set[str]:
        if self.list_error is not None:
            raise self.list_error
        return set(self.available)

    @property
    def backend_kind(self) -> BackendKind:
        return BackendKind.LOCAL

    @property
    def provider_name(self) -> str:
        return "fake"

    # Helpers -----------------------------------------------------------------

    def _next_reply(self, model_id: str, prompt: GenerationPrompt) -> Reply:
        if self._responder is not None:
            return self._responder(model_id, prompt)
        with self._lock:
            replies = self._script.get(model_id)
            if not replies:
                return AttemptOutcome.ERROR
            return replies.pop(0) if len(replies) > 1 else replies[0]

    def calls_to(self, model_id: str) -> int:
        with self._lock:
            return sum(1 for call in self.calls if call[0] == model_id)


class ScriptedValidator:
    """Validator returning a fixed score per text; unknown texts score 0."""

    def __init__(self, scores: Dict[str, float], threshold: float = 70.0):
        self._scores = scores
        self._threshold = threshold

    def validate(
        self, text: str, task: Optional[GenerationTask] = None, attempt_id: Optional[str] = None
    ) -> ValidationResult:
        score = self._scores.get(text.strip(), 0.0)
        passed = score >= self._threshold
        return ValidationResult(
            passed=passed,
            quality_score=score,
            issues=[] if passed else [f"SCRIPTED: score {score}"],
            attempt_id=attempt_id,
        )


def make_registry(
    domain: Sequence[str] = ("model-a", "model-b"),
    synthesis: Sequence[str] = ("synth-a",),
    large: Sequence[str] = ("large-a",),
) -> ModelRegistry:
    return ModelRegistry.from_model_ids(
        {ModelTier.DOMAIN: domain, ModelTier.SYNTHESIS: synthesis, ModelTier.LARGE: large}
    )


def make_task(
    task_id: str = "memory",
    domain_key: Optional[str] = None,
    input_text: str = "Memory scores: list learning average, delayed recall average.",
    tier: ModelTier = ModelTier.DOMAIN,
    dependencies: Optional[List[str]] = None,
    builder: Optional[PromptBuilder] = None,
) -> GenerationTask:
    domain_key = domain_key or task_id
    builder = builder or PromptBuilder(InMemoryPromptTemplateStore.with_defaults())
    return GenerationTask(
        task_id=task_id,
        domain_key=domain_key,
        input_text=input_text,
        tier=tier,
        prompt_template_id=builder.template_id_for(domain_key),
        dependencies=list(dependencies or []),
    )


@pytest.fixture
def good_narrative() -> str:
    return GOOD_NARRATIVE


@pytest.fixture
def prompt_builder() -> PromptBuilder:
    return PromptBuilder(InMemoryPromptTemplateStore.with_defaults())


@pytest.fixture
def usage_log():
    log = UsageLog()
    yield log
    log.close()


@pytest.fixture
def build_orchestrator(usage_log, prompt_builder):
    """Factory wiring an orchestrator around a backend and validator."""

    def _build(backend, validator, registry=None, cache=None, **kwargs):
        registry = registry or make_registry()
        selector = ModelSelector(registry, backend)
        return GenerationOrchestrator(
            adapter=backend,
            selector=selector,
            validator=validator,
            cache=cache if cache is not None else InMemoryNarrativeCache(),
            prompt_builder=prompt_builder,
            usage_log=usage_log,
            **kwargs,
        )

    return _build
