"""
Narrative Generation Pipeline - Main Orchestrator

This is the PUBLIC API entry point for the narrative generation system. It
wires configuration, backend adapter, model selection, prompt templates,
validation, caching, telemetry and scheduling into one facade.

Architecture Diagram:
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          NarrativePipeline                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   ┌───────────┐    ┌───────────┐    ┌─────────────┐   ┌─────────┐   │
    │   │ Scheduler │ →  │Orchestrat.│ →  │Adapter/Valid│ → │  Slots  │   │
    │   └───────────┘    └───────────┘    └─────────────┘   └─────────┘   │
    │          ↑               ↑                 ↑                        │
    │       tasks      selector, cache     prompt builder                 │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

Why Single Entry Point:
    1. Simple API: callers hand over domain texts and get narratives back
    2. Encapsulation: per-batch wiring (usage log, orchestrator) is hidden
    3. Testability: every component can be overridden with a fake

Usage:
    from narrative_generation import NarrativePipeline

    pipeline = NarrativePipeline.from_environment()
    report = pipeline.generate_narratives({
        "memory": "Memory domain scores ...",
        "executive": "Executive function scores ...",
    })
    print(report.narratives["sirf"])
"""

from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

from loguru import logger

from narrative_generation.cache.narrative_cache import (
    FileNarrativeCache,
    InMemoryNarrativeCache,
    NarrativeCacheProtocol,
)
from narrative_generation.clients.factory import create_backend_adapter
from narrative_generation.clients.llm_client import BackendAdapterProtocol
from narrative_generation.core.config import OrchestratorConfiguration
from narrative_generation.core.constants import SYNTHESIS_DOMAIN_KEY
from narrative_generation.core.enums import AttemptOutcome, ModelTier
from narrative_generation.core.exceptions import (
    BackendCallError,
    ConfigurationError,
    GenerationTimeoutError,
)
from narrative_generation.core.models import (
    BatchReport,
    GenerationParams,
    GenerationPrompt,
    GenerationTask,
)
from narrative_generation.generation.orchestrator import GenerationOrchestrator
from narrative_generation.generation.prompt_builder import (
    DirectoryPromptTemplateStore,
    InMemoryPromptTemplateStore,
    PromptBuilder,
)
from narrative_generation.output.output_slots import (
    FileOutputSlots,
    InMemoryOutputSlots,
    OutputSlots,
)
from narrative_generation.scheduling.task_scheduler import TaskScheduler
from narrative_generation.selection.model_registry import ModelRegistry
from narrative_generation.selection.model_selector import ModelSelector
from narrative_generation.telemetry.usage_log import UsageLog, UsageSummary
from narrative_generation.validation.narrative_validator import NarrativeValidator


# =============================================================================
# STAGE 1: PIPELINE CLASS
# =============================================================================


class NarrativePipeline:
    """
    Main entry point for narrative generation.

    What it does:
        Turns a mapping of domain key → structured text into one narrative
        per domain plus a cross-domain synthesis, using the configured
        backend, candidate models and quality gate.

    Why it exists:
        1. Simple API: one method per batch
        2. Encapsulation: usage log and orchestrator are created per batch
        3. Extensibility: every component is replaceable

    How it works:
        STAGE 1: Initialize long-lived components from configuration
        STAGE 2: On generate_narratives():
            2.1 Build domain tasks and the synthesis task
            2.2 Refresh model availability
            2.3 Run the batch through the scheduler
            2.4 Close the per-batch usage log and keep its summary

    Example:
        >>> pipeline = NarrativePipeline.from_environment()
        >>> report = pipeline.generate_narratives({"memory": memory_text})
        >>> report.accepted
        2
    """

    def __init__(
        self,
        config: OrchestratorConfiguration,
        adapter: Optional[BackendAdapterProtocol] = None,
        registry: Optional[ModelRegistry] = None,
        validator: Optional[NarrativeValidator] = None,
        cache: Optional[NarrativeCacheProtocol] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        output_slots: Optional[OutputSlots] = None,
    ):
        """
        Initialize pipeline with configuration and optional component overrides.

        Args:
            config: Orchestrator configuration
            adapter: Optional backend adapter override (for testing)
            registry: Optional model registry override
            validator: Optional validator override
            cache: Optional narrative cache override
            prompt_builder: Optional prompt builder override
            output_slots: Optional output slots override
        """
        # =====================================================================
        # STAGE 1.1: STORE CONFIGURATION
        # =====================================================================
        self._config = config

        # =====================================================================
        # STAGE 1.2: BACKEND AND MODEL SELECTION
        # =====================================================================
        self._adapter = adapter if adapter is not None else create_backend_adapter(config)
        self._registry = (
            registry if registry is not None else ModelRegistry.from_model_ids(config.tier_models)
        )
        self._selector = ModelSelector(self._registry, self._adapter)

        # =====================================================================
        # STAGE 1.3: QUALITY GATE, CACHE, PROMPTS, OUTPUT
        # =====================================================================
        self._validator = validator or NarrativeValidator(threshold=config.validation_threshold)
        self._cache = cache if cache is not None else self._create_cache(config)
        self._prompt_builder = prompt_builder or self._create_prompt_builder(config)
        self._output_slots = (
            output_slots if output_slots is not None else self._create_output_slots(config)
        )

        # =====================================================================
        # STAGE 1.4: TRACKING STATE
        # =====================================================================
        self._batches_run = 0
        self._last_report: Optional[BatchReport] = None
        self._last_usage_summary: Optional[UsageSummary] = None

        logger.info(
            f"NarrativePipeline initialized | Backend: {self._adapter.provider_name} | "
            f"Models: {len(self._registry)} | Workers: {config.worker_count} | "
            f"Policy: {config.exhaustion_policy.value}"
        )

    # =========================================================================
    # STAGE 2: TASK CONSTRUCTION
    # =========================================================================

    def build_tasks(
        self, domain_inputs: Mapping[str, str], include_synthesis: bool = True
    ) -> List[GenerationTask]:
        """
        Build one task per domain, plus a synthesis task depending on all of them.

        Args:
            domain_inputs: Domain key → structured domain text
            include_synthesis: Add the cross-domain synthesis task

        Returns:
            Tasks in dispatch order (domains first, synthesis last)
        """
        if not domain_inputs:
            raise ConfigurationError("No domain inputs given", context={"domains": 0})

        tasks = [
            GenerationTask(
                task_id=domain_key,
                domain_key=domain_key,
                input_text=text,
                tier=ModelTier.DOMAIN,
                prompt_template_id=self._prompt_builder.template_id_for(domain_key),
                temperature=self._config.temperature,
                max_output_tokens=self._config.max_output_tokens,
            )
            for domain_key, text in domain_inputs.items()
        ]

        if include_synthesis:
            if SYNTHESIS_DOMAIN_KEY in domain_inputs:
                raise ConfigurationError(
                    f"'{SYNTHESIS_DOMAIN_KEY}' is reserved for the synthesis task",
                    context={"domain": SYNTHESIS_DOMAIN_KEY},
                )
            tasks.append(
                GenerationTask(
                    task_id=SYNTHESIS_DOMAIN_KEY,
                    domain_key=SYNTHESIS_DOMAIN_KEY,
                    input_text="",
                    tier=ModelTier.SYNTHESIS,
                    prompt_template_id=self._prompt_builder.template_id_for(
                        SYNTHESIS_DOMAIN_KEY
                    ),
                    temperature=self._config.temperature,
                    max_output_tokens=self._config.max_output_tokens,
                    dependencies=[task.task_id for task in tasks],
                )
            )

        return tasks

    # =========================================================================
    # STAGE 3: MAIN GENERATION API
    # =========================================================================

    def generate_narratives(
        self,
        domain_inputs: Optional[Mapping[str, str]] = None,
        tasks: Optional[Sequence[GenerationTask]] = None,
        include_synthesis: bool = True,
    ) -> BatchReport:
        """
        Generate narratives for one batch.

        Pass either ``domain_inputs`` (tasks are built for you) or a
        prepared ``tasks`` list.

        Raises:
            ConfigurationError: Bad inputs or batch structure
            BackendUnavailableError: Backend unreachable; batch aborted
        """
        # =====================================================================
        # STAGE 3.1: RESOLVE TASKS
        # =====================================================================
        if tasks is None:
            if domain_inputs is None:
                raise ConfigurationError("Provide domain_inputs or tasks")
            tasks = self.build_tasks(domain_inputs, include_synthesis=include_synthesis)

        # =====================================================================
        # STAGE 3.2: REFRESH AVAILABILITY
        # =====================================================================
        self._selector.refresh()

        # =====================================================================
        # STAGE 3.3: RUN THE BATCH
        # =====================================================================
        with UsageLog(self._config.usage_log_path) as usage_log:
            orchestrator = GenerationOrchestrator(
                adapter=self._adapter,
                selector=self._selector,
                validator=self._validator,
                cache=self._cache,
                prompt_builder=self._prompt_builder,
                usage_log=usage_log,
                max_retries=self._config.max_retries,
                call_timeout=self._config.call_timeout,
                task_time_budget=self._config.task_time_budget,
                exhaustion_policy=self._config.exhaustion_policy,
                retry_delay=self._config.retry_delay,
            )
            scheduler = TaskScheduler(
                orchestrator, self._output_slots, worker_count=self._config.worker_count
            )
            try:
                report = scheduler.run_batch(tasks)
            finally:
                self._last_usage_summary = usage_log.summary()

        # =====================================================================
        # STAGE 3.4: SUMMARY
        # =====================================================================
        self._batches_run += 1
        self._last_report = report
        summary = self._last_usage_summary
        logger.info(
            f"Narratives generated | Accepted: {report.accepted}/{len(tasks)} | "
            f"Calls: {summary.total_calls} | Tokens: {summary.total_tokens} | "
            f"Models: {summary.models_used}"
        )
        return report

    # =========================================================================
    # STAGE 4: DIAGNOSTICS
    # =========================================================================

    def smoke_test(self, prompt: str = "Reply with the single word: ready") -> str:
        """
        Send one short prompt to the preferred available domain model.

        Returns:
            The model's reply text

        Raises:
            NoModelAvailableError: No domain candidate is installed/served
            GenerationTimeoutError: The call exceeded the call timeout
            BackendCallError: The call failed
        """
        model = self._selector.select_best(ModelTier.DOMAIN)
        response = self._adapter.generate(
            model.model_id,
            GenerationPrompt(system="", user=prompt),
            GenerationParams(
                temperature=0.0, max_output_tokens=16, timeout_seconds=self._config.call_timeout
            ),
        )
        if response.status == AttemptOutcome.TIMEOUT:
            raise GenerationTimeoutError(model.model_id, self._config.call_timeout)
        if not response.succeeded:
            raise BackendCallError(
                response.error_message or "call failed",
                provider=self._adapter.provider_name,
                context={"model_id": model.model_id},
            )
        logger.info(f"Smoke test passed | Model: {model.model_id} | Reply: {response.text!r}")
        return response.text

    # =========================================================================
    # STAGE 5: FACTORY METHODS
    # =========================================================================

    @classmethod
    def from_environment(cls, env_file: Optional[str] = None) -> "NarrativePipeline":
        """
        Create pipeline from environment configuration.

        Raises:
            ConfigurationError: If required settings are missing or invalid

        Example:
            >>> pipeline = NarrativePipeline.from_environment()
        """
        config = OrchestratorConfiguration.from_environment(
            env_file=env_file, validate_on_load=True
        )
        return cls(config)

    # =========================================================================
    # STAGE 6: PRIVATE HELPERS
    # =========================================================================

    @staticmethod
    def _create_cache(config: OrchestratorConfiguration) -> NarrativeCacheProtocol:
        if config.cache_location:
            return FileNarrativeCache(config.cache_location)
        return InMemoryNarrativeCache()

    @staticmethod
    def _create_prompt_builder(config: OrchestratorConfiguration) -> PromptBuilder:
        if config.prompts_directory:
            return PromptBuilder(DirectoryPromptTemplateStore(config.prompts_directory))
        return PromptBuilder(InMemoryPromptTemplateStore.with_defaults())

    @staticmethod
    def _create_output_slots(config: OrchestratorConfiguration) -> OutputSlots:
        if config.output_directory:
            return FileOutputSlots(config.output_directory)
        return InMemoryOutputSlots()

    # =========================================================================
    # STAGE 7: PROPERTIES
    # =========================================================================

    @property
    def config(self) -> OrchestratorConfiguration:
        return self._config

    @property
    def adapter(self) -> BackendAdapterProtocol:
        return self._adapter

    @property
    def selector(self) -> ModelSelector:
        return self._selector

    @property
    def cache(self) -> NarrativeCacheProtocol:
        return self._cache

    @property
    def prompt_builder(self) -> PromptBuilder:
        return self._prompt_builder

    @property
    def output_slots(self) -> OutputSlots:
        return self._output_slots

    @property
    def batches_run(self) -> int:
        return self._batches_run

    @property
    def last_report(self) -> Optional[BatchReport]:
        return self._last_report

    @property
    def last_usage_summary(self) -> Optional[UsageSummary]:
        """Telemetry summary of the most recent batch, including aborted ones."""
        return self._last_usage_summary


def load_domain_inputs(directory: Union[str, Path]) -> Dict[str, str]:
    """Read ``<domain>.txt`` files from a directory into domain inputs."""
    directory = Path(directory)
    if not directory.is_dir():
        raise ConfigurationError(
            f"Domain input directory not found: {directory}", context={"path": str(directory)}
        )
    return {
        path.stem: path.read_text(encoding="utf-8")
        for path in sorted(directory.glob("*.txt"))
    }


# =============================================================================
# STAGE 8: SMOKE TEST
# =============================================================================

if __name__ == "__main__":
    import sys

    from narrative_generation.core.logging import configure_logging

    configure_logging("INFO")

    print("\n--- Narrative Generation Pipeline Smoke Test ---\n")

    try:
        # 1. Initialize Pipeline
        print("1. Initializing pipeline from environment...")
        pipeline = NarrativePipeline.from_environment()
        print("   [OK] Pipeline initialized successfully")

        # 2. Inspect Configuration
        config = pipeline.config
        print("\n2. Configuration loaded:")
        print(f"   - Backend: {config.backend_kind.value} ({pipeline.adapter.provider_name})")
        print(f"   - Workers: {config.worker_count}")
        print(f"   - Exhaustion policy: {config.exhaustion_policy.value}")
        print(f"   - Cache: {config.cache_location or 'in-memory'}")

        # 3. Model availability
        print("\n3. Model availability:")
        available = pipeline.selector.refresh()
        print(f"   - Backend reports {len(available)} models")
        for tier in ModelTier:
            names = [m.model_id for m in pipeline.selector.available_candidates(tier)]
            print(f"   - {tier.value}: {names or 'none'}")

        # 4. Ping
        print("\n4. Pinging preferred domain model...")
        reply = pipeline.smoke_test()
        print(f"   - Reply: {reply.strip()[:60]}")

        print("\n[OK] SMOKE TEST PASSED: System is ready for generation.")

    except Exception as e:
        print(f"\n[FAIL] SMOKE TEST FAILED: {e}")
        import traceback

        traceback.print_exc()
        sys.exit(1)
