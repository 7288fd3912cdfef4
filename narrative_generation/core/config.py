"""
Configuration for the Narrative Generation Orchestrator

This module defines the configuration dataclass used to wire and run the
orchestrator. Configuration is:
    1. Loaded from environment variables (with .env support)
    2. Validated at startup to fail fast on misconfiguration
    3. Treated as read-only once the pipeline is built

Configuration Hierarchy:
    OrchestratorConfiguration
    ├── Backend Settings (kind, provider, API keys, endpoints, timeouts)
    ├── Model Settings (per-tier candidate lists)
    ├── Retry & Validation Settings (retries, threshold, exhaustion policy)
    ├── Scheduling Settings (worker count, task budget)
    └── Storage Settings (cache, usage log, outputs, prompts)

Usage:
    from narrative_generation.core.config import OrchestratorConfiguration

    # Load from environment
    config = OrchestratorConfiguration.from_environment()

    # Or configure programmatically
    config = OrchestratorConfiguration(backend_kind=BackendKind.LOCAL, worker_count=3)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from narrative_generation.core.constants import DEFAULT_TIER_MODELS, HOSTED_TIER_MODELS
from narrative_generation.core.enums import BackendKind, ExhaustionPolicy, ModelTier
from narrative_generation.core.exceptions import ConfigurationError


# =============================================================================
# STAGE 1: DEFAULT VALUES
# =============================================================================


class ConfigDefaults:
    """Default configuration values."""

    # -------------------------------------------------------------------------
    # 1.1 Backend Defaults
    # -------------------------------------------------------------------------
    DEFAULT_BACKEND_KIND = BackendKind.LOCAL
    DEFAULT_HOSTED_PROVIDER = "openai"
    DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434/v1"
    DEFAULT_CALL_TIMEOUT = 120.0  # seconds per backend call
    DEFAULT_RATE_LIMIT_DELAY = 0.0  # seconds between calls per adapter

    # -------------------------------------------------------------------------
    # 1.2 Retry & Validation Defaults
    # -------------------------------------------------------------------------
    DEFAULT_MAX_RETRIES = 2
    DEFAULT_RETRY_DELAY = 0.0
    DEFAULT_VALIDATION_THRESHOLD = 70.0
    DEFAULT_EXHAUSTION_POLICY = ExhaustionPolicy.DEGRADE
    DEFAULT_MAX_OUTPUT_TOKENS = 1024

    # -------------------------------------------------------------------------
    # 1.3 Scheduling Defaults
    # -------------------------------------------------------------------------
    DEFAULT_WORKER_COUNT = 3
    DEFAULT_TASK_TIME_BUDGET = 600.0  # seconds across all retries/fallbacks

    # -------------------------------------------------------------------------
    # 1.4 Storage Defaults
    # -------------------------------------------------------------------------
    DEFAULT_CACHE_LOCATION = ".narrative_cache"
    DEFAULT_OUTPUT_DIR = "generated_narratives"
    DEFAULT_LOG_LEVEL = "INFO"


def _default_tier_models(
    backend_kind: BackendKind = BackendKind.LOCAL, hosted_provider: str = "openai"
) -> Dict[ModelTier, List[str]]:
    """Default candidate lists for the backend in use."""
    source = DEFAULT_TIER_MODELS
    if backend_kind == BackendKind.HOSTED:
        source = HOSTED_TIER_MODELS.get(hosted_provider, DEFAULT_TIER_MODELS)
    return {ModelTier(tier): list(models) for tier, models in source.items()}


def _split_models(raw: Optional[str]) -> Optional[List[str]]:
    """Parse a comma-separated model list from the environment."""
    if raw is None:
        return None
    models = [m.strip() for m in raw.split(",") if m.strip()]
    return models or None


# =============================================================================
# STAGE 2: CONFIGURATION DATACLASS
# =============================================================================


@dataclass
class OrchestratorConfiguration:
    """
    Configuration for the narrative generation orchestrator.

    Example:
        >>> config = OrchestratorConfiguration.from_environment()
        >>> config.validate()
        >>> config.max_retries
        2
    """

    # -------------------------------------------------------------------------
    # 2.1 Backend Configuration
    # -------------------------------------------------------------------------
    backend_kind: BackendKind = ConfigDefaults.DEFAULT_BACKEND_KIND
    """Where models run: 'local' (Ollama) or 'hosted' (API)."""

    hosted_provider: str = ConfigDefaults.DEFAULT_HOSTED_PROVIDER
    """Hosted API provider: 'openai' or 'gemini'."""

    openai_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None

    ollama_base_url: str = ConfigDefaults.DEFAULT_OLLAMA_BASE_URL
    """OpenAI-compatible endpoint of the local Ollama server."""

    call_timeout: float = ConfigDefaults.DEFAULT_CALL_TIMEOUT
    """Hard timeout for a single backend call, in seconds."""

    rate_limit_delay: float = ConfigDefaults.DEFAULT_RATE_LIMIT_DELAY
    """Minimum delay between calls issued by one adapter, in seconds."""

    # -------------------------------------------------------------------------
    # 2.2 Model Configuration
    # -------------------------------------------------------------------------
    tier_models: Dict[ModelTier, List[str]] = field(default_factory=_default_tier_models)
    """Ordered candidate model ids per tier."""

    # -------------------------------------------------------------------------
    # 2.3 Retry & Validation Configuration
    # -------------------------------------------------------------------------
    max_retries: int = ConfigDefaults.DEFAULT_MAX_RETRIES
    """Attempts per candidate model before falling back to the next."""

    retry_delay: float = ConfigDefaults.DEFAULT_RETRY_DELAY
    """Pause before retrying the same model, in seconds."""

    validation_threshold: float = ConfigDefaults.DEFAULT_VALIDATION_THRESHOLD
    """Minimum quality score (0-100) for immediate acceptance."""

    exhaustion_policy: ExhaustionPolicy = ConfigDefaults.DEFAULT_EXHAUSTION_POLICY
    """Degrade to a flagged best effort, or hard-fail, on exhaustion."""

    temperature: Optional[float] = None
    """Sampling temperature; None uses tier defaults (0.2 / 0.35 / 0.3)."""

    max_output_tokens: int = ConfigDefaults.DEFAULT_MAX_OUTPUT_TOKENS

    # -------------------------------------------------------------------------
    # 2.4 Scheduling Configuration
    # -------------------------------------------------------------------------
    worker_count: int = ConfigDefaults.DEFAULT_WORKER_COUNT
    """Concurrent workers; bounds concurrent backend calls."""

    task_time_budget: float = ConfigDefaults.DEFAULT_TASK_TIME_BUDGET
    """Wall-clock budget per task across all retries and fallbacks."""

    # -------------------------------------------------------------------------
    # 2.5 Storage Configuration
    # -------------------------------------------------------------------------
    cache_location: Optional[str] = ConfigDefaults.DEFAULT_CACHE_LOCATION
    """Directory of the narrative cache; None keeps the cache in memory."""

    usage_log_path: Optional[str] = None
    """JSONL file receiving telemetry records; None keeps them in memory."""

    output_directory: Optional[str] = ConfigDefaults.DEFAULT_OUTPUT_DIR
    """Directory of per-domain output slots; None keeps outputs in memory."""

    prompts_directory: Optional[str] = None
    """Directory of prompt template files."""

    log_level: str = ConfigDefaults.DEFAULT_LOG_LEVEL

    # -------------------------------------------------------------------------
    # 2.6 Validation Methods
    # -------------------------------------------------------------------------

    def validate(self) -> None:
        """
        Validate configuration parameters.

        Checks:
            1. Hosted provider is known and has an API key
            2. Every tier has at least one configured candidate
            3. Numeric parameters are in valid ranges

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if self.backend_kind == BackendKind.HOSTED:
            if self.hosted_provider not in ("openai", "gemini"):
                raise ConfigurationError(
                    f"Unsupported hosted provider: {self.hosted_provider}",
                    context={"supported": "openai, gemini"},
                )
            if self.hosted_provider == "openai" and not self.openai_api_key:
                raise ConfigurationError(
                    "OpenAI API key required when using the hosted OpenAI backend",
                    context={"setting": "OPENAI_API_KEY"},
                )
            if self.hosted_provider == "gemini" and not self.gemini_api_key:
                raise ConfigurationError(
                    "Gemini API key required when using the hosted Gemini backend",
                    context={"setting": "GEMINI_API_KEY"},
                )

        for tier in ModelTier:
            if not self.tier_models.get(tier):
                raise ConfigurationError(
                    f"No candidate models configured for tier '{tier.value}'",
                    context={"setting": f"{tier.value.upper()}_MODELS"},
                )

        if self.max_retries < 1:
            raise ConfigurationError(
                f"max_retries must be at least 1, got {self.max_retries}",
                context={"max_retries": self.max_retries},
            )

        if not (0 <= self.validation_threshold <= 100):
            raise ConfigurationError(
                f"Validation threshold must be 0-100, got {self.validation_threshold}",
                context={"threshold": self.validation_threshold},
            )

        if self.worker_count < 1:
            raise ConfigurationError(
                f"worker_count must be at least 1, got {self.worker_count}",
                context={"worker_count": self.worker_count},
            )

        if self.call_timeout <= 0 or self.task_time_budget <= 0:
            raise ConfigurationError(
                "Timeouts must be positive",
                context={
                    "call_timeout": self.call_timeout,
                    "task_time_budget": self.task_time_budget,
                },
            )

        if self.temperature is not None and not (0.0 <= self.temperature <= 2.0):
            raise ConfigurationError(
                f"Temperature must be 0-2, got {self.temperature}",
                context={"temperature": self.temperature},
            )

    # -------------------------------------------------------------------------
    # 2.7 Factory Methods
    # -------------------------------------------------------------------------

    @classmethod
    def from_environment(
        cls, env_file: Optional[str] = None, validate_on_load: bool = True
    ) -> "OrchestratorConfiguration":
        """
        Load configuration from environment variables.

        STAGE 1: Load .env file (if specified or found)
        STAGE 2: Read environment variables
        STAGE 3: Convert to typed configuration
        STAGE 4: Validate configuration (optional)

        Args:
            env_file: Path to .env file (optional, auto-detected if not provided)
            validate_on_load: Whether to validate after loading

        Returns:
            Configured OrchestratorConfiguration instance

        Raises:
            ConfigurationError: If settings are missing or malformed
        """
        # STAGE 1: Load .env file
        if env_file:
            load_dotenv(env_file)
        else:
            possible_locations = [
                Path.cwd() / ".env",
                Path.cwd() / "narrative_generation" / ".env",
            ]
            for location in possible_locations:
                if location.exists():
                    load_dotenv(location)
                    break

        # STAGE 2: Read environment variables
        try:
            backend_kind = BackendKind(os.getenv("BACKEND_KIND", "local").lower())
            exhaustion_policy = ExhaustionPolicy(
                os.getenv("EXHAUSTION_POLICY", ConfigDefaults.DEFAULT_EXHAUSTION_POLICY.value)
                .lower()
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid enumerated setting: {e}") from e

        hosted_provider = os.getenv(
            "HOSTED_PROVIDER", ConfigDefaults.DEFAULT_HOSTED_PROVIDER
        ).lower()
        tier_models = _default_tier_models(backend_kind, hosted_provider)
        for tier in ModelTier:
            override = _split_models(os.getenv(f"{tier.value.upper()}_MODELS"))
            if override:
                tier_models[tier] = override

        raw_temperature = os.getenv("TEMPERATURE")

        # STAGE 3: Create configuration
        try:
            config = cls(
                # Backend settings
                backend_kind=backend_kind,
                hosted_provider=hosted_provider,
                openai_api_key=os.getenv("OPENAI_API_KEY"),
                gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
                ollama_base_url=os.getenv(
                    "OLLAMA_BASE_URL", ConfigDefaults.DEFAULT_OLLAMA_BASE_URL
                ),
                call_timeout=float(
                    os.getenv("CALL_TIMEOUT", ConfigDefaults.DEFAULT_CALL_TIMEOUT)
                ),
                rate_limit_delay=float(
                    os.getenv("RATE_LIMIT_DELAY", ConfigDefaults.DEFAULT_RATE_LIMIT_DELAY)
                ),
                # Model settings
                tier_models=tier_models,
                # Retry & validation settings
                max_retries=int(os.getenv("MAX_RETRIES", ConfigDefaults.DEFAULT_MAX_RETRIES)),
                retry_delay=float(os.getenv("RETRY_DELAY", ConfigDefaults.DEFAULT_RETRY_DELAY)),
                validation_threshold=float(
                    os.getenv(
                        "VALIDATION_THRESHOLD", ConfigDefaults.DEFAULT_VALIDATION_THRESHOLD
                    )
                ),
                exhaustion_policy=exhaustion_policy,
                temperature=float(raw_temperature) if raw_temperature else None,
                max_output_tokens=int(
                    os.getenv("MAX_OUTPUT_TOKENS", ConfigDefaults.DEFAULT_MAX_OUTPUT_TOKENS)
                ),
                # Scheduling settings
                worker_count=int(os.getenv("WORKER_COUNT", ConfigDefaults.DEFAULT_WORKER_COUNT)),
                task_time_budget=float(
                    os.getenv("TASK_TIME_BUDGET", ConfigDefaults.DEFAULT_TASK_TIME_BUDGET)
                ),
                # Storage settings
                cache_location=os.getenv("CACHE_LOCATION", ConfigDefaults.DEFAULT_CACHE_LOCATION),
                usage_log_path=os.getenv("USAGE_LOG_PATH"),
                output_directory=os.getenv("OUTPUT_DIRECTORY", ConfigDefaults.DEFAULT_OUTPUT_DIR),
                prompts_directory=os.getenv("PROMPTS_DIRECTORY"),
                log_level=os.getenv("LOG_LEVEL", ConfigDefaults.DEFAULT_LOG_LEVEL).upper(),
            )
        except ValueError as e:
            raise ConfigurationError(f"Malformed numeric setting: {e}") from e

        # STAGE 4: Validate
        if validate_on_load:
            config.validate()

        return config

    def temperature_for(self, tier: ModelTier) -> float:
        """Configured temperature, or the tier default."""
        if self.temperature is not None:
            return self.temperature
        return tier.default_temperature

    def to_dict(self) -> dict:
        """Convert configuration to dictionary (for logging/debugging)."""
        return {
            "backend_kind": self.backend_kind.value,
            "hosted_provider": self.hosted_provider,
            "openai_api_key": "***" if self.openai_api_key else None,
            "gemini_api_key": "***" if self.gemini_api_key else None,
            "ollama_base_url": self.ollama_base_url,
            "tier_models": {tier.value: models for tier, models in self.tier_models.items()},
            "max_retries": self.max_retries,
            "validation_threshold": self.validation_threshold,
            "exhaustion_policy": self.exhaustion_policy.value,
            "temperature": self.temperature,
            "worker_count": self.worker_count,
            "call_timeout": self.call_timeout,
            "task_time_budget": self.task_time_budget,
            "cache_location": self.cache_location,
            "usage_log_path": self.usage_log_path,
            "output_directory": self.output_directory,
        }
