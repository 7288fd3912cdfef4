"""
Tests for environment-driven configuration.
"""

import pytest

from narrative_generation.core.config import OrchestratorConfiguration
from narrative_generation.core.constants import DEFAULT_TIER_MODELS, HOSTED_TIER_MODELS
from narrative_generation.core.enums import BackendKind, ExhaustionPolicy, ModelTier
from narrative_generation.core.exceptions import ConfigurationError


ENV_VARS = [
    "BACKEND_KIND",
    "HOSTED_PROVIDER",
    "OPENAI_API_KEY",
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
    "OLLAMA_BASE_URL",
    "CALL_TIMEOUT",
    "RATE_LIMIT_DELAY",
    "DOMAIN_MODELS",
    "SYNTHESIS_MODELS",
    "LARGE_MODELS",
    "MAX_RETRIES",
    "RETRY_DELAY",
    "VALIDATION_THRESHOLD",
    "EXHAUSTION_POLICY",
    "TEMPERATURE",
    "MAX_OUTPUT_TOKENS",
    "WORKER_COUNT",
    "TASK_TIME_BUDGET",
    "CACHE_LOCATION",
    "USAGE_LOG_PATH",
    "OUTPUT_DIRECTORY",
    "PROMPTS_DIRECTORY",
    "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Empty environment and a working directory without a .env file."""
    for name in ENV_VARS:
        # setenv first so teardown also removes anything load_dotenv adds
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestFromEnvironment:
    """Loading and defaults."""

    def test_defaults_are_local_with_degrade_policy(self, clean_env):
        config = OrchestratorConfiguration.from_environment()

        assert config.backend_kind == BackendKind.LOCAL
        assert config.exhaustion_policy == ExhaustionPolicy.DEGRADE
        assert config.max_retries == 2
        assert config.worker_count == 3
        assert config.validation_threshold == 70
        assert config.temperature is None
        assert config.tier_models[ModelTier.DOMAIN] == DEFAULT_TIER_MODELS["domain"]

    def test_overrides_are_parsed(self, clean_env):
        clean_env.setenv("MAX_RETRIES", "4")
        clean_env.setenv("WORKER_COUNT", "6")
        clean_env.setenv("TEMPERATURE", "0.5")
        clean_env.setenv("EXHAUSTION_POLICY", "HARD_FAIL")
        clean_env.setenv("DOMAIN_MODELS", "qwen3:4b, llama3.2:3b ,")
        clean_env.setenv("CACHE_LOCATION", "/tmp/narratives")

        config = OrchestratorConfiguration.from_environment()

        assert config.max_retries == 4
        assert config.worker_count == 6
        assert config.temperature == 0.5
        assert config.exhaustion_policy == ExhaustionPolicy.HARD_FAIL
        assert config.tier_models[ModelTier.DOMAIN] == ["qwen3:4b", "llama3.2:3b"]
        assert config.cache_location == "/tmp/narratives"

    def test_hosted_defaults_follow_provider(self, clean_env):
        clean_env.setenv("BACKEND_KIND", "hosted")
        clean_env.setenv("HOSTED_PROVIDER", "gemini")
        clean_env.setenv("GOOGLE_API_KEY", "test-key")

        config = OrchestratorConfiguration.from_environment()

        assert config.gemini_api_key == "test-key"
        expected = HOSTED_TIER_MODELS["gemini"]["synthesis"]
        assert config.tier_models[ModelTier.SYNTHESIS] == expected

    def test_env_file_is_loaded(self, clean_env, tmp_path):
        env_file = tmp_path / "custom.env"
        env_file.write_text("WORKER_COUNT=5\nVALIDATION_THRESHOLD=80\n", encoding="utf-8")

        config = OrchestratorConfiguration.from_environment(env_file=str(env_file))

        assert config.worker_count == 5
        assert config.validation_threshold == 80

    def test_malformed_number_raises_configuration_error(self, clean_env):
        clean_env.setenv("MAX_RETRIES", "two")

        with pytest.raises(ConfigurationError, match="Malformed"):
            OrchestratorConfiguration.from_environment()

    def test_unknown_backend_kind_raises(self, clean_env):
        clean_env.setenv("BACKEND_KIND", "quantum")

        with pytest.raises(ConfigurationError):
            OrchestratorConfiguration.from_environment()


class TestValidate:
    """Range and consistency checks."""

    def test_hosted_openai_requires_key(self):
        config = OrchestratorConfiguration(backend_kind=BackendKind.HOSTED)

        with pytest.raises(ConfigurationError, match="OpenAI API key"):
            config.validate()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_retries": 0},
            {"worker_count": 0},
            {"validation_threshold": 120},
            {"call_timeout": 0},
            {"temperature": 3.0},
            {"hosted_provider": "other", "backend_kind": BackendKind.HOSTED},
        ],
    )
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ConfigurationError):
            OrchestratorConfiguration(**overrides).validate()

    def test_empty_tier_rejected(self):
        config = OrchestratorConfiguration()
        config.tier_models[ModelTier.LARGE] = []

        with pytest.raises(ConfigurationError, match="large"):
            config.validate()

    def test_temperature_for_tier(self):
        assert OrchestratorConfiguration().temperature_for(ModelTier.SYNTHESIS) == 0.35
        assert OrchestratorConfiguration(temperature=0.1).temperature_for(ModelTier.DOMAIN) == 0.1

    def test_to_dict_masks_keys(self):
        data = OrchestratorConfiguration(openai_api_key="sk-secret").to_dict()

        assert data["openai_api_key"] == "***"
        assert "sk-secret" not in str(data)
