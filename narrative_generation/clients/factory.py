"""
Backend adapter factory.

Chooses the concrete adapter from configuration so that callers only ever
see the BackendAdapterProtocol.
"""

from loguru import logger

from narrative_generation.clients.gemini_client import GeminiClient
from narrative_generation.clients.llm_client import BaseBackendAdapter
from narrative_generation.clients.ollama_client import OllamaClient
from narrative_generation.clients.openai_client import OpenAIClient
from narrative_generation.core.config import OrchestratorConfiguration
from narrative_generation.core.enums import BackendKind
from narrative_generation.core.exceptions import ConfigurationError


def create_backend_adapter(config: OrchestratorConfiguration) -> BaseBackendAdapter:
    """
    Build the adapter selected by ``backend_kind`` and ``hosted_provider``.

    Raises:
        ConfigurationError: Unknown hosted provider
        BackendUnavailableError: Provider SDK missing or failed to initialize
    """
    if config.backend_kind == BackendKind.LOCAL:
        logger.info(f"Creating backend adapter | Kind: local | Endpoint: {config.ollama_base_url}")
        return OllamaClient(
            base_url=config.ollama_base_url,
            rate_limit_delay=config.rate_limit_delay,
        )

    logger.info(f"Creating backend adapter | Kind: hosted | Provider: {config.hosted_provider}")

    if config.hosted_provider == "openai":
        return OpenAIClient(
            api_key=config.openai_api_key,
            rate_limit_delay=config.rate_limit_delay,
        )

    if config.hosted_provider == "gemini":
        return GeminiClient(
            api_key=config.gemini_api_key,
            rate_limit_delay=config.rate_limit_delay,
        )

    raise ConfigurationError(
        f"Unsupported hosted provider: {config.hosted_provider}",
        context={"supported": "openai, gemini"},
    )
