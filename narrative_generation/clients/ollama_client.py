"""
Ollama Client - Local Inference Server Backend

Adapter for a local Ollama server. Ollama exposes an OpenAI-compatible
endpoint under ``/v1``, so generation goes through the same openai SDK
calls as the hosted OpenAI adapter; only the endpoint, provider identity
and model listing differ.

Local Model Notes:
    - Reasoning models (qwen3, gpt-oss) emit ``<think>`` blocks; the base
      adapter strips them before the text reaches the validator.
    - Installed models are listed with tags (``qwen3:8b-q4_K_M``,
      ``gemma3:latest``); the selector handles tag matching.
"""

from narrative_generation.clients.openai_client import OpenAIClient
from narrative_generation.core.config import ConfigDefaults
from narrative_generation.core.enums import BackendKind


class OllamaClient(OpenAIClient):
    """
    Local Ollama adapter.

    Example:
        >>> client = OllamaClient()
        >>> "qwen3:8b-q4_K_M" in client.list_available_models()
        True
    """

    def __init__(
        self,
        base_url: str = ConfigDefaults.DEFAULT_OLLAMA_BASE_URL,
        rate_limit_delay: float = 0.0,
    ):
        # Ollama ignores the key, but the SDK requires a non-empty one
        super().__init__(
            api_key="ollama",
            base_url=base_url,
            rate_limit_delay=rate_limit_delay,
        )

    @property
    def provider_name(self) -> str:
        return "ollama"

    @property
    def backend_kind(self) -> BackendKind:
        return BackendKind.LOCAL
