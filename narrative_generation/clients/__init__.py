"""
Clients Layer - Language Model Backend Adapters

This layer provides clean abstractions over local and hosted language
model backends, so the orchestrator works with any of them
interchangeably.

Submodules:
    llm_client.py    → Protocol and base implementation (timeouts, error mapping)
    ollama_client.py → Local Ollama server
    openai_client.py → Hosted OpenAI API
    gemini_client.py → Hosted Google Gemini API
    factory.py       → Adapter selection from configuration
"""

from narrative_generation.clients.llm_client import (
    BackendAdapterProtocol,
    BaseBackendAdapter,
    ProviderReply,
)
from narrative_generation.clients.ollama_client import OllamaClient
from narrative_generation.clients.openai_client import OpenAIClient
from narrative_generation.clients.gemini_client import GeminiClient
from narrative_generation.clients.factory import create_backend_adapter

__all__ = [
    "BackendAdapterProtocol",
    "BaseBackendAdapter",
    "ProviderReply",
    "OllamaClient",
    "OpenAIClient",
    "GeminiClient",
    "create_backend_adapter",
]
