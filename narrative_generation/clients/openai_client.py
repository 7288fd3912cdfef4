"""
OpenAI Client - Hosted OpenAI Backend

Concrete backend adapter for OpenAI's chat-completions API. The local
OllamaClient reuses this implementation against Ollama's
OpenAI-compatible endpoint.

Why Separate File:
    1. Single Responsibility: one provider per file
    2. Provider-specific handling: usage reporting, error classes
"""

from typing import Optional, Set

from loguru import logger

from narrative_generation.clients.llm_client import BaseBackendAdapter, ProviderReply
from narrative_generation.core.enums import BackendKind
from narrative_generation.core.exceptions import BackendCallError, BackendUnavailableError
from narrative_generation.core.models import GenerationParams, GenerationPrompt


# =============================================================================
# STAGE 1: OPENAI CLIENT IMPLEMENTATION
# =============================================================================


class OpenAIClient(BaseBackendAdapter):
    """
    OpenAI API adapter for narrative generation.

    What it does:
        Sends the system and user prompt as chat messages and returns the
        first choice, with token usage from the API response.

    Why it exists:
        1. Encapsulates OpenAI-specific API logic
        2. Translates SDK exceptions to domain exceptions

    When to use:
        - backend_kind=hosted with hosted_provider=openai

    Example:
        >>> client = OpenAIClient(api_key="...")
        >>> response = client.generate("gpt-4o-mini", prompt, GenerationParams())
    """

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        rate_limit_delay: float = 0.0,
    ):
        """
        Initialize OpenAI client.

        STAGE 1.1: Initialize base class
        STAGE 1.2: Configure OpenAI SDK

        Args:
            api_key: OpenAI API key
            base_url: Alternative OpenAI-compatible endpoint
            rate_limit_delay: Seconds between API calls
        """
        # =====================================================================
        # STAGE 1.1: INITIALIZE BASE CLASS
        # =====================================================================
        super().__init__(rate_limit_delay=rate_limit_delay)
        self._api_key = api_key
        self._base_url = base_url

        # =====================================================================
        # STAGE 1.2: CONFIGURE OPENAI SDK
        # =====================================================================
        self._sdk = None
        self._client = None
        self._initialize_client()

        logger.info(
            f"{type(self).__name__} initialized | Endpoint: {base_url or 'api.openai.com'}"
        )

    def _initialize_client(self) -> None:
        """
        Initialize the OpenAI client.

        Lazy import to avoid requiring openai at module load.
        """
        try:
            import openai

            self._sdk = openai
            # The orchestrator owns retries; the SDK must not repeat calls on its own
            self._client = openai.OpenAI(
                api_key=self._api_key, base_url=self._base_url, max_retries=0
            )

        except ImportError:
            raise BackendUnavailableError(
                "openai package not installed. Install with: pip install openai",
                provider=self.provider_name,
            )
        except Exception as e:
            raise BackendUnavailableError(
                f"Failed to initialize {self.provider_name} client: {e}",
                provider=self.provider_name,
                original_error=e,
            )

    # =========================================================================
    # STAGE 2: API CALL IMPLEMENTATION
    # =========================================================================

    def _call_api(
        self, model_id: str, prompt: GenerationPrompt, params: GenerationParams
    ) -> ProviderReply:
        """
        Make the chat-completions call.

        Raises:
            BackendCallError: Rejected call or empty response
            BackendUnavailableError: Endpoint unreachable
        """
        messages = []
        if prompt.system:
            messages.append({"role": "system", "content": prompt.system})
        messages.append({"role": "user", "content": prompt.user})

        try:
            response = self._client.chat.completions.create(
                model=model_id,
                messages=messages,
                temperature=params.temperature,
                max_tokens=params.max_output_tokens,
                timeout=params.timeout_seconds,
            )
        # APITimeoutError subclasses APIConnectionError; a slow call is not an outage
        except self._sdk.APITimeoutError as e:
            raise BackendCallError(
                f"{self.provider_name} request timed out",
                provider=self.provider_name,
                original_error=e,
                context={"model": model_id},
            )
        except self._sdk.APIConnectionError as e:
            raise self._connection_error(e)
        except self._sdk.APIError as e:
            raise BackendCallError(
                f"{self.provider_name} API error: {e}",
                provider=self.provider_name,
                original_error=e,
                context={"model": model_id},
            )

        if response.choices:
            message = response.choices[0].message
            if message.content:
                usage = getattr(response, "usage", None)
                return ProviderReply(
                    text=message.content,
                    tokens_in=getattr(usage, "prompt_tokens", None),
                    tokens_out=getattr(usage, "completion_tokens", None),
                )

        raise BackendCallError(
            f"{self.provider_name} returned empty response",
            provider=self.provider_name,
            context={"model": model_id},
        )

    def list_available_models(self) -> Set[str]:
        """
        Model ids visible to this API key.

        Raises:
            BackendUnavailableError: If the endpoint cannot be reached
        """
        try:
            return {model.id for model in self._client.models.list()}
        except self._sdk.APIConnectionError as e:
            raise self._connection_error(e)
        except self._sdk.APIError as e:
            raise BackendUnavailableError(
                f"Could not list {self.provider_name} models: {e}",
                provider=self.provider_name,
                original_error=e,
            )

    def _connection_error(self, error: Exception) -> BackendUnavailableError:
        return BackendUnavailableError(
            f"{self.provider_name} endpoint unreachable",
            provider=self.provider_name,
            original_error=error,
            context={"endpoint": self._base_url or "api.openai.com"},
        )

    # =========================================================================
    # STAGE 3: PROPERTIES
    # =========================================================================

    @property
    def provider_name(self) -> str:
        """Return provider name."""
        return "openai"

    @property
    def backend_kind(self) -> BackendKind:
        return BackendKind.HOSTED
