"""
Gemini Client - Hosted Google Gemini Backend

Concrete backend adapter for Google's Gemini API via the
google-generativeai package.

Why Separate File:
    1. Single Responsibility: one provider per file
    2. Provider-specific handling: safety settings, system instructions
"""

from typing import Set

from loguru import logger

from narrative_generation.clients.llm_client import BaseBackendAdapter, ProviderReply
from narrative_generation.core.enums import BackendKind
from narrative_generation.core.exceptions import BackendCallError, BackendUnavailableError
from narrative_generation.core.models import GenerationParams, GenerationPrompt


# Clinical narratives discuss diagnoses and symptoms that default filters block
SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
]


# =============================================================================
# STAGE 1: GEMINI CLIENT IMPLEMENTATION
# =============================================================================


class GeminiClient(BaseBackendAdapter):
    """
    Google Gemini adapter for narrative generation.

    What it does:
        Builds a GenerativeModel per call (the model id and system
        instruction vary per task) and returns the response text with
        token usage from ``usage_metadata``.

    When to use:
        - backend_kind=hosted with hosted_provider=gemini

    Example:
        >>> client = GeminiClient(api_key="...")
        >>> response = client.generate("gemini-1.5-flash", prompt, GenerationParams())
    """

    def __init__(self, api_key: str, rate_limit_delay: float = 0.0):
        """
        Initialize Gemini client.

        Args:
            api_key: Google API key (Gemini)
            rate_limit_delay: Seconds between API calls
        """
        super().__init__(rate_limit_delay=rate_limit_delay)
        self._api_key = api_key
        self._genai = None
        self._initialize_client()

        logger.info("GeminiClient initialized")

    def _initialize_client(self) -> None:
        """
        Configure the Gemini SDK.

        Lazy import to avoid requiring google-generativeai at module load.
        """
        try:
            import google.generativeai as genai

            genai.configure(api_key=self._api_key)
            self._genai = genai

        except ImportError:
            raise BackendUnavailableError(
                "google-generativeai package not installed. "
                "Install with: pip install google-generativeai",
                provider="gemini",
            )
        except Exception as e:
            raise BackendUnavailableError(
                f"Failed to initialize Gemini client: {e}", provider="gemini", original_error=e
            )

    # =========================================================================
    # STAGE 2: API CALL IMPLEMENTATION
    # =========================================================================

    def _call_api(
        self, model_id: str, prompt: GenerationPrompt, params: GenerationParams
    ) -> ProviderReply:
        """
        Make the Gemini API call.

        Raises:
            BackendCallError: If the call was blocked, rejected or empty
        """
        try:
            model = self._genai.GenerativeModel(
                model_name=model_id,
                safety_settings=SAFETY_SETTINGS,
                system_instruction=prompt.system or None,
            )
            # retry=None: one provider call per attempt
            response = model.generate_content(
                prompt.user,
                generation_config={
                    "temperature": params.temperature,
                    "max_output_tokens": params.max_output_tokens,
                },
                request_options={"timeout": params.timeout_seconds, "retry": None},
            )
        except Exception as e:
            raise BackendCallError(
                f"Gemini API error: {e}",
                provider="gemini",
                original_error=e,
                context={"model": model_id},
            )

        feedback = getattr(response, "prompt_feedback", None)
        if feedback is not None and feedback.block_reason:
            raise BackendCallError(
                f"Gemini blocked the prompt: {feedback.block_reason}",
                provider="gemini",
                context={"model": model_id},
            )

        text = ""
        if response.candidates:
            candidate = response.candidates[0]
            if candidate.content and candidate.content.parts:
                text = "".join(part.text for part in candidate.content.parts)

        if not text:
            raise BackendCallError(
                "Gemini returned empty response", provider="gemini", context={"model": model_id}
            )

        usage = getattr(response, "usage_metadata", None)
        return ProviderReply(
            text=text,
            tokens_in=getattr(usage, "prompt_token_count", None),
            tokens_out=getattr(usage, "candidates_token_count", None),
        )

    def list_available_models(self) -> Set[str]:
        """
        Gemini models supporting ``generateContent``, without the ``models/`` prefix.

        Raises:
            BackendUnavailableError: If the API cannot be reached
        """
        try:
            return {
                model.name.split("/", 1)[-1]
                for model in self._genai.list_models()
                if "generateContent" in model.supported_generation_methods
            }
        except Exception as e:
            raise BackendUnavailableError(
                f"Could not list Gemini models: {e}", provider="gemini", original_error=e
            )

    # =========================================================================
    # STAGE 3: PROPERTIES
    # =========================================================================

    @property
    def provider_name(self) -> str:
        return "gemini"

    @property
    def backend_kind(self) -> BackendKind:
        return BackendKind.HOSTED
