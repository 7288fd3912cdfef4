"""
Backend Adapter Protocol and Base Implementation

This module defines the interface every language-model backend exposes to
the orchestrator and a base class with the behavior all backends share
(hard timeouts, error mapping, rate limiting, token estimation, metrics).

Protocol Pattern:
    - BackendAdapterProtocol defines the interface
    - BaseBackendAdapter provides common implementation
    - Concrete adapters (OllamaClient, OpenAIClient, GeminiClient) extend base

Why This Design:
    1. The orchestrator never branches on backend kind
    2. Every call returns the same BackendResponse shape
    3. Timeouts and provider errors become attempt outcomes, not exceptions

Pipeline Position:
    Orchestrator → [BackendAdapter.generate] → Validator
"""

import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Optional, Protocol, Set, runtime_checkable

from loguru import logger

from narrative_generation.core.enums import AttemptOutcome, BackendKind
from narrative_generation.core.exceptions import BackendCallError, BackendUnavailableError
from narrative_generation.core.models import BackendResponse, GenerationParams, GenerationPrompt
from narrative_generation.core.text_utils import estimate_tokens, strip_think_blocks


# =============================================================================
# STAGE 1: BACKEND ADAPTER PROTOCOL
# =============================================================================
# Defines the contract that all backend adapters must follow.


@runtime_checkable
class BackendAdapterProtocol(Protocol):
    """
    Protocol defining the interface for backend adapters.

    What it does:
        Specifies the methods the orchestrator and model selector call,
        enabling type-safe dependency injection and fakes in tests.

    Required Methods:
        generate(model_id, prompt, params) → BackendResponse (never raises
            for per-call failures; status carries success/error/timeout)
        list_available_models() → Set of model ids the backend can serve

    Properties:
        backend_kind → local or hosted
        provider_name → ollama, openai, gemini
    """

    def generate(
        self, model_id: str, prompt: GenerationPrompt, params: GenerationParams
    ) -> BackendResponse:
        """
        Run one generation call.

        Raises:
            BackendUnavailableError: If the backend cannot be reached at all
        """
        ...

    def list_available_models(self) -> Set[str]:
        """
        Model ids currently servable.

        Raises:
            BackendUnavailableError: If the backend cannot be reached
        """
        ...

    @property
    def backend_kind(self) -> BackendKind:
        ...

    @property
    def provider_name(self) -> str:
        ...


@dataclass
class ProviderReply:
    """Raw reply from a provider call; token counts are None when unreported."""

    text: str
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None


# =============================================================================
# STAGE 2: BASE BACKEND ADAPTER (ABSTRACT)
# =============================================================================


class BaseBackendAdapter(ABC):
    """
    Abstract base class for backend adapters with common functionality.

    What it does:
        Wraps the provider-specific ``_call_api`` so that every call:
        waits out the inter-call rate limit, runs under a hard timeout,
        has provider exceptions mapped to an ``error`` status, has
        ``<think>`` blocks stripped and token usage estimated when the
        provider does not report it.

    Why it exists:
        1. Concrete adapters only implement the API-specific call
        2. A hung provider call cannot block a worker past its timeout
        3. Consistent telemetry across providers

    What subclasses must implement:
        - _call_api(model_id, prompt, params): Actual API call
        - list_available_models(): Model listing
        - provider_name / backend_kind properties

    Timeout Handling:
        Each provider call runs on its own daemon thread, started just
        before the caller begins waiting, so the timeout measures only the
        provider's time to answer. The caller waits at most
        ``params.timeout_seconds``; beyond that the attempt is reported as
        ``timeout`` and the abandoned call finishes (or fails) in the
        background without holding up later calls. Concurrency is bounded
        by the scheduler's workers, each of which waits on one call.
    """

    def __init__(self, rate_limit_delay: float = 0.0):
        """
        Initialize base adapter.

        Args:
            rate_limit_delay: Minimum seconds between call starts
        """
        # =====================================================================
        # STAGE 2.1: STORE CONFIGURATION
        # =====================================================================
        self._rate_limit_delay = rate_limit_delay

        # =====================================================================
        # STAGE 2.2: TRACKING STATE
        # =====================================================================
        self._rate_lock = threading.Lock()
        self._metrics_lock = threading.Lock()
        self._last_call_time: Optional[float] = None
        self._total_calls = 0
        self._failed_calls = 0
        self._timed_out_calls = 0

    # =========================================================================
    # STAGE 3: PUBLIC API
    # =========================================================================

    def generate(
        self, model_id: str, prompt: GenerationPrompt, params: GenerationParams
    ) -> BackendResponse:
        """
        Generate text with rate limiting and a hard timeout.

        Algorithm:
            1. Apply rate limiting (wait if needed)
            2. Submit the provider call and wait up to the timeout
            3. Map timeouts and provider errors to a response status
            4. Strip reasoning blocks and fill in token estimates

        Returns:
            BackendResponse with status success, error or timeout

        Raises:
            BackendUnavailableError: If the backend is unreachable
        """
        # Step 1: Rate limiting
        self._apply_rate_limit()

        # Step 2: Call with hard timeout
        started = time.perf_counter()
        future = self._start_call(model_id, prompt, params)

        try:
            reply = future.result(timeout=params.timeout_seconds)

        except FutureTimeoutError:
            self._record(AttemptOutcome.TIMEOUT)
            logger.warning(
                f"Backend call timed out | Provider: {self.provider_name} | "
                f"Model: {model_id} | Timeout: {params.timeout_seconds:.1f}s"
            )
            return self._failure(
                prompt,
                started,
                AttemptOutcome.TIMEOUT,
                f"Timed out after {params.timeout_seconds:.1f}s",
            )

        except BackendUnavailableError:
            self._record(AttemptOutcome.ERROR)
            raise

        except BackendCallError as e:
            self._record(AttemptOutcome.ERROR)
            logger.warning(
                f"Backend call failed | Provider: {self.provider_name} | "
                f"Model: {model_id} | Error: {e.message}"
            )
            return self._failure(prompt, started, AttemptOutcome.ERROR, e.message)

        except Exception as e:
            self._record(AttemptOutcome.ERROR)
            logger.error(
                f"Unexpected backend error | Provider: {self.provider_name} | "
                f"Model: {model_id} | Error: {e}"
            )
            return self._failure(prompt, started, AttemptOutcome.ERROR, str(e))

        # Step 3: Post-process successful reply
        self._record(AttemptOutcome.SUCCESS)
        text = strip_think_blocks(reply.text)
        return BackendResponse(
            text=text,
            tokens_in=(
                reply.tokens_in
                if reply.tokens_in is not None
                else estimate_tokens(prompt.full_text)
            ),
            tokens_out=reply.tokens_out if reply.tokens_out is not None else estimate_tokens(text),
            duration_ms=(time.perf_counter() - started) * 1000,
            status=AttemptOutcome.SUCCESS,
        )

    # =========================================================================
    # STAGE 4: ABSTRACT METHODS
    # =========================================================================

    @abstractmethod
    def _call_api(
        self, model_id: str, prompt: GenerationPrompt, params: GenerationParams
    ) -> ProviderReply:
        """
        Make the actual provider call. Must be implemented by subclasses.

        Raises:
            BackendCallError: If the call was rejected or returned nothing
            BackendUnavailableError: If the backend cannot be reached
        """
        ...

    @abstractmethod
    def list_available_models(self) -> Set[str]:
        ...

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'ollama', 'openai')."""
        ...

    @property
    @abstractmethod
    def backend_kind(self) -> BackendKind:
        ...

    # =========================================================================
    # STAGE 5: COMMON IMPLEMENTATION
    # =========================================================================

    def _apply_rate_limit(self) -> None:
        """Space call starts at least ``rate_limit_delay`` apart."""
        if self._rate_limit_delay <= 0:
            return

        with self._rate_lock:
            if self._last_call_time is not None:
                elapsed = time.time() - self._last_call_time
                if elapsed < self._rate_limit_delay:
                    time.sleep(self._rate_limit_delay - elapsed)
            self._last_call_time = time.time()

    def _start_call(
        self, model_id: str, prompt: GenerationPrompt, params: GenerationParams
    ) -> "Future[ProviderReply]":
        """Run ``_call_api`` on a fresh daemon thread; the future carries its outcome."""
        future: "Future[ProviderReply]" = Future()
        future.set_running_or_notify_cancel()

        def _run() -> None:
            try:
                future.set_result(self._call_api(model_id, prompt, params))
            except BaseException as e:
                future.set_exception(e)

        threading.Thread(
            target=_run, name=f"backend-call-{self.provider_name}", daemon=True
        ).start()
        return future

    def _failure(
        self, prompt: GenerationPrompt, started: float, status: AttemptOutcome, message: str
    ) -> BackendResponse:
        return BackendResponse(
            text="",
            tokens_in=estimate_tokens(prompt.full_text),
            tokens_out=0,
            duration_ms=(time.perf_counter() - started) * 1000,
            status=status,
            error_message=message,
        )

    def _record(self, outcome: AttemptOutcome) -> None:
        with self._metrics_lock:
            self._total_calls += 1
            if outcome == AttemptOutcome.ERROR:
                self._failed_calls += 1
            elif outcome == AttemptOutcome.TIMEOUT:
                self._timed_out_calls += 1

    # =========================================================================
    # STAGE 6: METRICS
    # =========================================================================

    @property
    def total_calls(self) -> int:
        """Total number of calls issued."""
        return self._total_calls

    @property
    def failed_calls(self) -> int:
        """Number of calls that ended in an error."""
        return self._failed_calls

    @property
    def timed_out_calls(self) -> int:
        return self._timed_out_calls

    @property
    def success_rate(self) -> float:
        """Percentage of successful calls."""
        if self._total_calls == 0:
            return 100.0
        succeeded = self._total_calls - self._failed_calls - self._timed_out_calls
        return (succeeded / self._total_calls) * 100
