"""Primary-with-fallback and ensemble orchestration over classifier adapters."""
import asyncio
import logging
import time
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Set

from plantdx.application import consensus
from plantdx.application.ports import ClassifierPort, ImagePreprocessorPort
from plantdx.application.registry import ProviderRegistry
from plantdx.application.retry import RetryExecutor
from plantdx.application.translator import to_diagnosis_result
from plantdx.domain.errors import (
    AllProvidersFailedError,
    DiagnosisError,
    DiagnosisTimeoutError,
    NoPredictionError,
    ProviderCallError,
    ProviderNotAvailableError,
)
from plantdx.domain.models import (
    DiagnosisMode,
    DiagnosisResult,
    NormalizedImage,
    ProviderError,
    ProviderResult,
)


logger = logging.getLogger(__name__)


class OrchestratorState(str, Enum):
    IDLE = "idle"
    PREPROCESSING = "preprocessing"
    DISPATCHING = "dispatching"
    COLLECTING = "collecting"
    FALLBACK_PROBING = "fallback_probing"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class DiagnosisRun:
    """State owned by a single diagnosis request."""

    def __init__(self, mode: DiagnosisMode):
        self.mode = mode
        self.state = OrchestratorState.IDLE
        self.history: List[OrchestratorState] = [self.state]
        self.errors: List[ProviderError] = []
        self.pending: Set[str] = set()
        self.started = time.perf_counter()

    def transition(self, state: OrchestratorState) -> None:
        logger.debug("Diagnosis (%s): %s -> %s", self.mode, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def elapsed_ms(self) -> int:
        return int(round((time.perf_counter() - self.started) * 1000.0))


class DiagnosisOrchestrator:
    def __init__(
        self,
        registry: ProviderRegistry,
        adapters: Mapping[str, ClassifierPort],
        preprocessor: ImagePreprocessorPort,
        executor: Optional[RetryExecutor] = None,
        request_timeout_s: float = 60.0,
    ):
        self.registry = registry
        self.adapters: Dict[str, ClassifierPort] = dict(adapters)
        self.preprocessor = preprocessor
        self.executor = executor or RetryExecutor()
        self.request_timeout_s = request_timeout_s

    async def diagnose(
        self,
        raw_images: Sequence[bytes],
        mode: DiagnosisMode = "primary",
        crop_hint: Optional[str] = None,
        run: Optional[DiagnosisRun] = None,
    ) -> DiagnosisResult:
        if run is None:
            run = DiagnosisRun(mode)
        logger.info(
            "Starting disease diagnosis: images=%d mode=%s crop=%s",
            len(raw_images), mode, crop_hint,
        )
        try:
            result = await asyncio.wait_for(self._run(run, raw_images), timeout=self.request_timeout_s)
        except asyncio.TimeoutError:
            run.transition(OrchestratorState.FAILED)
            errors = list(run.errors) + [
                ProviderError(provider=name, message="cancelled: diagnosis request timed out", retryable=True)
                for name in sorted(run.pending)
            ]
            logger.error("Diagnosis timed out after %.1fs; pending providers: %s",
                         self.request_timeout_s, sorted(run.pending))
            raise DiagnosisTimeoutError(
                f"Diagnosis did not complete within {self.request_timeout_s:g}s", errors
            ) from None
        except Exception:
            run.transition(OrchestratorState.FAILED)
            raise
        run.transition(OrchestratorState.DONE)
        logger.info("Diagnosis completed in %dms: %s (%.2f)",
                    run.elapsed_ms(), result.disease_id, result.confidence)
        return result

    async def _run(self, run: DiagnosisRun, raw_images: Sequence[bytes]) -> DiagnosisResult:
        run.transition(OrchestratorState.PREPROCESSING)
        images = await asyncio.to_thread(self.preprocessor.preprocess_many, raw_images)
        if run.mode == "ensemble":
            return await self._ensemble(run, images)
        return await self._primary(run, images)

    async def _primary(self, run: DiagnosisRun, images: List[NormalizedImage]) -> DiagnosisResult:
        primary = self.registry.primary
        fallback = self.registry.fallback
        threshold = self.registry.confidence_threshold

        run.transition(OrchestratorState.DISPATCHING)
        primary_result: Optional[ProviderResult] = None
        primary_exc: Optional[Exception] = None
        try:
            primary_result = await self.call_provider(run, primary, images)
        except (ProviderCallError, NoPredictionError) as exc:
            primary_exc = exc
            logger.warning("Primary provider %s failed: %s", primary, exc)
        else:
            if primary_result.confidence >= threshold:
                run.transition(OrchestratorState.FINALIZING)
                return to_diagnosis_result(primary_result, provider_errors=run.errors)
            logger.info(
                "Primary provider %s below confidence threshold (%.2f < %.2f); trying fallback %s",
                primary, primary_result.confidence, threshold, fallback,
            )

        run.transition(OrchestratorState.FALLBACK_PROBING)
        if fallback == primary and primary_result is not None:
            run.transition(OrchestratorState.FINALIZING)
            return to_diagnosis_result(primary_result, provider_errors=run.errors)
        try:
            fallback_result = await self.call_provider(run, fallback, images)
        except (ProviderCallError, NoPredictionError) as exc:
            logger.error("Fallback provider %s failed: %s", fallback, exc)
            if primary_exc is None:
                raise AllProvidersFailedError(
                    "Primary result below confidence threshold and fallback provider failed", run.errors
                ) from exc
            raise AllProvidersFailedError(
                "Primary and fallback providers failed", run.errors
            ) from primary_exc

        run.transition(OrchestratorState.FINALIZING)
        return to_diagnosis_result(fallback_result, provider_errors=run.errors)

    async def _ensemble(self, run: DiagnosisRun, images: List[NormalizedImage]) -> DiagnosisResult:
        names = self.registry.available()
        if not names:
            raise AllProvidersFailedError("No ML providers available")

        run.transition(OrchestratorState.DISPATCHING)
        calls = [self.call_provider(run, name, images) for name in names]
        run.transition(OrchestratorState.COLLECTING)
        settled = await asyncio.gather(*calls, return_exceptions=True)

        results: List[ProviderResult] = []
        for outcome in settled:
            if isinstance(outcome, ProviderResult):
                results.append(outcome)
            elif not isinstance(outcome, (ProviderCallError, NoPredictionError)):
                raise outcome
        if not results:
            raise AllProvidersFailedError("All ML providers failed", run.errors)

        run.transition(OrchestratorState.FINALIZING)
        ensemble = consensus.combine(results, errors=run.errors, elapsed_ms=run.elapsed_ms())
        return to_diagnosis_result(ensemble.individual_results[0], ensemble=ensemble)

    async def call_provider(
        self, run: DiagnosisRun, name: str, images: List[NormalizedImage]
    ) -> ProviderResult:
        """One provider call through the retry executor.

        Failures are recorded on the run and reported to the registry before
        being re-raised. Anything an adapter raises outside the error taxonomy
        becomes a non-retryable ProviderCallError.
        """
        # a call cancelled by the request timeout stays in run.pending
        run.pending.add(name)
        started = time.perf_counter()
        try:
            config = self.registry.require_enabled(name)
            adapter = self.adapters.get(name)
            if adapter is None:
                raise ProviderNotAvailableError(name, "no adapter registered")
            try:
                result = await self.executor.call(
                    name, lambda: adapter.classify(images), timeout_s=config.timeout_s
                )
            except DiagnosisError:
                raise
            except Exception as exc:
                raise ProviderCallError(name, f"unexpected error: {exc}") from exc
            if not result.predictions:
                raise NoPredictionError(f"{name} returned no predictions")
        except ProviderCallError as exc:
            run.pending.discard(name)
            run.errors.append(exc.to_provider_error())
            if not isinstance(exc, ProviderNotAvailableError):
                self.registry.mark_unhealthy(name, exc.message)
            raise
        except NoPredictionError as exc:
            run.pending.discard(name)
            run.errors.append(ProviderError(provider=name, message=str(exc)))
            raise

        run.pending.discard(name)
        self.registry.mark_healthy(name, int(round((time.perf_counter() - started) * 1000.0)))
        return result
