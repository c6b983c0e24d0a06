import asyncio
import logging
import time
from typing import Dict, List, Mapping, Optional, Sequence

from plantdx.application.health import HealthTracker
from plantdx.application.orchestrator import DiagnosisOrchestrator, DiagnosisRun
from plantdx.application.ports import ClassifierPort, ImagePreprocessorPort
from plantdx.application.registry import ProviderRegistry
from plantdx.application.retry import RetryExecutor
from plantdx.domain.errors import DiagnosisError
from plantdx.domain.models import DiagnosisMode, DiagnosisResult


logger = logging.getLogger(__name__)


class DiagnoseUseCase:
    """Single public entry point: photos in, one diagnosis record out."""

    def __init__(
        self,
        registry: ProviderRegistry,
        adapters: Mapping[str, ClassifierPort],
        preprocessor: ImagePreprocessorPort,
        executor: Optional[RetryExecutor] = None,
        request_timeout_s: float = 60.0,
        default_mode: DiagnosisMode = "primary",
        supported_formats: Optional[List[str]] = None,
    ):
        self.registry = registry
        self.adapters: Dict[str, ClassifierPort] = dict(adapters)
        self.preprocessor = preprocessor
        self.default_mode = default_mode
        self.supported_formats = supported_formats or ["jpg", "jpeg", "png", "webp"]
        self.orchestrator = DiagnosisOrchestrator(
            registry, self.adapters, preprocessor,
            executor=executor, request_timeout_s=request_timeout_s,
        )
        self.health = HealthTracker(registry, self.adapters)

    async def diagnose(
        self,
        images: Sequence[bytes],
        crop_hint: Optional[str] = None,
        mode: Optional[DiagnosisMode] = None,
        run: Optional[DiagnosisRun] = None,
    ) -> DiagnosisResult:
        mode = mode or self.default_mode
        if mode not in ("primary", "ensemble"):
            raise ValueError(f"Unknown diagnosis mode: {mode}")
        try:
            return await self.orchestrator.diagnose(images, mode=mode, crop_hint=crop_hint, run=run)
        except DiagnosisError as e:
            logger.error("ML diagnosis failed: %s", e)
            raise

    def diagnose_sync(
        self,
        images: Sequence[bytes],
        crop_hint: Optional[str] = None,
        mode: Optional[DiagnosisMode] = None,
    ) -> DiagnosisResult:
        return asyncio.run(self.diagnose(images, crop_hint=crop_hint, mode=mode))

    def service_info(self) -> dict:
        enabled = []
        for name in self.registry.enabled():
            config = self.registry.get(name)
            enabled.append({
                "provider": name,
                "api_url": config.api_url,
                "confidence_threshold": config.confidence_threshold,
                "timeout_s": config.timeout_s,
                "has_api_key": bool(config.api_key),
            })
        return {
            "enabled_providers": enabled,
            "total_providers": len(enabled),
            "primary_provider": self.registry.primary,
            "fallback_provider": self.registry.fallback,
            "ensemble_enabled": self.default_mode == "ensemble",
            "global_confidence_threshold": self.registry.confidence_threshold,
            "supported_formats": list(self.supported_formats),
        }

    def update_confidence_threshold(self, threshold: float) -> None:
        self.registry.update_confidence_threshold(threshold)

    async def provider_health(self) -> List[dict]:
        return await self.health.probe_all()

    async def test_provider(self, name: str, images: Sequence[bytes]) -> dict:
        """Smoke-test one provider; failures are reported, not raised."""
        started = time.perf_counter()
        run = DiagnosisRun("primary")
        try:
            normalized = await asyncio.to_thread(self.preprocessor.preprocess_many, images)
            result = await self.orchestrator.call_provider(run, name, normalized)
        except DiagnosisError as e:
            return {"provider": name, "success": False, "error": str(e)}
        return {
            "provider": name,
            "success": True,
            "confidence": result.confidence,
            "predictions": [p.model_dump() for p in result.predictions[:3]],
            "processing_time_ms": int(round((time.perf_counter() - started) * 1000.0)),
            "is_healthy": result.is_healthy,
        }
