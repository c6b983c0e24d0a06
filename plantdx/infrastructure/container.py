from typing import Optional

import requests

from plantdx.application.registry import ProviderRegistry
from plantdx.application.retry import RetryExecutor, RetryPolicy
from plantdx.application.use_cases import DiagnoseUseCase
from plantdx.infrastructure.config import Settings
from plantdx.infrastructure.imaging.preprocessor import ImagePreprocessor
from plantdx.infrastructure.providers.factory import build_adapters


def build_diagnose_use_case(
    settings: Settings | None = None,
    session: Optional[requests.Session] = None,
) -> DiagnoseUseCase:
    """Wire registry, adapters, preprocessor and retry policy from settings."""
    settings = settings or Settings()
    configs = settings.provider_configs()
    registry = ProviderRegistry(
        configs,
        primary=settings.primary_provider,
        fallback=settings.fallback_provider,
        confidence_threshold=settings.confidence_threshold,
        unhealthy_cooldown_s=settings.unhealthy_cooldown_s,
    )
    policy = RetryPolicy(
        max_attempts=max(1, settings.max_retries),
        base_delay_s=settings.retry_delay_s,
    )
    return DiagnoseUseCase(
        registry=registry,
        adapters=build_adapters(configs, session=session),
        preprocessor=ImagePreprocessor(
            max_dimension=settings.image_max_dimension,
            supported_formats=settings.supported_formats,
        ),
        executor=RetryExecutor(policy),
        request_timeout_s=settings.request_timeout_s,
        default_mode="ensemble" if settings.use_ensemble else "primary",
        supported_formats=settings.supported_formats,
    )
