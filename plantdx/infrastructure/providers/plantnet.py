import logging
import time
from typing import Any, Optional, Sequence

import requests

from plantdx.application.ports import ClassifierPort
from plantdx.domain.errors import NoPredictionError, ProviderCallError
from plantdx.domain.models import (
    NormalizedImage,
    Prediction,
    ProviderConfig,
    ProviderResult,
    ProviderResultMetadata,
)
from plantdx.infrastructure.providers.http import MALFORMED_PAYLOAD_ERRORS, ProviderHttpClient


logger = logging.getLogger(__name__)


def parse_plantnet_response(data: Any, processing_time_ms: int, image_count: int) -> ProviderResult:
    """PlantNet identifies species, not diseases.

    Each species match becomes a low-severity prediction and the plant is
    reported healthy since the service has no notion of disease.
    """
    if not isinstance(data, dict):
        raise ProviderCallError("plantnet", "unexpected response shape")
    predictions = []
    try:
        for result in data.get("results") or []:
            species = result.get("species") or {}
            scientific = species.get("scientificNameWithoutAuthor") or species.get("scientificName")
            if not scientific:
                continue
            common = species.get("commonNames") or []
            predictions.append(Prediction(
                disease_id="_".join(scientific.split()),
                disease_name=common[0] if common else scientific,
                confidence=max(0.0, min(1.0, float(result.get("score", 0.0)))),
                description=f"Plant identification: {scientific}",
                severity="low",
            ))
    except MALFORMED_PAYLOAD_ERRORS as exc:
        raise ProviderCallError("plantnet", f"malformed response: {exc}") from exc
    if not predictions:
        raise NoPredictionError("plantnet returned no species matches")

    return ProviderResult(
        provider="plantnet",
        predictions=predictions,
        confidence=max(p.confidence for p in predictions),
        is_healthy=True,
        metadata=ProviderResultMetadata(
            processing_time_ms=processing_time_ms,
            image_count=image_count,
            model_version=data.get("version"),
            raw_response=data,
        ),
    )


class PlantNetAdapter(ClassifierPort):
    name = "plantnet"

    def __init__(self, config: ProviderConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.http = ProviderHttpClient(self.name, config, session)

    def classify(self, images: Sequence[NormalizedImage]) -> ProviderResult:
        if not self.config.api_key:
            raise ProviderCallError(self.name, "missing API key")
        project = self.config.project or "all"
        files = [
            ("images", (f"image_{i}.jpg", img.data, "image/jpeg"))
            for i, img in enumerate(images)
        ]
        params = {"api-key": self.config.api_key, "nb-results": 5, "lang": "en"}
        started = time.perf_counter()
        try:
            data = self.http.post_json(
                f"{self.config.api_url}/identify/{project}",
                params=params,
                files=files,
                data={"organs": ["leaf"] * len(images)},
            )
        except ProviderCallError as exc:
            # PlantNet answers 404 "Species not found" when nothing matches
            if exc.status_code == 404:
                raise NoPredictionError("plantnet returned no species matches") from exc
            raise
        elapsed = int(round((time.perf_counter() - started) * 1000.0))
        return parse_plantnet_response(data, elapsed, len(images))

    def health_check(self) -> None:
        # PlantNet has no health endpoint
        if not self.config.api_key:
            raise RuntimeError("No API key")
