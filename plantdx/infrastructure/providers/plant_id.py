import logging
import time
from typing import Any, List, Optional, Sequence

import requests

from plantdx.application.ports import ClassifierPort
from plantdx.domain.errors import ProviderCallError
from plantdx.domain.models import (
    NormalizedImage,
    Prediction,
    ProviderConfig,
    ProviderResult,
    ProviderResultMetadata,
    TreatmentPlan,
)
from plantdx.domain.rules import severity_from_probability
from plantdx.infrastructure.providers.http import MALFORMED_PAYLOAD_ERRORS, ProviderHttpClient


logger = logging.getLogger(__name__)


def _is_plant(result: dict) -> bool:
    value = result.get("is_plant", False)
    # v3 nests the flag as {"binary": bool, "probability": float}
    if isinstance(value, dict):
        return bool(value.get("binary", False))
    return bool(value)


def _suggestion_to_prediction(s: dict) -> Prediction:
    details = s.get("details") or {}
    treatment = s.get("treatment") or details.get("treatment") or {}
    probability = max(0.0, min(1.0, float(s.get("probability", 0.0))))
    return Prediction(
        disease_id=str(s.get("id") or s.get("name")),
        disease_name=str(s.get("name", "Unknown disease")),
        confidence=probability,
        description=s.get("description") or details.get("description"),
        treatment=TreatmentPlan(
            chemical=list(treatment.get("chemical") or []),
            biological=list(treatment.get("biological") or []),
            prevention=list(treatment.get("prevention") or []),
        ),
        severity=severity_from_probability(probability),
        affected_areas=["leaves"],
    )


def parse_plant_id_response(data: Any, processing_time_ms: int, image_count: int) -> ProviderResult:
    if not isinstance(data, dict):
        raise ProviderCallError("plant_id", "unexpected response shape")
    try:
        result = data.get("result", data)
        disease = result.get("disease") or {}
        suggestions = disease.get("suggestions") or []
        predictions: List[Prediction] = [_suggestion_to_prediction(s) for s in suggestions if isinstance(s, dict)]
        is_plant = _is_plant(result)
    except MALFORMED_PAYLOAD_ERRORS as exc:
        raise ProviderCallError("plant_id", f"malformed response: {exc}") from exc
    is_healthy = is_plant and not predictions

    if not predictions:
        predictions.append(Prediction(
            disease_id="healthy",
            disease_name="Healthy Plant",
            confidence=0.9 if is_plant else 0.3,
            description="Plant appears to be healthy",
            severity="low",
        ))

    return ProviderResult(
        provider="plant_id",
        predictions=predictions,
        confidence=max(p.confidence for p in predictions),
        is_healthy=is_healthy,
        metadata=ProviderResultMetadata(
            processing_time_ms=processing_time_ms,
            image_count=image_count,
            model_version="3.0",
            raw_response=data,
        ),
    )


class PlantIdAdapter(ClassifierPort):
    name = "plant_id"

    def __init__(self, config: ProviderConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.http = ProviderHttpClient(self.name, config, session)

    def _headers(self) -> dict:
        return {"Content-Type": "application/json", "Api-Key": self.config.api_key or ""}

    def classify(self, images: Sequence[NormalizedImage]) -> ProviderResult:
        if not self.config.api_key:
            raise ProviderCallError(self.name, "missing API key")
        payload = {
            "images": [img.base64 for img in images],
            "plant_details": ["common_names", "url", "description", "taxonomy"],
            "disease_details": ["description", "treatment", "classification"],
            "modifiers": ["crops_fast", "disease_similar_images"],
            "plant_identification": True,
            "crop": True,
        }
        started = time.perf_counter()
        data = self.http.post_json(
            f"{self.config.api_url}/identification", headers=self._headers(), json=payload,
        )
        elapsed = int(round((time.perf_counter() - started) * 1000.0))
        return parse_plant_id_response(data, elapsed, len(images))

    def health_check(self) -> None:
        if not self.config.api_key:
            raise RuntimeError("No API key")
        self.http.get_json(f"{self.config.api_url}/health", headers=self._headers(), timeout=5)
