import logging
import time
from typing import Any, Optional, Sequence

import requests

from plantdx.application.ports import ClassifierPort
from plantdx.domain.errors import ProviderCallError
from plantdx.domain.models import (
    NormalizedImage,
    Prediction,
    ProviderConfig,
    ProviderResult,
    ProviderResultMetadata,
)
from plantdx.infrastructure.providers.http import MALFORMED_PAYLOAD_ERRORS, ProviderHttpClient
from plantdx.infrastructure.providers.labels import slugify


logger = logging.getLogger(__name__)

PLANT_KEYWORDS = ("plant", "leaf", "disease", "pest")


def parse_google_vision_response(data: Any, processing_time_ms: int, image_count: int) -> ProviderResult:
    """Generic label detection; only plant/leaf/disease/pest labels are kept."""
    if not isinstance(data, dict):
        raise ProviderCallError("google_vision", "unexpected response shape")
    responses = data.get("responses") or []
    labels = []
    try:
        for response in responses:
            if response.get("error"):
                message = response["error"].get("message", "annotation failed")
                raise ProviderCallError("google_vision", message)
            labels.extend(response.get("labelAnnotations") or [])

        plant_labels = [
            label for label in labels
            if any(k in str(label.get("description", "")).lower() for k in PLANT_KEYWORDS)
        ]
        predictions = [
            Prediction(
                disease_id=slugify(label["description"]),
                disease_name=label["description"],
                confidence=max(0.0, min(1.0, float(label.get("score", 0.0)))),
                description=f"Detected: {label['description']}",
                severity="medium",
            )
            for label in plant_labels[:5]
        ]
    except MALFORMED_PAYLOAD_ERRORS as exc:
        raise ProviderCallError("google_vision", f"malformed response: {exc}") from exc
    if not predictions:
        predictions.append(Prediction(
            disease_id="unknown",
            disease_name="Unable to identify disease",
            confidence=0.3,
            description="No plant diseases detected by Google Vision",
            severity="low",
        ))

    return ProviderResult(
        provider="google_vision",
        predictions=predictions,
        confidence=max(p.confidence for p in predictions),
        is_healthy=not any("disease" in str(label.get("description", "")).lower() for label in plant_labels),
        metadata=ProviderResultMetadata(
            processing_time_ms=processing_time_ms,
            image_count=image_count,
            raw_response=data,
        ),
    )


class GoogleVisionAdapter(ClassifierPort):
    name = "google_vision"

    def __init__(self, config: ProviderConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.http = ProviderHttpClient(self.name, config, session)

    def classify(self, images: Sequence[NormalizedImage]) -> ProviderResult:
        if not self.config.api_key:
            raise ProviderCallError(self.name, "missing API key")
        payload = {
            "requests": [
                {
                    "image": {"content": img.base64},
                    "features": [
                        {"type": "LABEL_DETECTION", "maxResults": 10},
                        {"type": "OBJECT_LOCALIZATION", "maxResults": 10},
                    ],
                }
                for img in images
            ]
        }
        started = time.perf_counter()
        data = self.http.post_json(
            f"{self.config.api_url}/images:annotate",
            params={"key": self.config.api_key},
            json=payload,
        )
        elapsed = int(round((time.perf_counter() - started) * 1000.0))
        return parse_google_vision_response(data, elapsed, len(images))

    def health_check(self) -> None:
        if not self.config.api_key:
            raise RuntimeError("No API key")
