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
)
from plantdx.domain.rules import severity_from_probability
from plantdx.infrastructure.providers.http import MALFORMED_PAYLOAD_ERRORS, ProviderHttpClient
from plantdx.infrastructure.providers.labels import is_healthy_label, slugify


logger = logging.getLogger(__name__)


def parse_huggingface_response(labels: List[dict], processing_time_ms: int, image_count: int) -> ProviderResult:
    try:
        ranked = sorted(
            (item for item in labels if isinstance(item, dict) and item.get("label")),
            key=lambda item: float(item.get("score", 0.0)),
            reverse=True,
        )
        predictions = []
        for item in ranked[:5]:
            score = max(0.0, min(1.0, float(item.get("score", 0.0))))
            predictions.append(Prediction(
                disease_id=slugify(str(item["label"])),
                disease_name=str(item["label"]),
                confidence=score,
                description=f"Detected: {item['label']}",
                severity=severity_from_probability(score),
            ))
    except MALFORMED_PAYLOAD_ERRORS as exc:
        raise ProviderCallError("huggingface", f"malformed response: {exc}") from exc
    if not predictions:
        raise ProviderCallError("huggingface", "response contained no labels")

    return ProviderResult(
        provider="huggingface",
        predictions=predictions,
        confidence=predictions[0].confidence,
        is_healthy=is_healthy_label(str(ranked[0]["label"])),
        metadata=ProviderResultMetadata(
            processing_time_ms=processing_time_ms,
            image_count=image_count,
            raw_response=labels,
        ),
    )


class HuggingFaceAdapter(ClassifierPort):
    """Image-classification model on the Hugging Face inference API, one call per image."""

    name = "huggingface"

    def __init__(self, config: ProviderConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.http = ProviderHttpClient(self.name, config, session)

    def _url(self) -> str:
        return f"{self.config.api_url}/{self.config.model}"

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "image/jpeg",
            "x-wait-for-model": "true",
        }

    def classify(self, images: Sequence[NormalizedImage]) -> ProviderResult:
        if not self.config.api_key:
            raise ProviderCallError(self.name, "missing API token")
        started = time.perf_counter()
        labels: List[Any] = []
        for img in images:
            data = self.http.post_json(self._url(), headers=self._headers(), data=img.data)
            if isinstance(data, dict) and data.get("error"):
                # model still loading is reported in-band
                raise ProviderCallError(self.name, str(data["error"]), retryable="loading" in str(data["error"]).lower())
            if not isinstance(data, list):
                raise ProviderCallError(self.name, "unexpected response shape")
            labels.extend(data)
        elapsed = int(round((time.perf_counter() - started) * 1000.0))
        return parse_huggingface_response(labels, elapsed, len(images))

    def health_check(self) -> None:
        if not self.config.api_key:
            raise RuntimeError("No API token")
