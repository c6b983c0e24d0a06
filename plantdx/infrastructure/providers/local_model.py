"""Locally hosted PlantVillage classifier served with ONNX Runtime."""
import io
import json
import logging
import threading
import time
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
from PIL import Image

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
from plantdx.infrastructure.providers.labels import (
    PLANT_VILLAGE_CLASSES,
    display_name,
    is_healthy_label,
    parse_plant_village,
    slugify,
)

try:
    import onnxruntime as ort
except Exception:  # noqa: BLE001 - allow import in test/runtime without ORT
    ort = None


logger = logging.getLogger(__name__)

MODEL_VERSION = "PlantVillage-v1"
INPUT_SIZE = 224
TOP_K = 5


def softmax(logits: np.ndarray) -> np.ndarray:
    shifted = logits - np.max(logits, axis=-1, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=-1, keepdims=True)


def to_probabilities(scores: np.ndarray) -> np.ndarray:
    # models exported with a softmax head already emit probabilities
    sums = np.sum(scores, axis=-1)
    if np.all(scores >= 0) and np.allclose(sums, 1.0, atol=1e-3):
        return scores
    return softmax(scores)


def image_to_tensor(img: NormalizedImage, channels_first: bool) -> np.ndarray:
    pil = Image.open(io.BytesIO(img.data)).convert("RGB")
    pil = pil.resize((INPUT_SIZE, INPUT_SIZE), resample=Image.NEAREST)
    arr = np.asarray(pil).astype(np.float32) / 255.0
    if channels_first:
        arr = np.transpose(arr, (2, 0, 1))
    return arr[None, ...]


def load_labels(model_path: Path) -> List[str]:
    """Class names from ``<model>.labels.json`` when present, else PlantVillage order."""
    labels_path = model_path.with_suffix(".labels.json")
    if labels_path.exists():
        with labels_path.open("r", encoding="utf-8") as f:
            return list(json.load(f))
    return list(PLANT_VILLAGE_CLASSES)


def parse_local_predictions(
    scored: List[tuple], processing_time_ms: int, image_count: int
) -> ProviderResult:
    best: dict = {}
    for class_name, probability in scored:
        best[class_name] = max(probability, best.get(class_name, 0.0))
    scored = sorted(best.items(), key=lambda item: item[1], reverse=True)
    predictions = []
    for class_name, probability in scored[:TOP_K]:
        crop, disease = parse_plant_village(class_name)
        probability = max(0.0, min(1.0, float(probability)))
        predictions.append(Prediction(
            disease_id=slugify(class_name),
            disease_name=display_name(class_name),
            confidence=probability,
            description=f"{crop}: {disease}",
            severity=severity_from_probability(probability),
        ))
    if not predictions:
        raise ProviderCallError("local_model", "model produced no scores")
    return ProviderResult(
        provider="local_model",
        predictions=predictions,
        confidence=predictions[0].confidence,
        is_healthy=is_healthy_label(scored[0][0]),
        metadata=ProviderResultMetadata(
            processing_time_ms=processing_time_ms,
            image_count=image_count,
            model_version=MODEL_VERSION,
        ),
    )


class LocalModelAdapter(ClassifierPort):
    name = "local_model"

    def __init__(self, config: ProviderConfig, session=None, labels: Optional[List[str]] = None):
        self.config = config
        self._session = session
        self._labels = labels
        self._lock = threading.Lock()

    def _load(self):
        with self._lock:
            if self._session is not None:
                return self._session
            if ort is None:
                raise ProviderCallError(self.name, "onnxruntime is required for local inference")
            model_path = Path(self.config.model or "")
            if not self.config.model or not model_path.exists():
                raise ProviderCallError(self.name, f"Missing ONNX model: {model_path}")
            logger.info("Loading local model from %s", model_path)
            self._session = ort.InferenceSession(str(model_path), providers=["CPUExecutionProvider"])
            if self._labels is None:
                self._labels = load_labels(model_path)
            return self._session

    def classify(self, images: Sequence[NormalizedImage]) -> ProviderResult:
        session = self._load()
        labels = self._labels or list(PLANT_VILLAGE_CLASSES)
        model_input = session.get_inputs()[0]
        shape = list(model_input.shape or [])
        channels_first = len(shape) == 4 and shape[1] == 3

        started = time.perf_counter()
        scored: List[tuple] = []
        for img in images:
            try:
                batch = image_to_tensor(img, channels_first)
                output = session.run(None, {model_input.name: batch})[0]
            except Exception as exc:  # noqa: BLE001 - runtime inference failure
                raise ProviderCallError(self.name, f"inference failed: {exc}") from exc
            probabilities = to_probabilities(np.asarray(output, dtype=np.float32))[0]
            top = np.argsort(probabilities)[::-1][:TOP_K]
            for index in top:
                class_name = labels[index] if index < len(labels) else f"Disease_{index}"
                scored.append((class_name, float(probabilities[index])))
        elapsed = int(round((time.perf_counter() - started) * 1000.0))
        return parse_local_predictions(scored, elapsed, len(images))

    def health_check(self) -> None:
        self._load()
