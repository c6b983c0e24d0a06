"""Shared fixtures: in-memory images, canned provider results, fake adapters."""
import io

import pytest
from PIL import Image

from plantdx.application.registry import ProviderRegistry
from plantdx.application.retry import RetryExecutor, RetryPolicy
from plantdx.domain.models import NormalizedImage, Prediction, ProviderConfig, ProviderResult
from plantdx.infrastructure import config as config_module


def _image_bytes(width=64, height=48, color=(90, 140, 60), fmt="JPEG", mode="RGB") -> bytes:
    if mode == "RGBA":
        color = color + (128,)
    img = Image.new(mode, (width, height), color=color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def _result(provider, predictions, confidence=None) -> ProviderResult:
    preds = [
        Prediction(disease_id=disease_id, disease_name=disease_id.replace("_", " ").title(), confidence=conf)
        for disease_id, conf in predictions
    ]
    if confidence is None:
        confidence = max(p.confidence for p in preds) if preds else 0.0
    return ProviderResult(provider=provider, predictions=preds, confidence=confidence)


class FakeAdapter:
    """Plays back a list of outcomes; the last one repeats."""

    def __init__(self, name, *outcomes, health_error=None):
        self.name = name
        self.outcomes = list(outcomes)
        self.calls = 0
        self.health_error = health_error
        self.seen_images = None

    def classify(self, images):
        self.calls += 1
        self.seen_images = images
        outcome = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        if callable(outcome) and not isinstance(outcome, ProviderResult):
            outcome = outcome()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def health_check(self):
        if self.health_error is not None:
            raise self.health_error


class StubPreprocessor:
    def __init__(self):
        self.calls = 0

    def preprocess_many(self, raw_images):
        self.calls += 1
        return [
            NormalizedImage(data=raw, base64="", width=10, height=10, size=len(raw))
            for raw in raw_images
        ]


@pytest.fixture
def image_bytes():
    return _image_bytes


@pytest.fixture
def make_result():
    return _result


@pytest.fixture
def fake_adapter():
    return FakeAdapter


@pytest.fixture
def stub_preprocessor():
    return StubPreprocessor()


@pytest.fixture
def fast_executor():
    return RetryExecutor(RetryPolicy(max_attempts=3, base_delay_s=0.0, jitter=0.0))


@pytest.fixture
def make_registry():
    def _make(names, primary=None, fallback=None, threshold=0.7, timeout_s=5.0, **kwargs):
        configs = [ProviderConfig(name=n, timeout_s=timeout_s, confidence_threshold=threshold) for n in names]
        return ProviderRegistry(
            configs,
            primary=primary or names[0],
            fallback=fallback or names[-1],
            confidence_threshold=threshold,
            **kwargs,
        )
    return _make


@pytest.fixture
def no_streamlit(monkeypatch):
    monkeypatch.setattr(config_module, "_HAS_STREAMLIT", False)
