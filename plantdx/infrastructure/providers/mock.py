import hashlib
from typing import List, Optional, Sequence

from plantdx.application.ports import ClassifierPort
from plantdx.domain.models import (
    NormalizedImage,
    Prediction,
    ProviderConfig,
    ProviderResult,
    ProviderResultMetadata,
    TreatmentPlan,
)


SAMPLE_DISEASES = [
    ("tomato___early_blight", "Early blight", ["Alternaria solani fungus"]),
    ("tomato___late_blight", "Late blight", ["Phytophthora infestans"]),
    ("apple___apple_scab", "Apple scab", ["Venturia inaequalis fungus"]),
    ("corn__maize____common_rust_", "Common rust", ["Puccinia sorghi fungus"]),
]


class MockClassifierAdapter(ClassifierPort):
    """Offline provider for demos: same image bytes, same answer."""

    name = "mock"

    def __init__(self, config: Optional[ProviderConfig] = None):
        self.config = config or ProviderConfig(name=self.name)

    def classify(self, images: Sequence[NormalizedImage]) -> ProviderResult:
        digest = hashlib.sha256(b"".join(img.data for img in images)).digest()
        start = digest[0] % len(SAMPLE_DISEASES)
        predictions: List[Prediction] = []
        for rank in range(3):
            disease_id, name, causes = SAMPLE_DISEASES[(start + rank) % len(SAMPLE_DISEASES)]
            predictions.append(Prediction(
                disease_id=disease_id,
                disease_name=name,
                confidence=round(0.85 - rank * 0.25, 2),
                description=f"Sample diagnosis: {name}",
                causes=causes,
                symptoms=["Leaf spots", "Yellowing around lesions"],
                treatment=TreatmentPlan(
                    chemical=["Apply a copper-based fungicide"],
                    organic=["Remove and destroy affected leaves"],
                    prevention=["Avoid overhead watering", "Rotate crops yearly"],
                ),
            ))
        return ProviderResult(
            provider=self.name,
            predictions=predictions,
            confidence=predictions[0].confidence,
            is_healthy=False,
            metadata=ProviderResultMetadata(image_count=len(images), model_version="mock"),
        )

    def health_check(self) -> None:
        return None
