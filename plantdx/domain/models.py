from datetime import datetime, timezone
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


Severity = Literal["low", "medium", "high", "critical"]
DiagnosisMode = Literal["primary", "ensemble"]


class NormalizedImage(BaseModel):
    """Provider-agnostic image payload produced by the preprocessor."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    base64: str
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    format: str = "jpeg"
    size: int = Field(..., ge=0)
    quality: int = 85


class ProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    enabled: bool = True
    api_key: Optional[str] = None
    api_url: Optional[str] = None
    model: Optional[str] = None
    project: Optional[str] = None
    timeout_s: float = Field(10.0, gt=0)
    confidence_threshold: float = Field(0.7, ge=0.0, le=1.0)
    rate_limit_per_minute: Optional[int] = None


class TreatmentPlan(BaseModel):
    chemical: List[str] = []
    biological: List[str] = []
    organic: List[str] = []
    prevention: List[str] = []


class Prediction(BaseModel):
    disease_id: str
    disease_name: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    severity: Optional[Severity] = None
    description: Optional[str] = None
    treatment: Optional[TreatmentPlan] = None
    symptoms: List[str] = []
    causes: List[str] = []
    affected_areas: List[str] = []


class ProviderResultMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    processing_time_ms: int = 0
    image_count: int = 0
    model_version: Optional[str] = None
    raw_response: Any = None


class ProviderResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: str
    predictions: List[Prediction]
    confidence: float = Field(..., ge=0.0, le=1.0)
    is_healthy: bool = False
    metadata: ProviderResultMetadata = ProviderResultMetadata()

    @field_validator("predictions")
    @classmethod
    def sort_predictions(cls, v: List[Prediction]) -> List[Prediction]:
        # one entry per disease id, highest confidence wins; stable among ties
        ordered = sorted(v, key=lambda p: p.confidence, reverse=True)
        seen = set()
        unique = []
        for prediction in ordered:
            if prediction.disease_id in seen:
                continue
            seen.add(prediction.disease_id)
            unique.append(prediction)
        return unique

    @property
    def top_prediction(self) -> Optional[Prediction]:
        return self.predictions[0] if self.predictions else None


class ProviderError(BaseModel):
    provider: str
    message: str
    retryable: bool = False
    attempts: int = 1
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ConsensusBlock(BaseModel):
    agreement_level: float = Field(..., ge=0.0, le=1.0)
    conflicting_predictions: bool
    reliability_score: float = Field(..., ge=0.0, le=1.0)


class EnsembleMetadata(BaseModel):
    models_used: List[str]
    total_processing_time_ms: int = 0
    image_count: int = 0
    ensemble_method: str = "weighted_average"
    errors: List[ProviderError] = []


class EnsembleResult(BaseModel):
    final_prediction: Prediction
    individual_results: List[ProviderResult]
    consensus: ConsensusBlock
    metadata: EnsembleMetadata


class TreatmentStep(BaseModel):
    type: Literal["chemical", "biological", "organic"]
    steps: List[str]
    duration: str
    frequency: str


class DiagnosisResult(BaseModel):
    disease_id: str
    disease_name: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    severity: Severity
    affected_area: int = Field(80, ge=0, le=100)
    symptoms: List[str] = []
    causes: List[str] = []
    treatments: List[TreatmentStep] = []
    prevention_tips: List[str] = []
    expected_recovery_time: str
    risk_factors: List[str] = []
    mode: DiagnosisMode = "primary"
    providers_used: List[str] = []
    consensus: Optional[ConsensusBlock] = None
    provider_errors: List[ProviderError] = []
