from typing import List, Optional

from plantdx.domain.errors import NoPredictionError
from plantdx.domain.models import (
    DiagnosisResult,
    EnsembleResult,
    ProviderError,
    ProviderResult,
    TreatmentPlan,
    TreatmentStep,
)
from plantdx.domain.rules import (
    DEFAULT_AFFECTED_AREA,
    TREATMENT_SCHEDULES,
    estimate_recovery_time,
    severity_from_confidence,
)


def convert_treatments(plan: Optional[TreatmentPlan]) -> List[TreatmentStep]:
    if plan is None:
        return []
    treatments = []
    for category, duration, frequency in TREATMENT_SCHEDULES:
        steps = getattr(plan, category)
        if steps:
            treatments.append(TreatmentStep(
                type=category, steps=list(steps), duration=duration, frequency=frequency,
            ))
    return treatments


def to_diagnosis_result(
    result: ProviderResult,
    ensemble: Optional[EnsembleResult] = None,
    provider_errors: Optional[List[ProviderError]] = None,
) -> DiagnosisResult:
    """Map the chosen prediction onto the outward-facing diagnosis record.

    In ensemble mode the consensus prediction and its confidence are used;
    otherwise the provider's top prediction and overall confidence.
    """
    if ensemble is not None:
        prediction = ensemble.final_prediction
        confidence = prediction.confidence
    else:
        prediction = result.top_prediction
        confidence = result.confidence
    if prediction is None:
        raise NoPredictionError(f"No predictions found in {result.provider} result")

    severity = prediction.severity or severity_from_confidence(confidence)
    plan = prediction.treatment

    return DiagnosisResult(
        disease_id=prediction.disease_id,
        disease_name=prediction.disease_name,
        confidence=confidence,
        severity=severity,
        affected_area=DEFAULT_AFFECTED_AREA,
        symptoms=list(prediction.symptoms),
        causes=list(prediction.causes),
        treatments=convert_treatments(plan),
        prevention_tips=list(plan.prevention) if plan else [],
        expected_recovery_time=estimate_recovery_time(severity),
        risk_factors=[],
        mode="ensemble" if ensemble is not None else "primary",
        providers_used=ensemble.metadata.models_used if ensemble is not None else [result.provider],
        consensus=ensemble.consensus if ensemble is not None else None,
        provider_errors=list(provider_errors or (ensemble.metadata.errors if ensemble else [])),
    )
