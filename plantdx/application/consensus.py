"""Weighted consensus voting over independent provider results."""
import logging
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel

from plantdx.domain.errors import NoPredictionError
from plantdx.domain.models import (
    ConsensusBlock,
    EnsembleMetadata,
    EnsembleResult,
    Prediction,
    ProviderError,
    ProviderResult,
)


logger = logging.getLogger(__name__)

ENSEMBLE_METHOD = "weighted_average"


class DiseaseVote(BaseModel):
    disease_id: str
    count: int = 0
    weighted_confidence: float = 0.0
    providers: List[str] = []

    @property
    def average(self) -> float:
        return self.weighted_confidence / self.count if self.count else 0.0


def tally_votes(results: Sequence[ProviderResult]) -> List[DiseaseVote]:
    """Accumulate one vote per (provider, disease) and rank them.

    Each prediction is weighted by its provider's own top confidence. Ranking
    is by vote count, then average weighted confidence, then disease id, so
    the order results arrive in never changes the outcome.
    """
    votes: Dict[str, DiseaseVote] = {}
    for result in results:
        for prediction in result.predictions:
            vote = votes.setdefault(prediction.disease_id, DiseaseVote(disease_id=prediction.disease_id))
            vote.count += 1
            vote.weighted_confidence += prediction.confidence * result.confidence
            vote.providers.append(result.provider)
    return sorted(votes.values(), key=lambda v: (-v.count, -v.average, v.disease_id))


def _detail_for(disease_id: str, results: Sequence[ProviderResult]) -> Prediction:
    candidates = [
        (p, r.provider)
        for r in results
        for p in r.predictions
        if p.disease_id == disease_id
    ]
    candidates.sort(key=lambda item: (-item[0].confidence, item[1]))
    return candidates[0][0]


def combine(
    results: Sequence[ProviderResult],
    errors: Optional[Sequence[ProviderError]] = None,
    elapsed_ms: Optional[int] = None,
) -> EnsembleResult:
    if not results:
        raise NoPredictionError("No provider results to combine")

    ordered = sorted(results, key=lambda r: r.provider)
    ranked = tally_votes(ordered)
    if not ranked:
        raise NoPredictionError("No predictions found in ensemble results")

    top = ranked[0]
    agreement_level = min(1.0, top.count / len(ordered))
    conflicting = len(ranked) > 1 and ranked[1].count > 0
    reliability = agreement_level * min(r.confidence for r in ordered)

    detail = _detail_for(top.disease_id, ordered)
    final = detail.model_copy(update={"confidence": min(1.0, top.average)})

    if elapsed_ms is None:
        elapsed_ms = max(r.metadata.processing_time_ms for r in ordered)

    logger.info(
        "Consensus %s: votes=%d/%d agreement=%.2f reliability=%.2f conflicting=%s",
        top.disease_id, top.count, len(ordered), agreement_level, reliability, conflicting,
    )

    return EnsembleResult(
        final_prediction=final,
        individual_results=list(ordered),
        consensus=ConsensusBlock(
            agreement_level=agreement_level,
            conflicting_predictions=conflicting,
            reliability_score=reliability,
        ),
        metadata=EnsembleMetadata(
            models_used=[r.provider for r in ordered],
            total_processing_time_ms=elapsed_ms,
            image_count=ordered[0].metadata.image_count,
            ensemble_method=ENSEMBLE_METHOD,
            errors=list(errors or []),
        ),
    )
