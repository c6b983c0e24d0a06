from typing import Dict, List, Tuple

from .models import Severity


RECOVERY_TIME_BY_SEVERITY: Dict[str, str] = {
    "low": "1-2 weeks",
    "medium": "2-4 weeks",
    "high": "1-2 months",
    "critical": "2-3 months",
}

DEFAULT_RECOVERY_TIME = "2-4 weeks"

# (category, duration, frequency), in output order
TREATMENT_SCHEDULES: List[Tuple[str, str, str]] = [
    ("chemical", "7-14 days", "Daily"),
    ("biological", "14-21 days", "Weekly"),
    ("organic", "21-30 days", "Bi-weekly"),
]

DEFAULT_AFFECTED_AREA = 80


def severity_from_confidence(confidence: float) -> Severity:
    """Default severity for providers that cannot express one."""
    if confidence >= 0.9:
        return "high"
    if confidence >= 0.7:
        return "medium"
    if confidence >= 0.5:
        return "low"
    return "critical"


def severity_from_probability(probability: float) -> Severity:
    # Label-only classifiers report severity from their own probability bands.
    if probability > 0.8:
        return "high"
    if probability > 0.6:
        return "medium"
    return "low"


def estimate_recovery_time(severity: str) -> str:
    return RECOVERY_TIME_BY_SEVERITY.get(severity, DEFAULT_RECOVERY_TIME)
