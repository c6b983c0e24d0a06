"""Error taxonomy for the diagnosis engine."""
from typing import List, Optional

from .models import ProviderError


class DiagnosisError(Exception):
    """Base class for every error raised by the engine."""


class InvalidImageError(DiagnosisError):
    """Input bytes could not be decoded as an image. Never retried."""


class ProviderCallError(DiagnosisError):
    def __init__(self, provider: str, message: str, retryable: bool = False,
                 status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.retryable = retryable
        self.status_code = status_code
        self.attempts = 1

    def to_provider_error(self) -> ProviderError:
        return ProviderError(
            provider=self.provider,
            message=self.message,
            retryable=self.retryable,
            attempts=self.attempts,
        )


class ProviderNotAvailableError(ProviderCallError):
    """Provider is unknown to the registry or disabled."""

    def __init__(self, provider: str, message: str = "provider not configured or disabled"):
        super().__init__(provider, message, retryable=False)


class NoPredictionError(DiagnosisError):
    """A provider or the consensus engine produced an empty prediction set."""


class OrchestrationError(DiagnosisError):
    """Aggregate failure naming every provider tried and why it failed."""

    def __init__(self, message: str, errors: Optional[List[ProviderError]] = None):
        self.errors = list(errors or [])
        detail = "; ".join(f"{e.provider}: {e.message}" for e in self.errors)
        super().__init__(f"{message} ({detail})" if detail else message)

    @property
    def first_error(self) -> Optional[ProviderError]:
        return self.errors[0] if self.errors else None


class AllProvidersFailedError(OrchestrationError):
    pass


class DiagnosisTimeoutError(OrchestrationError):
    pass
