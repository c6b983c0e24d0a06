from typing import List, Protocol, Sequence

from plantdx.domain.models import NormalizedImage, ProviderResult


class ClassifierPort(Protocol):
    name: str

    def classify(self, images: Sequence[NormalizedImage]) -> ProviderResult:
        """
        Blocking call to one provider. Raises ProviderCallError on failure
        and NoPredictionError when the provider returns nothing usable.
        """
        ...

    def health_check(self) -> None:
        """Raises if the provider is not reachable or not configured."""
        ...


class ImagePreprocessorPort(Protocol):
    def preprocess_many(self, raw_images: Sequence[bytes]) -> List[NormalizedImage]:
        ...
