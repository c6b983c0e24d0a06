import logging
from typing import Callable, Dict, Iterable, Optional

import requests

from plantdx.application.ports import ClassifierPort
from plantdx.domain.models import ProviderConfig
from plantdx.infrastructure.providers.google_vision import GoogleVisionAdapter
from plantdx.infrastructure.providers.huggingface import HuggingFaceAdapter
from plantdx.infrastructure.providers.local_model import LocalModelAdapter
from plantdx.infrastructure.providers.mock import MockClassifierAdapter
from plantdx.infrastructure.providers.plant_id import PlantIdAdapter
from plantdx.infrastructure.providers.plantnet import PlantNetAdapter


logger = logging.getLogger(__name__)


ADAPTERS: Dict[str, Callable[..., ClassifierPort]] = {
    "plant_id": lambda config, session: PlantIdAdapter(config, session),
    "plantnet": lambda config, session: PlantNetAdapter(config, session),
    "google_vision": lambda config, session: GoogleVisionAdapter(config, session),
    "huggingface": lambda config, session: HuggingFaceAdapter(config, session),
    "local_model": lambda config, session: LocalModelAdapter(config),
    "mock": lambda config, session: MockClassifierAdapter(config),
}


def build_adapters(
    configs: Iterable[ProviderConfig],
    session: Optional[requests.Session] = None,
) -> Dict[str, ClassifierPort]:
    """One adapter per known provider identity; unknown names are skipped."""
    adapters: Dict[str, ClassifierPort] = {}
    for config in configs:
        factory = ADAPTERS.get(config.name)
        if factory is None:
            logger.warning("No adapter for provider %s; skipping", config.name)
            continue
        adapters[config.name] = factory(config, session)
    return adapters
