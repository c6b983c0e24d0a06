import os
import logging
from typing import List

from plantdx.domain.models import ProviderConfig

try:
    import streamlit as st  # type: ignore
    _HAS_STREAMLIT = True
except Exception:
    _HAS_STREAMLIT = False

logger = logging.getLogger(__name__)


PROVIDER_NAMES = ("plant_id", "plantnet", "google_vision", "huggingface", "local_model", "mock")


def get_secret(name: str, default: str | None = None) -> str | None:
    # Prefer Streamlit secrets if available
    if _HAS_STREAMLIT:
        try:
            if name in st.secrets:
                return str(st.secrets.get(name))
        except Exception:
            # no secrets.toml outside a Streamlit run
            logger.debug("Streamlit secrets unavailable for %s", name)
    # Fallback to environment variables
    return os.environ.get(name, default)


def _get_float(name: str, default: float) -> float:
    raw = get_secret(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid value for %s (%r); using %s", name, raw, default)
        return default


def _get_int(name: str, default: int) -> int:
    raw = get_secret(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid value for %s (%r); using %s", name, raw, default)
        return default


def _get_bool(name: str, default: bool = False) -> bool:
    raw = get_secret(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"true", "1", "yes", "y", "t"}


class Settings:
    @property
    def primary_provider(self) -> str:
        return get_secret("ML_PRIMARY_MODEL", "plant_id") or "plant_id"

    @property
    def fallback_provider(self) -> str:
        return get_secret("ML_FALLBACK_MODEL", "local_model") or "local_model"

    @property
    def use_ensemble(self) -> bool:
        return _get_bool("ML_USE_ENSEMBLE")

    @property
    def confidence_threshold(self) -> float:
        return _get_float("ML_CONFIDENCE_THRESHOLD", 0.7)

    @property
    def provider_timeout_s(self) -> float:
        return _get_float("ML_TIMEOUT_SECONDS", 10.0)

    @property
    def request_timeout_s(self) -> float:
        return _get_float("ML_REQUEST_TIMEOUT_SECONDS", 60.0)

    @property
    def unhealthy_cooldown_s(self) -> float:
        return _get_float("ML_UNHEALTHY_COOLDOWN_SECONDS", 0.0)

    @property
    def max_retries(self) -> int:
        return _get_int("ML_MAX_RETRIES", 3)

    @property
    def retry_delay_s(self) -> float:
        return _get_float("ML_RETRY_DELAY_SECONDS", 1.0)

    @property
    def image_max_dimension(self) -> int:
        return _get_int("ML_IMAGE_MAX_DIMENSION", 512)

    @property
    def supported_formats(self) -> List[str]:
        raw = get_secret("ML_SUPPORTED_FORMATS", "jpg,jpeg,png,webp") or "jpg,jpeg,png,webp"
        return [f.strip().lower() for f in raw.split(",") if f.strip()]

    @property
    def plant_id_api_key(self) -> str | None:
        return get_secret("PLANT_ID_API_KEY")

    @property
    def plant_id_api_url(self) -> str:
        return get_secret("PLANT_ID_API_URL", "https://api.plant.id/v3") or "https://api.plant.id/v3"

    @property
    def plantnet_api_key(self) -> str | None:
        return get_secret("PLANTNET_API_KEY")

    @property
    def plantnet_api_url(self) -> str:
        return get_secret("PLANTNET_API_URL", "https://my-api.plantnet.org/v2") or "https://my-api.plantnet.org/v2"

    @property
    def plantnet_project(self) -> str:
        return get_secret("PLANTNET_PROJECT", "all") or "all"

    @property
    def google_api_key(self) -> str | None:
        return get_secret("GOOGLE_API_KEY")

    @property
    def hf_api_token(self) -> str | None:
        return get_secret("HF_API_TOKEN")

    @property
    def hf_plant_model(self) -> str:
        default = "linkanjarad/mobilenet_v2_1.0_224-plant-disease-identification"
        return get_secret("HF_PLANT_MODEL", default) or default

    @property
    def local_model_path(self) -> str | None:
        return get_secret("LOCAL_MODEL_PATH")

    @property
    def enable_mock(self) -> bool:
        return _get_bool("ML_ENABLE_MOCK")

    def provider_configs(self) -> List[ProviderConfig]:
        """One config per known provider; enabled iff its credential is set."""
        timeout = self.provider_timeout_s
        threshold = self.confidence_threshold
        common = {"timeout_s": timeout, "confidence_threshold": threshold}
        return [
            ProviderConfig(
                name="plant_id", enabled=bool(self.plant_id_api_key),
                api_key=self.plant_id_api_key, api_url=self.plant_id_api_url,
                rate_limit_per_minute=60, **common,
            ),
            ProviderConfig(
                name="plantnet", enabled=bool(self.plantnet_api_key),
                api_key=self.plantnet_api_key, api_url=self.plantnet_api_url,
                project=self.plantnet_project, rate_limit_per_minute=500, **common,
            ),
            ProviderConfig(
                name="google_vision", enabled=bool(self.google_api_key),
                api_key=self.google_api_key, api_url="https://vision.googleapis.com/v1",
                rate_limit_per_minute=1800, **common,
            ),
            ProviderConfig(
                name="huggingface", enabled=bool(self.hf_api_token),
                api_key=self.hf_api_token, api_url="https://api-inference.huggingface.co/models",
                model=self.hf_plant_model, **common,
            ),
            ProviderConfig(
                name="local_model", enabled=bool(self.local_model_path),
                model=self.local_model_path, **common,
            ),
            ProviderConfig(name="mock", enabled=self.enable_mock, **common),
        ]
