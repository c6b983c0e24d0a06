"""Provider configuration and health state shared across requests.

Readers never lock: every write builds a new dict and swaps the reference
while holding a lock scoped to that swap only.
"""
import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict

from plantdx.domain.errors import ProviderNotAvailableError
from plantdx.domain.models import ProviderConfig


logger = logging.getLogger(__name__)


class ProviderHealth(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["unknown", "healthy", "unhealthy"] = "unknown"
    last_error: Optional[str] = None
    checked_at: Optional[float] = None
    response_time_ms: Optional[int] = None


class ProviderRegistry:
    def __init__(
        self,
        configs: Iterable[ProviderConfig],
        primary: str,
        fallback: str,
        confidence_threshold: float = 0.7,
        unhealthy_cooldown_s: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._configs: Dict[str, ProviderConfig] = {c.name: c for c in configs}
        self._health: Dict[str, ProviderHealth] = {name: ProviderHealth() for name in self._configs}
        self._lock = threading.Lock()
        self.primary = primary
        self.fallback = fallback
        self._confidence_threshold = confidence_threshold
        self.unhealthy_cooldown_s = unhealthy_cooldown_s
        self._clock = clock
        logger.info("Provider registry initialized; enabled providers: %s", self.enabled())

    @property
    def confidence_threshold(self) -> float:
        return self._confidence_threshold

    def names(self) -> List[str]:
        return list(self._configs)

    def snapshot(self) -> Dict[str, ProviderConfig]:
        return self._configs

    def get(self, name: str) -> ProviderConfig:
        config = self._configs.get(name)
        if config is None:
            raise ProviderNotAvailableError(name, "unknown provider")
        return config

    def require_enabled(self, name: str) -> ProviderConfig:
        config = self.get(name)
        if not config.enabled:
            raise ProviderNotAvailableError(name)
        return config

    def enabled(self) -> List[str]:
        return [name for name, c in self._configs.items() if c.enabled]

    def health(self, name: str) -> ProviderHealth:
        return self._health.get(name, ProviderHealth())

    def is_cooling_down(self, name: str) -> bool:
        if self.unhealthy_cooldown_s <= 0:
            return False
        health = self.health(name)
        if health.status != "unhealthy" or health.checked_at is None:
            return False
        return self._clock() - health.checked_at < self.unhealthy_cooldown_s

    def available(self) -> List[str]:
        """Enabled providers that are not inside an unhealthy cooldown.

        With the default cooldown of 0 this is every enabled provider. When every enabled provider is cooling down, all of them are returned
        so a request is never refused without trying.
        """
        enabled = self.enabled()
        ready = [name for name in enabled if not self.is_cooling_down(name)]
        return ready or enabled

    def set_enabled(self, name: str, enabled: bool) -> None:
        with self._lock:
            current = self._configs.get(name)
            if current is None or current.enabled == enabled:
                return
            configs = dict(self._configs)
            configs[name] = current.model_copy(update={"enabled": enabled})
            self._configs = configs
        logger.info("Provider %s %s", name, "enabled" if enabled else "disabled")

    def mark_healthy(self, name: str, response_time_ms: Optional[int] = None) -> None:
        self._set_health(name, ProviderHealth(
            status="healthy", checked_at=self._clock(), response_time_ms=response_time_ms,
        ))

    def mark_unhealthy(self, name: str, error: str) -> None:
        if self.health(name).status != "unhealthy":
            logger.warning("Provider %s marked unhealthy: %s", name, error)
        self._set_health(name, ProviderHealth(
            status="unhealthy", checked_at=self._clock(), last_error=error,
        ))

    def _set_health(self, name: str, health: ProviderHealth) -> None:
        if name not in self._configs:
            return
        with self._lock:
            states = dict(self._health)
            states[name] = health
            self._health = states

    def update_confidence_threshold(self, threshold: float) -> None:
        if threshold < 0 or threshold > 1:
            raise ValueError("Confidence threshold must be between 0 and 1")
        with self._lock:
            self._configs = {
                name: c.model_copy(update={"confidence_threshold": threshold})
                for name, c in self._configs.items()
            }
            self._confidence_threshold = threshold
        logger.info("Updated confidence threshold to %.2f", threshold)

    def status(self) -> List[dict]:
        report = []
        for name, config in self._configs.items():
            if not config.enabled:
                report.append({"provider": name, "status": "disabled", "reason": "Not configured"})
                continue
            health = self.health(name)
            entry = {"provider": name, "status": health.status}
            if health.last_error:
                entry["error"] = health.last_error
            if health.response_time_ms is not None:
                entry["response_time_ms"] = health.response_time_ms
            report.append(entry)
        return report
