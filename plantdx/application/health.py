import asyncio
import logging
import time
from typing import List, Mapping

from plantdx.application.ports import ClassifierPort
from plantdx.application.registry import ProviderRegistry


logger = logging.getLogger(__name__)


class HealthTracker:
    """Best-effort probes that write provider health into the registry.

    Probing is never required: providers start enabled and are marked
    unhealthy lazily by the orchestrator on their first real failure.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        adapters: Mapping[str, ClassifierPort],
        probe_timeout_s: float = 5.0,
    ):
        self.registry = registry
        self.adapters = adapters
        self.probe_timeout_s = probe_timeout_s

    async def probe(self, name: str) -> None:
        adapter = self.adapters.get(name)
        if adapter is None:
            return
        started = time.perf_counter()
        try:
            await asyncio.wait_for(asyncio.to_thread(adapter.health_check), timeout=self.probe_timeout_s)
        except asyncio.TimeoutError:
            self.registry.mark_unhealthy(name, f"health probe timed out after {self.probe_timeout_s:g}s")
        except Exception as e:  # noqa: BLE001 - probe is best effort
            self.registry.mark_unhealthy(name, str(e) or e.__class__.__name__)
        else:
            self.registry.mark_healthy(name, int(round((time.perf_counter() - started) * 1000.0)))

    async def probe_all(self) -> List[dict]:
        names = self.registry.enabled()
        await asyncio.gather(*(self.probe(name) for name in names))
        report = self.registry.status()
        logger.info("Provider health: %s", {r["provider"]: r["status"] for r in report})
        return report
