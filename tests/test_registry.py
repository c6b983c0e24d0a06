import asyncio

import pytest

from plantdx.application.health import HealthTracker
from plantdx.domain.errors import ProviderNotAvailableError


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestProviderRegistry:
    def test_defaults_to_enabled_with_unknown_health(self, make_registry):
        registry = make_registry(["plant_id", "plantnet"])
        assert registry.enabled() == ["plant_id", "plantnet"]
        assert registry.available() == ["plant_id", "plantnet"]
        assert registry.health("plant_id").status == "unknown"

    def test_unhealthy_provider_sits_out_until_cooldown_expires(self, make_registry):
        clock = FakeClock()
        registry = make_registry(["a", "b"], unhealthy_cooldown_s=30, clock=clock)

        registry.mark_unhealthy("a", "HTTP 503")
        assert registry.available() == ["b"]

        clock.now += 31
        assert registry.available() == ["a", "b"]

    def test_failed_provider_stays_available_without_cooldown(self, make_registry):
        registry = make_registry(["a", "b"])
        registry.mark_unhealthy("a", "HTTP 503")
        assert registry.is_cooling_down("a") is False
        assert registry.available() == ["a", "b"]

    def test_all_unhealthy_still_returns_enabled(self, make_registry):
        registry = make_registry(["a", "b"])
        registry.mark_unhealthy("a", "down")
        registry.mark_unhealthy("b", "down")
        assert registry.available() == ["a", "b"]

    def test_health_recovers_on_success(self, make_registry):
        registry = make_registry(["a", "b"])
        registry.mark_unhealthy("a", "down")
        registry.mark_healthy("a", response_time_ms=12)
        assert registry.available() == ["a", "b"]
        assert registry.health("a").response_time_ms == 12

    def test_writes_do_not_mutate_existing_snapshots(self, make_registry):
        registry = make_registry(["a", "b"])
        before = registry.snapshot()
        registry.set_enabled("a", False)
        assert before["a"].enabled is True
        assert registry.snapshot()["a"].enabled is False
        assert registry.enabled() == ["b"]

    def test_require_enabled(self, make_registry):
        registry = make_registry(["a", "b"])
        registry.set_enabled("a", False)
        with pytest.raises(ProviderNotAvailableError):
            registry.require_enabled("a")
        with pytest.raises(ProviderNotAvailableError):
            registry.require_enabled("nope")
        assert registry.require_enabled("b").name == "b"

    def test_update_confidence_threshold(self, make_registry):
        registry = make_registry(["a"])
        registry.update_confidence_threshold(0.55)
        assert registry.confidence_threshold == 0.55
        assert registry.get("a").confidence_threshold == 0.55
        with pytest.raises(ValueError):
            registry.update_confidence_threshold(1.5)

    def test_status_report(self, make_registry):
        registry = make_registry(["a", "b", "c"])
        registry.set_enabled("c", False)
        registry.mark_unhealthy("b", "HTTP 401")
        report = {entry["provider"]: entry for entry in registry.status()}
        assert report["a"]["status"] == "unknown"
        assert report["b"] == {"provider": "b", "status": "unhealthy", "error": "HTTP 401"}
        assert report["c"]["status"] == "disabled"


class TestHealthTracker:
    def test_probe_all_marks_each_provider(self, make_registry, fake_adapter):
        registry = make_registry(["a", "b"])
        adapters = {
            "a": fake_adapter("a"),
            "b": fake_adapter("b", health_error=RuntimeError("No API key")),
        }
        report = asyncio.run(HealthTracker(registry, adapters).probe_all())

        statuses = {entry["provider"]: entry["status"] for entry in report}
        assert statuses == {"a": "healthy", "b": "unhealthy"}
        assert registry.health("b").last_error == "No API key"

    def test_missing_probe_adapter_leaves_provider_enabled(self, make_registry):
        registry = make_registry(["a"])
        asyncio.run(HealthTracker(registry, {}).probe_all())
        assert registry.enabled() == ["a"]
        assert registry.health("a").status == "unknown"
