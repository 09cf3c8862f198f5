"""Test Settings defaults, TOML loading, env overrides and coherence checks."""

from decimal import Decimal

import pytest

from order_orchestrator.core.config import Settings, load_settings
from order_orchestrator.core.enums import BusBackend, StoreBackend
from order_orchestrator.core.errors import ConfigError


class TestSettingsDefaults:
    def test_default_settings(self):
        settings = Settings()
        assert settings.store.backend == StoreBackend.MEMORY
        assert settings.bus.backend == BusBackend.MEMORY
        assert settings.relay.max_attempts == 10
        assert settings.relay.max_backoff_seconds == 300.0
        settings.validate_coherence()  # Should not raise

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("ORDERS_RELAY__MAX_ATTEMPTS", "4")
        monkeypatch.setenv("ORDERS_STORE__BACKEND", "postgres")
        settings = Settings()
        assert settings.relay.max_attempts == 4
        assert settings.store.backend == StoreBackend.POSTGRES


class TestLoadSettings:
    def test_load_from_toml(self, tmp_path):
        path = tmp_path / "orders.toml"
        path.write_text(
            'service_name = "orders-eu"\n'
            "[relay]\n"
            "worker_count = 3\n"
            "[catalog.products.p-widget]\n"
            'name = "Widget"\n'
            'price = "10.00"\n'
        )
        settings = load_settings(path)
        assert settings.service_name == "orders-eu"
        assert settings.relay.worker_count == 3
        assert settings.catalog.products["p-widget"].price == Decimal("10.00")

    def test_overrides_merge_into_sections(self, tmp_path):
        path = tmp_path / "orders.toml"
        path.write_text("[relay]\nworker_count = 3\n")
        settings = load_settings(path, overrides={"relay": {"batch_size": 7}})
        assert settings.relay.worker_count == 3
        assert settings.relay.batch_size == 7

    def test_missing_file_uses_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "absent.toml")
        assert settings.api.port == 8080

    @pytest.mark.parametrize(
        "relay",
        [
            {"max_attempts": 0},
            {"base_backoff_seconds": 0},
            {"base_backoff_seconds": 10, "max_backoff_seconds": 5},
            {"worker_count": 0},
            {"lease_seconds": 5, "delivery_timeout_seconds": 5},
            {"batch_size": 10, "lease_seconds": 30, "delivery_timeout_seconds": 5},
        ],
    )
    def test_incoherent_relay_settings_rejected(self, relay):
        with pytest.raises(ConfigError):
            load_settings(overrides={"relay": relay})
