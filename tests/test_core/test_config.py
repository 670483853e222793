"""Tests for killswitch configuration and signing resolution."""

import pytest
import yaml

from killswitch.core.config import KillswitchConfig, SigningConfig
from killswitch.core.errors import InvalidSigningKey, MissingSigningKey


class TestKillswitchConfig:
    def test_default_config_has_all_sections(self):
        config = KillswitchConfig()
        assert "monitor" in config
        assert "limits" in config
        assert "receipts" in config
        assert "signing" in config
        assert "notification" in config
        assert "logging" in config

    def test_default_limits(self):
        config = KillswitchConfig()
        assert config.get("limits.cpu_percent") == 90.0
        assert config.get("limits.memory_mb") == 8000.0
        assert config.get("limits.timeout_seconds") == 3600.0
        assert config.get("monitor.tick_interval_seconds") == 1.0
        assert config.get("receipts.output_path") == "death-receipt.json"

    def test_get_missing_key_returns_default(self):
        config = KillswitchConfig()
        assert config.get("nonexistent.key", "fallback") == "fallback"

    def test_set_nested_value(self):
        config = KillswitchConfig()
        config.set("notification.enabled", False)
        assert config.get("notification.enabled") is False

    def test_save_and_load(self, tmp_data_dir):
        config = KillswitchConfig()
        config.set("limits.cpu_percent", 50)
        config_path = tmp_data_dir / "config.yaml"
        config.save(config_path)

        loaded = KillswitchConfig.load(config_path)
        assert loaded.get("limits.cpu_percent") == 50

    def test_load_nonexistent_returns_defaults(self, tmp_data_dir):
        config = KillswitchConfig.load(tmp_data_dir / "nonexistent.yaml")
        assert config.get("notification.enabled") is True

    def test_load_merges_with_defaults(self, tmp_data_dir):
        config_path = tmp_data_dir / "partial.yaml"
        config_path.write_text(yaml.dump({"limits": {"memory_mb": 100}}))
        config = KillswitchConfig.load(config_path)
        assert config.get("limits.memory_mb") == 100
        assert config.get("limits.cpu_percent") == 90.0
        assert config.get("signing.env_vars") == ["KILLSWITCH_KEY", "RECEIPT_KEY"]

    def test_default_path_honours_env(self, tmp_data_dir):
        target = tmp_data_dir / "custom.yaml"
        path = KillswitchConfig.default_path({"KILLSWITCH_CONFIG": str(target)})
        assert path == target

    def test_default_path_under_home(self):
        path = KillswitchConfig.default_path({})
        assert path.name == "config.yaml"
        assert path.parent.name == ".killswitch"


class TestSigningConfig:
    def test_explicit_key_wins(self):
        signing = SigningConfig.resolve("flag-key", {"KILLSWITCH_KEY": "env-key"})
        assert signing.key == "flag-key"

    def test_env_fallback_order(self):
        signing = SigningConfig.resolve(
            None, {"RECEIPT_KEY": "second", "KILLSWITCH_KEY": "first"},
        )
        assert signing.key == "first"

    def test_second_env_var_used(self):
        signing = SigningConfig.resolve(None, {"RECEIPT_KEY": "second"})
        assert signing.key == "second"

    def test_empty_values_ignored(self):
        signing = SigningConfig.resolve("", {"KILLSWITCH_KEY": ""})
        assert signing.key is None
        assert signing.enabled is False

    def test_no_key_gives_no_signer(self):
        assert SigningConfig().signer() is None

    def test_require_signer_without_key(self):
        with pytest.raises(MissingSigningKey):
            SigningConfig().require_signer()

    def test_signer_address(self, test_key, test_address):
        signer = SigningConfig(key=test_key).require_signer()
        assert signer.address == test_address

    def test_invalid_key(self):
        with pytest.raises(InvalidSigningKey):
            SigningConfig(key="not-a-key").signer()
