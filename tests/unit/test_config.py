"""
Unit tests for configuration loading and validation.
"""
from pathlib import Path

import pytest
from pydantic import ValidationError

from position_recon.config.config import Config, ReconciliationConfig, load_config
from position_recon.exceptions import ConfigurationError

DEFAULT_YAML = Path(__file__).resolve().parents[2] / "position_recon" / "config" / "config.yaml"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("ENVIRONMENT", "EXCHANGE_API_KEY", "EXCHANGE_API_SECRET"):
        monkeypatch.delenv(var, raising=False)


class TestLoadConfig:

    def test_default_file_loads(self):
        config = load_config()
        rc = config.reconciliation
        assert rc.throttle_seconds == 30
        assert rc.max_attempts == 3
        assert rc.detection_threshold == 0.95
        assert rc.high_confidence_ratio == 0.10
        assert rc.old_position_hours == 24
        assert rc.lookup_timeout_seconds == 5.0
        assert rc.max_unknown_factors == 2
        assert rc.cleanup_action == "delete"
        assert config.exchange.quote_asset == "USDT"
        assert config.environment == "prod"

    def test_env_expansion(self, monkeypatch):
        monkeypatch.setenv("EXCHANGE_API_KEY", "abc123")
        config = Config.from_yaml(DEFAULT_YAML)
        assert config.exchange.api_key == "abc123"

    def test_unresolved_reference_left_as_is(self):
        config = Config.from_yaml(DEFAULT_YAML)
        assert config.exchange.api_secret == "${EXCHANGE_API_SECRET}"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "paper")
        assert Config.from_yaml(DEFAULT_YAML).environment == "paper"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_partial_yaml_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("reconciliation:\n  throttle_seconds: 5\n  cleanup_action: mark_closed\n")
        config = load_config(path)
        assert config.reconciliation.throttle_seconds == 5
        assert config.reconciliation.cleanup_action == "mark_closed"
        assert config.reconciliation.max_attempts == 3


class TestValidation:

    def test_inverted_thresholds_rejected(self):
        with pytest.raises(ValidationError):
            ReconciliationConfig(detection_threshold=0.1, high_confidence_ratio=0.5)

    def test_unknown_cleanup_action_rejected(self):
        with pytest.raises(ValidationError):
            ReconciliationConfig(cleanup_action="archive")

    def test_testnet_in_prod_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("environment: prod\nexchange:\n  use_testnet: true\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_testnet_allowed_in_paper(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("environment: paper\nexchange:\n  use_testnet: true\n")
        assert load_config(path).exchange.use_testnet

    def test_audit_dir_must_differ(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("storage:\n  data_dir: data\n  audit_dir: data\n")
        with pytest.raises(ConfigurationError):
            load_config(path)
