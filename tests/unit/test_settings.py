"""Tests for configuration loading."""

import pytest

from report_sync.config.settings import load_config, parse_config


class TestParseConfig:
    """Test building configuration objects."""

    def test_defaults(self):
        config = parse_config({})

        assert config.sync.collections == ["_ALL"]
        assert config.sync.max_rate_limit_retries == 2
        assert config.sync.max_nonce_retries == 20
        assert config.storage.storage_type == "memory"
        assert config.scheduler.enabled is False
        assert config.accounts == []

    def test_sections(self):
        config = parse_config({
            "sync": {"collections": ["ledgers"], "record_cap": 100},
            "public_collections": [{"conf_name": "publicTradesConf", "symbol": "tBTCUSD", "start": 5}],
            "accounts": [{"account_id": "a", "api_key": "k", "api_secret": "s"}]
        })

        assert config.sync.collections == ["ledgers"]
        assert config.sync.record_cap == 100
        assert config.public_collections[0].symbol == "tBTCUSD"
        assert config.accounts[0].api_key == "k"

    def test_env_substitution(self, monkeypatch):
        monkeypatch.setenv("TEST_API_KEY", "from-env")
        monkeypatch.delenv("TEST_MISSING", raising=False)

        config = parse_config({
            "accounts": [{"account_id": "a", "api_key": "${TEST_API_KEY}", "api_secret": "${TEST_MISSING:fallback}"}]
        })

        assert config.accounts[0].api_key == "from-env"
        assert config.accounts[0].api_secret == "fallback"

    def test_unknown_field(self):
        with pytest.raises(TypeError):
            parse_config({"sync": {"not_a_field": 1}})


class TestLoadConfig:
    """Test loading YAML files."""

    def test_load(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "scheduler:\n"
            "  enabled: true\n"
            "  sync_interval: 15m\n"
            "logging:\n"
            "  format: json\n"
        )

        config = load_config(str(config_file))

        assert config.scheduler.enabled is True
        assert config.scheduler.sync_interval == "15m"
        assert config.logging.format == "json"

    def test_empty_file(self, tmp_path):
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        assert load_config(str(config_file)).api.rest_base_url == "https://api.bitfinex.com"
