"""Tests for environment configuration."""

import pytest

from poa.config import AttentionConfig, load_config
from poa.errors import ConfigError


class TestLoadConfig:
    def test_defaults(self):
        config = load_config({})

        assert config.min_attention_ms == 10_000
        assert config.heartbeat_interval_ms == 30_000
        assert config.regularity_tolerance_ms == 1000
        assert config.bot_score_threshold == 0.7
        assert config.session_retention_ms == 24 * 60 * 60 * 1000
        assert config.sweep_interval_ms == 60 * 60 * 1000
        assert config.port == 3001
        assert config.artifact_provider == "memory"

    def test_production_override(self):
        config = load_config({
            "MIN_ATTENTION_TIME": "300000",
            "BOT_SCORE_THRESHOLD": "0.6",
            "LOG_LEVEL": "debug",
            "IPFS_PROVIDER": "Pinata",
            "CORS_ORIGINS": "https://a.example, https://b.example",
        })

        assert config.min_attention_ms == 300_000
        assert config.bot_score_threshold == 0.6
        assert config.log_level == "DEBUG"
        assert config.artifact_provider == "pinata"
        assert config.cors_origins == ("https://a.example", "https://b.example")

    def test_blank_values_use_defaults(self):
        assert load_config({"PORT": "  "}).port == 3001

    def test_unparseable_integer(self):
        with pytest.raises(ConfigError, match="MIN_ATTENTION_TIME"):
            load_config({"MIN_ATTENTION_TIME": "ten seconds"})

    @pytest.mark.parametrize(
        "env",
        [
            {"MIN_ATTENTION_TIME": "0"},
            {"HEARTBEAT_INTERVAL": "-5"},
            {"BOT_SCORE_THRESHOLD": "1.5"},
            {"PORT": "70000"},
            {"LOG_LEVEL": "LOUD"},
            {"IPFS_PROVIDER": "s3"},
        ],
    )
    def test_constraint_violations(self, env):
        (name,) = env
        with pytest.raises(ConfigError, match=name):
            load_config(env)

    def test_config_is_frozen(self):
        config = AttentionConfig()
        with pytest.raises(Exception):
            config.min_attention_ms = 1
