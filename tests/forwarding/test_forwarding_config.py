"""
Tests for forwarding configuration loading, validation and scope merging.
"""
from types import SimpleNamespace

import pytest

from extforward.forwarding.conditions import ConditionCache
from extforward.forwarding.config import (
    DEFAULT_HEADERS,
    ConfigurationError,
    ExtForwardConfig,
    load_config,
)


def _settings(**overrides):
    values = {
        "EXTFORWARD_CONFIG_PATH": None,
        "EXTFORWARD_FORWARDER": {},
        "EXTFORWARD_HEADERS": [],
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestValidation:
    """Tests for ExtForwardConfig.from_mapping."""

    def test_valid_configuration(self):
        """Test a well-formed configuration."""
        config = ExtForwardConfig.from_mapping(
            {
                "forwarder": {"10.0.0.232": "trust", "10.0.0.233": "trust"},
                "headers": ["X-Real-Forwarded-For"],
            }
        )

        assert list(config.forwarder) == ["10.0.0.232", "10.0.0.233"]
        assert config.headers == ["X-Real-Forwarded-For"]

    def test_any_directive_text_is_accepted(self):
        """Test that non-trust directive text is valid configuration."""
        config = ExtForwardConfig.from_mapping({"forwarder": {"all": "deny"}})

        assert config.forwarder == {"all": "deny"}

    @pytest.mark.parametrize(
        "forwarder",
        [
            ["10.0.0.232"],
            "10.0.0.232",
            {"10.0.0.232": 1},
            {"10.0.0.232": ["trust"]},
            {"10.0.0.232": None},
        ],
    )
    def test_malformed_forwarder_is_rejected(self, forwarder):
        """Test that forwarder must map strings to strings."""
        with pytest.raises(ConfigurationError, match="extforward.forwarder"):
            ExtForwardConfig.from_mapping({"forwarder": forwarder})

    @pytest.mark.parametrize(
        "headers",
        [
            "X-Forwarded-For",
            {"X-Forwarded-For": "yes"},
            [["X-Forwarded-For"]],
            [1, 2],
        ],
    )
    def test_malformed_headers_are_rejected(self, headers):
        """Test that headers must be a flat list of strings."""
        with pytest.raises(ConfigurationError, match="expected list of"):
            ExtForwardConfig.from_mapping({"headers": headers})

    def test_unknown_key_is_rejected(self):
        """Test that misspelled keys are not silently ignored."""
        with pytest.raises(ConfigurationError):
            ExtForwardConfig.from_mapping({"forwarders": {"10.0.0.1": "trust"}})

    def test_non_mapping_is_rejected(self):
        """Test that the root must be a mapping."""
        with pytest.raises(ConfigurationError, match="expected a mapping"):
            ExtForwardConfig.from_mapping(["forwarder"])

    def test_errors_are_aggregated(self):
        """Test that all problems are reported together."""
        with pytest.raises(ConfigurationError) as exc_info:
            ExtForwardConfig.from_mapping({"forwarder": "x", "headers": "y"})

        message = str(exc_info.value)
        assert message.startswith("Configuration validation failed:")
        assert "extforward.forwarder" in message
        assert "extforward.headers" in message

    def test_config_is_frozen(self):
        """Test that a validated configuration cannot be mutated."""
        config = ExtForwardConfig.from_mapping({"forwarder": {"10.0.0.1": "trust"}})

        with pytest.raises(Exception):
            config.headers = ["X"]


class TestPolicy:
    """Tests for ForwardingPolicy compilation and resolution."""

    def test_default_headers_at_global_scope(self, make_scope):
        """Test that an empty global header list falls back to the default."""
        policy = ExtForwardConfig().build_policy()

        rules = policy.resolve(make_scope())

        assert rules.headers == DEFAULT_HEADERS == ("X-Forwarded-For", "Forwarded-For")
        assert len(rules.trusted) == 0

    def test_configured_headers_keep_order(self, make_scope):
        """Test that configured header names keep their priority order."""
        policy = ExtForwardConfig(headers=["X-Cluster-Client-Ip", "X-Forwarded-For"]).build_policy()

        assert policy.resolve(make_scope()).headers == ("X-Cluster-Client-Ip", "X-Forwarded-For")

    def test_matching_condition_overrides_forwarder(self, make_scope):
        """Test that a matching conditional block replaces the trusted set."""
        config = ExtForwardConfig.from_mapping(
            {
                "forwarder": {"10.0.0.232": "trust"},
                "headers": ["X-Forwarded-For"],
                "conditions": [
                    {
                        "condition": {"field": "host", "value": "internal.example.com"},
                        "forwarder": {"all": "trust"},
                    }
                ],
            }
        )
        policy = config.build_policy()

        internal = policy.resolve(make_scope(headers=[("Host", "internal.example.com")]))
        public = policy.resolve(make_scope(headers=[("Host", "www.example.com")]))

        assert internal.trusted.trust_all
        assert internal.headers == ("X-Forwarded-For",)
        assert not public.trusted.trust_all
        assert public.trusted.is_trusted("10.0.0.232")

    def test_explicit_empty_headers_restore_default(self, make_scope):
        """Test that headers: [] in a conditional block means the default list."""
        config = ExtForwardConfig.from_mapping(
            {
                "headers": ["X-Custom"],
                "conditions": [
                    {"condition": {"field": "url", "operator": "=~", "value": "^/api"}, "headers": []}
                ],
            }
        )
        policy = config.build_policy()

        assert policy.resolve(make_scope(path="/api/x")).headers == DEFAULT_HEADERS
        assert policy.resolve(make_scope(path="/other")).headers == ("X-Custom",)

    def test_later_conditions_win(self, make_scope):
        """Test that matching blocks are merged in order."""
        config = ExtForwardConfig.from_mapping(
            {
                "conditions": [
                    {"condition": {"field": "scheme", "value": "http"}, "forwarder": {"10.0.0.1": "trust"}},
                    {"condition": {"field": "url", "value": "/"}, "forwarder": {"10.0.0.2": "trust"}},
                ],
            }
        )

        rules = config.build_policy().resolve(make_scope(path="/"))

        assert rules.trusted.is_trusted("10.0.0.2")
        assert not rules.trusted.is_trusted("10.0.0.1")

    def test_resolve_uses_request_cache(self, make_scope):
        """Test that resolution records condition results in the given cache."""
        config = ExtForwardConfig.from_mapping(
            {"conditions": [{"condition": {"field": "remote_ip", "value": "10.0.0.232"}, "headers": ["A"]}]}
        )
        cache = ConditionCache()

        config.build_policy().resolve(make_scope(), cache)

        assert len(cache) == 1


class TestLoadConfig:
    """Tests for load_config."""

    def test_load_from_settings(self):
        """Test loading from EXTFORWARD_* settings."""
        settings = _settings(
            EXTFORWARD_FORWARDER={"10.0.0.232": "trust"},
            EXTFORWARD_HEADERS=["X-Forwarded-For"],
        )

        config = load_config(settings=settings)

        assert config.forwarder == {"10.0.0.232": "trust"}
        assert config.headers == ["X-Forwarded-For"]

    def test_load_from_yaml(self, tmp_path):
        """Test loading a YAML file with a top-level extforward key."""
        path = tmp_path / "extforward.yaml"
        path.write_text(
            "extforward:\n"
            "  forwarder:\n"
            '    "10.0.0.232": trust\n'
            '    "::1": trust\n'
            "  headers:\n"
            "    - X-Forwarded-For\n"
            "  conditions:\n"
            "    - condition: {field: host, value: internal.example.com}\n"
            "      forwarder: {all: trust}\n"
        )

        config = load_config(str(path), settings=_settings())

        assert config.forwarder == {"10.0.0.232": "trust", "::1": "trust"}
        assert config.conditions[0].forwarder == {"all": "trust"}
        assert config.conditions[0].headers is None

    def test_settings_path_is_used(self, tmp_path):
        """Test that EXTFORWARD_CONFIG_PATH is honored."""
        path = tmp_path / "forward.yaml"
        path.write_text("forwarder:\n  '10.0.0.9': trust\n")

        config = load_config(settings=_settings(EXTFORWARD_CONFIG_PATH=str(path)))

        assert config.forwarder == {"10.0.0.9": "trust"}

    def test_env_substitution(self, tmp_path, monkeypatch):
        """Test ${VAR} and ${VAR:default} substitution in YAML values."""
        monkeypatch.setenv("EDGE_PROXY_HEADER", "X-Edge-Client")
        monkeypatch.delenv("TRUST_DIRECTIVE", raising=False)
        path = tmp_path / "forward.yaml"
        path.write_text(
            "forwarder:\n  '10.0.0.9': ${TRUST_DIRECTIVE:trust}\n"
            "headers:\n  - ${EDGE_PROXY_HEADER}\n"
        )

        config = load_config(str(path), settings=_settings())

        assert config.forwarder == {"10.0.0.9": "trust"}
        assert config.headers == ["X-Edge-Client"]

    def test_missing_file_is_an_error(self, tmp_path):
        """Test that a configured but missing file is fatal."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(str(tmp_path / "missing.yaml"), settings=_settings())

    def test_malformed_yaml_shape_is_an_error(self, tmp_path):
        """Test that a wrongly shaped YAML forwarder is fatal."""
        path = tmp_path / "forward.yaml"
        path.write_text("forwarder:\n  - 10.0.0.232\n")

        with pytest.raises(ConfigurationError, match="extforward.forwarder"):
            load_config(str(path), settings=_settings())

    def test_unparseable_yaml_is_an_error(self, tmp_path):
        """Test that YAML syntax errors surface as ConfigurationError."""
        path = tmp_path / "forward.yaml"
        path.write_text("forwarder: {unclosed\n")

        with pytest.raises(ConfigurationError, match="Could not parse"):
            load_config(str(path), settings=_settings())

    def test_trust_all_logs_warning(self, caplog):
        """Test that trusting every peer is called out in the logs."""
        with caplog.at_level("WARNING", logger="extforward.forwarding.config"):
            load_config(settings=_settings(EXTFORWARD_FORWARDER={"all": "trust"}))

        assert "trusts all peers" in caplog.text
