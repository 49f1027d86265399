"""
Tests for the pattern and threshold registry.

Validates default config loading, the process-wide singleton and its reset
hook, config overrides and denylist compilation.
"""

import pytest
import yaml

from caseguard.verification import patterns
from caseguard.verification.patterns import (
    DEFAULT_CONFIG_PATH,
    ConfigError,
    build_denylist_pattern,
    get_config,
    load_config,
    reset_config,
)


def _write_override(tmp_path, mutate):
    with open(DEFAULT_CONFIG_PATH, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    mutate(raw)
    path = tmp_path / "verification.yaml"
    path.write_text(yaml.safe_dump(raw), encoding="utf-8")
    return path


class TestDefaultConfig:
    """Tests for the packaged defaults."""

    def test_thresholds(self, config):
        """Test default numeric thresholds."""
        assert config.tolerance == 0.01
        assert config.cited_window == 50
        assert config.scaled_cited_window == 30
        assert config.uncited_window == 50
        assert config.currency_floor == 1000
        assert config.count_floor == 100
        assert config.uncited_ceiling == 5

    def test_citation_pattern(self, config):
        """Test citation tokens with 3 or 4 digits match, others don't."""
        assert config.citation_short.search("see [S001]").group(1) == "S001"
        assert config.citation_short.search("see [S1234]").group(1) == "S1234"
        assert config.citation_short.search("see [S12]") is None
        assert config.citation_short.search("see [S12345]") is None

    def test_full_citation_pattern(self, config):
        """Test full citations capture the URL."""
        m = config.citation_full.search("[S045](https://example.com/a?b=1)")
        assert m.group(1) == "S045"
        assert m.group(2) == "https://example.com/a?b=1"

    def test_scale_factor(self, config):
        """Test scale suffixes are case-insensitive."""
        assert config.scale_factor("M") == 1_000_000
        assert config.scale_factor("million") == 1_000_000
        assert config.scale_factor("B") == 1_000_000_000
        assert config.scale_factor("k") == 1000
        assert config.scale_factor("Trillion") == 1_000_000_000_000
        assert config.scale_factor(None) == 1.0

    def test_severity_map(self, config):
        """Test severities come from the registry; unknown types are blocking."""
        assert config.severity_for("HASH_MISMATCH") == "blocking"
        assert config.severity_for("MISSING_SIGNATURE") == "warning"
        assert config.severity_for("UNCITED_STATISTIC") == "warning"
        assert config.severity_for("SOMETHING_NEW") == "blocking"

    def test_round_timestamps(self, config):
        """Test exact-hour and zero-millisecond timestamps are flagged."""
        assert config.is_round_timestamp("2026-01-15T14:00:00Z")
        assert config.is_round_timestamp("2026-01-15T14:00:00.000Z")
        assert config.is_round_timestamp("2026-01-15T14:23:17.000Z")
        assert not config.is_round_timestamp("2026-01-15T14:23:17.482Z")
        assert not config.is_round_timestamp("2026-01-15T14:23:17Z")

    def test_signature_pattern(self, config):
        """Test capture signature shape."""
        assert config.signature.match("sig_v2_" + "a" * 32)
        assert config.signature.match("sig_v1_" + "0123456789abcdef" * 2)
        assert not config.signature.match("sig_v3_" + "a" * 32)
        assert not config.signature.match("sig_v2_" + "a" * 31)
        assert not config.signature.match("manual")

    def test_metadata_schema_shipped(self, config):
        """Test the metadata schema is packaged next to the config."""
        assert config.schema_path.exists()


class TestSingleton:
    """Tests for get_config/reset_config."""

    def test_get_config_cached(self):
        """Test get_config returns the same instance until reset."""
        first = get_config()
        assert get_config() is first
        reset_config()
        assert get_config() is not first

    def test_env_override(self, tmp_path, monkeypatch):
        """Test CASEGUARD_CONFIG points the singleton at another file."""
        path = _write_override(tmp_path, lambda raw: raw["statistics"].update({"uncited_ceiling": 2}))
        monkeypatch.setenv("CASEGUARD_CONFIG", str(path))
        reset_config()

        config = get_config()
        assert config.uncited_ceiling == 2
        assert config.source_path == str(path)

    def test_load_config_is_pure(self, tmp_path):
        """Test load_config with an explicit path leaves the singleton alone."""
        shared = get_config()
        path = _write_override(tmp_path, lambda raw: raw["statistics"].update({"tolerance": 0.05}))

        loaded = load_config(path)

        assert loaded.tolerance == 0.05
        assert get_config() is shared
        assert patterns._config is shared


class TestConfigErrors:
    """Tests for malformed config handling."""

    def test_missing_file(self, tmp_path):
        """Test missing config raises ConfigError."""
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_missing_section(self, tmp_path):
        """Test missing required section raises ConfigError."""
        path = _write_override(tmp_path, lambda raw: raw.pop("statistics"))
        with pytest.raises(ConfigError, match="statistics"):
            load_config(path)

    def test_bad_regex(self, tmp_path):
        """Test an uncompilable regex raises ConfigError."""
        path = _write_override(tmp_path, lambda raw: raw["citation"].update({"short": "[unclosed"}))
        with pytest.raises(ConfigError, match="citation.short"):
            load_config(path)

    def test_bad_severity(self, tmp_path):
        """Test an unknown severity value raises ConfigError."""
        path = _write_override(tmp_path, lambda raw: raw["severities"].update({"HASH_MISMATCH": "fatal"}))
        with pytest.raises(ConfigError, match="fatal"):
            load_config(path)

    def test_invalid_yaml(self, tmp_path):
        """Test unparseable YAML raises ConfigError."""
        path = tmp_path / "broken.yaml"
        path.write_text("paths: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="Failed to parse"):
            load_config(path)


class TestDenylist:
    """Tests for the fabrication denylist."""

    def test_default_phrases(self, config):
        """Test default compilation phrases match at the start only."""
        assert config.compilation_content.match("Research compilation from multiple sources...")
        assert config.compilation_content.match("research COMPILATION from x")
        assert config.compilation_content.match("Summary of findings")
        assert not config.compilation_content.match("The report includes a summary of findings")

    def test_phrases_are_literals(self):
        """Test regex metacharacters in phrases are escaped."""
        pattern = build_denylist_pattern(["Notes (draft)", "a.b"])
        assert pattern.match("Notes (draft) follow")
        assert pattern.match("a.b")
        assert not pattern.match("axb")

    def test_empty_denylist_matches_nothing(self):
        """Test an empty denylist never matches."""
        pattern = build_denylist_pattern([])
        assert not pattern.match("Research compilation")
        assert not pattern.match("")

    def test_denylist_override(self, tmp_path):
        """Test the denylist is supplied by config, not code."""
        path = _write_override(
            tmp_path,
            lambda raw: raw["fabrication"].update({"compilation_phrases": ["Auto-generated digest"]}),
        )
        config = load_config(path)

        assert config.compilation_content.match("Auto-generated digest of coverage")
        assert not config.compilation_content.match("Research compilation from multiple sources")
