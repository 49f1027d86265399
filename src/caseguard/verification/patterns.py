"""
Pattern and threshold registry for the verification pipeline.

Loads config/verification.yaml once per process and compiles every regex the
steps need (citation syntax, scale table, fabrication denylist, round
timestamps, severity map). ``get_config()`` returns the shared instance;
``reset_config()`` drops it so tests can load a different file.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Pattern

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"
DEFAULT_CONFIG_PATH = CONFIG_DIR / "verification.yaml"
METADATA_SCHEMA_PATH = CONFIG_DIR / "schemas" / "evidence_metadata.schema.json"

CONFIG_ENV_VAR = "CASEGUARD_CONFIG"

SEVERITY_BLOCKING = "blocking"
SEVERITY_WARNING = "warning"
VALID_SEVERITIES = {SEVERITY_BLOCKING, SEVERITY_WARNING}

# Matches nothing; used when a denylist is configured empty.
_NEVER = r"(?!)"


class ConfigError(Exception):
    """Raised when the verification config is missing or malformed."""
    pass


@dataclass(frozen=True)
class VerificationConfig:
    """Compiled verification rules. Immutable once built."""
    paths: Dict[str, str]
    citation_short: Pattern
    citation_full: Pattern
    scale: Dict[str, float]
    count_nouns: List[str]
    sources_section: Pattern
    tolerance: float
    cited_window: int
    scaled_cited_window: int
    uncited_window: int
    currency_floor: float
    count_floor: float
    uncited_ceiling: int
    audit_window: int
    compilation_content: Pattern
    content_prefix_chars: int
    suspicious_title: Pattern
    suspicious_types: FrozenSet[str]
    round_timestamps: List[Pattern]
    signature: Pattern
    severities: Dict[str, str]
    schema_path: Path = METADATA_SCHEMA_PATH
    source_path: Optional[str] = None
    schema_version: str = "2.0.0"
    compilation_phrases: List[str] = field(default_factory=list)

    def scale_factor(self, suffix: Optional[str]) -> float:
        """Multiplier for a scale suffix (``M``, ``million``...); 1 if none."""
        if not suffix:
            return 1.0
        return self.scale.get(suffix.lower(), 1.0)

    def severity_for(self, issue_type: str) -> str:
        """Severity for an issue type. Unknown types are blocking."""
        return self.severities.get(issue_type, SEVERITY_BLOCKING)

    def is_round_timestamp(self, timestamp: str) -> bool:
        return any(p.search(timestamp) for p in self.round_timestamps)


def _compile(pattern: str, key: str, flags: int = 0) -> Pattern:
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise ConfigError(f"Invalid regex for '{key}': {e}")


def build_denylist_pattern(phrases: List[str]) -> Pattern:
    """
    Compile compilation phrases into one anchored, case-insensitive regex.

    Phrases are literals, not regexes.
    """
    cleaned = [p.strip() for p in phrases if isinstance(p, str) and p.strip()]
    if not cleaned:
        return re.compile(_NEVER)
    alternation = "|".join(re.escape(p) for p in cleaned)
    return re.compile(rf"^(?:{alternation})", re.IGNORECASE)


def build_config(raw: Dict[str, Any], source_path: Optional[str] = None) -> VerificationConfig:
    """
    Build a VerificationConfig from a parsed YAML mapping.

    Args:
        raw: Parsed config mapping
        source_path: Where the mapping came from (for diagnostics)

    Returns:
        Compiled VerificationConfig

    Raises:
        ConfigError: If a required section is missing or a regex does not compile
    """
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")

    for section in ("paths", "citation", "scale", "statistics", "fabrication"):
        if not isinstance(raw.get(section), dict):
            raise ConfigError(f"Missing config section: {section}")

    citation = raw["citation"]
    stats = raw["statistics"]
    fab = raw["fabrication"]

    severities = dict(raw.get("severities") or {})
    for issue_type, severity in severities.items():
        if severity not in VALID_SEVERITIES:
            raise ConfigError(f"Invalid severity '{severity}' for {issue_type}")

    try:
        scale = {str(k).lower(): float(v) for k, v in raw["scale"].items()}
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid scale table: {e}")

    phrases = list(fab.get("compilation_phrases") or [])

    return VerificationConfig(
        paths={str(k): str(v) for k, v in raw["paths"].items()},
        citation_short=_compile(citation.get("short", r"\[(S\d{3,4})\]"), "citation.short"),
        citation_full=_compile(citation.get("full", r"\[(S\d{3,4})\]\(([^)\s]+)\)"), "citation.full"),
        scale=scale,
        count_nouns=list(raw.get("count_nouns") or []),
        sources_section=_compile(
            raw.get("sources_section", r"^#{1,6}[ \t]*sources[ \t]*$"),
            "sources_section",
            re.IGNORECASE | re.MULTILINE | re.DOTALL,
        ),
        tolerance=float(stats.get("tolerance", 0.01)),
        cited_window=int(stats.get("cited_window", 50)),
        scaled_cited_window=int(stats.get("scaled_cited_window", 30)),
        uncited_window=int(stats.get("uncited_window", 50)),
        currency_floor=float(stats.get("currency_floor", 1000)),
        count_floor=float(stats.get("count_floor", 100)),
        uncited_ceiling=int(stats.get("uncited_ceiling", 5)),
        audit_window=int(stats.get("audit_window", 30)),
        compilation_content=build_denylist_pattern(phrases),
        content_prefix_chars=int(fab.get("content_prefix_chars", 200)),
        suspicious_title=_compile(fab.get("suspicious_title", _NEVER), "fabrication.suspicious_title", re.IGNORECASE),
        suspicious_types=frozenset(str(t).lower() for t in fab.get("suspicious_types") or []),
        round_timestamps=[
            _compile(p, "fabrication.round_timestamps") for p in fab.get("round_timestamps") or []
        ],
        signature=_compile(fab.get("signature", r"^sig_v[12]_[a-f0-9]{32}$"), "fabrication.signature"),
        severities=severities,
        source_path=source_path,
        schema_version=str(raw.get("_schema_version", "2.0.0")),
        compilation_phrases=phrases,
    )


def load_config(path: Optional[Path] = None) -> VerificationConfig:
    """
    Load and compile a verification config file.

    Args:
        path: YAML file to load. Defaults to $CASEGUARD_CONFIG, then the
            packaged config/verification.yaml.

    Raises:
        ConfigError: If the file is missing, unparseable or malformed
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH
    path = Path(path)

    if not path.exists():
        raise ConfigError(f"Verification config not found at {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {path}: {e}")

    config = build_config(raw, source_path=str(path))
    logger.debug(f"Loaded verification config from {path}")
    return config


_config: Optional[VerificationConfig] = None


def get_config() -> VerificationConfig:
    """Process-wide config, loaded on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached config. Test hook."""
    global _config
    _config = None


def severity_for(issue_type: str, config: Optional[VerificationConfig] = None) -> str:
    return (config or get_config()).severity_for(issue_type)
