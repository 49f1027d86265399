"""
Verification data models: source records, evidence bundles, extracted
statistics and step results.

These are intentionally lightweight (stdlib only) so steps stay easy to run
in isolation.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

STATUS_PENDING = "pending"
STATUS_PASS = "pass"
STATUS_WARN = "warn"
STATUS_FAIL = "fail"
STATUS_ERROR = "error"

SEVERITY_BLOCKING = "blocking"
SEVERITY_WARNING = "warning"

UNIT_PERCENTAGE = "percentage"
UNIT_CURRENCY = "currency"
UNIT_COUNT = "count"
UNIT_SCALED = "scaled"

MATCH_EXACT = "exact"
MATCH_APPROXIMATE = "approximate"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _text(value: Any) -> str:
    # Registry fields of the wrong JSON type are treated as absent
    return value if isinstance(value, str) else ""


@dataclass
class SourceRecord:
    id: str
    url: str = ""
    title: str = ""
    type: str = ""
    captured: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceRecord":
        known = {"id", "url", "title", "type", "captured"}
        return cls(
            id=str(data.get("id", "")),
            url=_text(data.get("url")),
            title=_text(data.get("title")),
            type=_text(data.get("type")),
            # Only a literal true counts as captured
            captured=data.get("captured") is True,
            extra={k: v for k, v in data.items() if k not in known},
        )


@dataclass
class EvidenceBundle:
    """
    Captured artifact set for one source.

    Missing or unreadable files are None; the bundle itself is only absent
    when the evidence directory doesn't exist.
    """
    source_id: str
    directory: Path
    metadata: Optional[Dict[str, Any]] = None
    metadata_exists: bool = False
    metadata_error: Optional[str] = None
    content: Optional[str] = None
    content_exists: bool = False

    @property
    def verification(self) -> Dict[str, Any]:
        block = (self.metadata or {}).get("verification")
        return block if isinstance(block, dict) else {}

    @property
    def signature(self) -> Optional[str]:
        return (self.metadata or {}).get("_capture_signature")

    @property
    def captured_at(self) -> Optional[str]:
        meta = self.metadata or {}
        return meta.get("captured_at") or meta.get("capture_timestamp")


@dataclass
class Citation:
    source_id: str
    position: int
    url: Optional[str] = None
    form: str = "short"


@dataclass
class StatisticClaim:
    """A numeric claim found in text. Regenerated on every run."""
    value: float
    unit: str
    raw: str
    position: int
    end: int
    source_id: Optional[str] = None
    context: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class NumberMatch:
    found: bool
    exact: bool = False
    match: Optional[str] = None

    @property
    def match_type(self) -> Optional[str]:
        if not self.found:
            return None
        return MATCH_EXACT if self.exact else MATCH_APPROXIMATE


@dataclass
class Issue:
    type: str
    severity: str
    message: str
    source_id: Optional[str] = None
    context: Optional[str] = None

    @property
    def is_blocking(self) -> bool:
        return self.severity == SEVERITY_BLOCKING

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class StepResult:
    step: int
    name: str
    status: str = STATUS_PENDING
    started_at: str = field(default_factory=utc_now_iso)
    completed_at: Optional[str] = None
    duration_ms: int = 0
    metrics: Dict[str, Any] = field(default_factory=dict)
    issues: List[Issue] = field(default_factory=list)
    details: Any = field(default_factory=list)
    input_hash: Optional[str] = None
    output_hash: Optional[str] = None
    step_hash: Optional[str] = None

    def blocking_issues(self) -> List[Issue]:
        return [i for i in self.issues if i.is_blocking]

    def warnings(self) -> List[Issue]:
        return [i for i in self.issues if not i.is_blocking]

    def issue_types(self) -> List[str]:
        return [i.type for i in self.issues]

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["issues"] = [i.to_dict() for i in self.issues]
        return d


@dataclass
class PipelineResult:
    case_id: str
    version: str
    generated_at: str = field(default_factory=utc_now_iso)
    article: Optional[Dict[str, Any]] = None
    steps: List[StepResult] = field(default_factory=list)
    chain_hash: Optional[str] = None
    final_status: str = STATUS_PENDING
    duration_ms: int = 0

    @property
    def step_hashes(self) -> List[Optional[str]]:
        return [s.step_hash for s in self.steps]

    def step(self, name: str) -> Optional[StepResult]:
        for s in self.steps:
            if s.name == name:
                return s
        return None

    def summary(self) -> Dict[str, int]:
        statuses = [s.status for s in self.steps]
        return {
            "total_steps": len(self.steps),
            "steps_passed": statuses.count(STATUS_PASS),
            "steps_warned": statuses.count(STATUS_WARN),
            "steps_failed": statuses.count(STATUS_FAIL) + statuses.count(STATUS_ERROR),
        }

    def to_dict(self) -> Dict[str, Any]:
        blocking, warnings = [], []
        for s in self.steps:
            for issue in s.issues:
                entry = {"step": s.name, **issue.to_dict()}
                (blocking if issue.is_blocking else warnings).append(entry)
        return {
            "version": self.version,
            "case_id": self.case_id,
            "generated_at": self.generated_at,
            "article": self.article,
            "pipeline": [s.to_dict() for s in self.steps],
            "chain_hash": self.chain_hash,
            "final_status": self.final_status,
            "blocking_issues": blocking,
            "warnings": warnings,
            "summary": self.summary(),
            "duration_ms": self.duration_ms,
        }
