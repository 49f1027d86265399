"""
Shared fixtures: a builder that writes realistic case directories.
"""

import hashlib
import json
from pathlib import Path
from typing import Any, Dict, Optional

import pytest

from caseguard.verification.patterns import get_config, reset_config

SIGNATURE = "sig_v2_" + "0f3a9c5e" * 4
CAPTURED_AT = "2026-01-15T14:23:17.482Z"


def sha256_of(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


class CaseBuilder:
    """Writes sources.json, articles/full.md and evidence bundles under one case dir."""

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.sources = []

    def _write_registry(self) -> None:
        (self.root / "sources.json").write_text(json.dumps({"sources": self.sources}, indent=2), encoding="utf-8")

    def write_article(self, text: str) -> Path:
        path = self.root / "articles" / "full.md"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(text.encode("utf-8"))
        return path

    def add_source(
        self,
        source_id: str,
        content: str = "Captured article text.",
        url: Optional[str] = None,
        raw: Optional[bytes] = None,
        registry: bool = True,
        evidence: bool = True,
        captured: Any = True,
        source_type: str = "news",
        title: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Path:
        """
        Register a source and write its evidence bundle.

        metadata entries override the generated metadata.json; a None value
        removes the key.
        """
        url = url or f"https://news.example.com/articles/{source_id.lower()}"
        title = title or f"Report {source_id}"
        raw = raw if raw is not None else f"<html><body>{content}</body></html>".encode("utf-8")

        if registry:
            self.sources.append({
                "id": source_id,
                "url": url,
                "title": title,
                "type": source_type,
                "captured": captured,
            })
            self._write_registry()

        evidence_dir = self.root / "evidence" / source_id
        if not evidence:
            return evidence_dir

        evidence_dir.mkdir(parents=True, exist_ok=True)
        content_bytes = content.encode("utf-8")
        (evidence_dir / "raw.html").write_bytes(raw)
        (evidence_dir / "content.md").write_bytes(content_bytes)

        raw_hash = sha256_of(raw)
        meta = {
            "source_id": source_id,
            "url": url,
            "title": title,
            "captured_at": CAPTURED_AT,
            "_capture_signature": SIGNATURE,
            "files": {
                "raw_html": {"path": "raw.html", "hash": raw_hash, "size": len(raw)},
                "content": {"path": "content.md", "hash": sha256_of(content_bytes), "size": len(content_bytes)},
            },
            "verification": {
                "raw_file": "raw.html",
                "computed_hash": raw_hash,
                "reported_hash": raw_hash,
            },
        }
        for key, value in (metadata or {}).items():
            if value is None:
                meta.pop(key, None)
            else:
                meta[key] = value

        self.write_metadata(source_id, meta)
        return evidence_dir

    def write_metadata(self, source_id: str, metadata: Dict[str, Any]) -> Path:
        path = self.root / "evidence" / source_id / "metadata.json"
        path.write_text(json.dumps(metadata, indent=2), encoding="utf-8")
        return path

    def read_metadata(self, source_id: str) -> Dict[str, Any]:
        return json.loads((self.root / "evidence" / source_id / "metadata.json").read_text(encoding="utf-8"))


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """Every test starts from the packaged config."""
    monkeypatch.delenv("CASEGUARD_CONFIG", raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config():
    return get_config()


@pytest.fixture
def case_builder(tmp_path):
    return CaseBuilder(tmp_path / "case-001")


@pytest.fixture
def clean_case(case_builder):
    """A case that passes every step."""
    case_builder.add_source(
        "S001",
        content="The survey found that 72% of users had adopted the tool by March.",
    )
    case_builder.add_source(
        "S002",
        content="The city approved a $2,500,000 budget for the program.",
    )
    case_builder.write_article(
        "# Findings\n\n"
        "Adoption was broad: 72% of users [S001](https://news.example.com/articles/s001) "
        "had adopted the tool.\n\n"
        "The council set a $2.5 million budget [S002] for the program.\n\n"
        "## Sources\n\n"
        "- [S001] Report S001\n"
        "- [S002] Report S002\n"
    )
    return case_builder
