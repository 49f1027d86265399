"""
Read-only accessor for a case directory.

Loads the source registry (sources.json), the article (articles/full.md) and,
on demand, a source's evidence bundle. Missing or unreadable files come back
as None so callers can report them instead of crashing.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .hashing import canonical_json, compute_content_hash, compute_file_hash
from .models import Citation, EvidenceBundle, SourceRecord
from .patterns import VerificationConfig, get_config

logger = logging.getLogger(__name__)


def read_json_safe(path: Union[str, Path]) -> Optional[Any]:
    """Parse a JSON file; None if it is missing or not valid JSON."""
    path = Path(path)
    if not path.is_file():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.debug(f"Could not parse {path}: {e}")
        return None


def read_text_safe(path: Union[str, Path]) -> Optional[str]:
    """Read a UTF-8 text file; None if it is missing or unreadable."""
    path = Path(path)
    if not path.is_file():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"Could not read {path}: {e}")
        return None


def resolve_within(base: Union[str, Path], relative: str) -> Optional[Path]:
    """
    Resolve a path declared in metadata against an evidence directory.

    Returns None for non-string paths and paths escaping the directory.
    """
    if not isinstance(relative, str) or not relative:
        return None
    base = Path(base).resolve()
    candidate = (base / relative).resolve()
    if os.path.commonpath([str(base), str(candidate)]) != str(base):
        return None
    return candidate


def extract_citations(text: str, config: Optional[VerificationConfig] = None) -> List[Citation]:
    """
    Find every citation token in text.

    Full citations ([S001](url)) carry their URL; short ones ([S001]) don't.
    A full citation also matches the short pattern at the same offset, so
    entries are deduplicated by position.

    Returns:
        Citations ordered by position
    """
    config = config or get_config()
    citations: Dict[int, Citation] = {}

    for m in config.citation_full.finditer(text):
        citations[m.start()] = Citation(source_id=m.group(1), position=m.start(), url=m.group(2), form="full")

    for m in config.citation_short.finditer(text):
        if m.start() not in citations:
            citations[m.start()] = Citation(source_id=m.group(1), position=m.start())

    return [citations[pos] for pos in sorted(citations)]


def cited_source_ids(text: Optional[str], config: Optional[VerificationConfig] = None) -> List[str]:
    """Distinct source ids cited in text, sorted."""
    if not text:
        return []
    return sorted({c.source_id for c in extract_citations(text, config)})


class CaseStore:
    """File layout of one case. Never writes except write_state()."""

    def __init__(self, case_dir: Union[str, Path], config: Optional[VerificationConfig] = None):
        self.case_dir = Path(case_dir)
        self.config = config or get_config()
        self.paths = self.config.paths

    @property
    def case_id(self) -> str:
        return self.case_dir.resolve().name

    @property
    def registry_path(self) -> Path:
        return self.case_dir / self.paths["sources_json"]

    @property
    def article_path(self) -> Path:
        return self.case_dir / self.paths["article"]

    @property
    def state_path(self) -> Path:
        return self.case_dir / self.paths["verification_state"]

    def evidence_dir(self, source_id: str) -> Path:
        return self.case_dir / self.paths["evidence_dir"] / source_id

    def metadata_path(self, source_id: str) -> Path:
        return self.evidence_dir(source_id) / self.paths["metadata"]

    def content_path(self, source_id: str) -> Path:
        return self.evidence_dir(source_id) / self.paths["content"]

    def load_registry(self) -> Optional[Dict[str, Any]]:
        registry = read_json_safe(self.registry_path)
        return registry if isinstance(registry, dict) else None

    def load_sources(self) -> List[SourceRecord]:
        registry = self.load_registry()
        if registry is None or not isinstance(registry.get("sources"), list):
            return []
        return [SourceRecord.from_dict(s) for s in registry["sources"] if isinstance(s, dict)]

    def source_map(self) -> Dict[str, SourceRecord]:
        return {s.id: s for s in self.load_sources()}

    def load_article(self) -> Optional[str]:
        return read_text_safe(self.article_path)

    def load_content(self, source_id: str) -> Optional[str]:
        return read_text_safe(self.content_path(source_id))

    def load_bundle(self, source_id: str) -> Optional[EvidenceBundle]:
        """
        Load a source's evidence bundle.

        Returns:
            EvidenceBundle, or None if the evidence directory doesn't exist
        """
        directory = self.evidence_dir(source_id)
        if not directory.is_dir():
            return None

        bundle = EvidenceBundle(source_id=source_id, directory=directory)

        metadata_path = self.metadata_path(source_id)
        if metadata_path.is_file():
            bundle.metadata_exists = True
            try:
                with open(metadata_path, "r", encoding="utf-8") as f:
                    metadata = json.load(f)
                if isinstance(metadata, dict):
                    bundle.metadata = metadata
                else:
                    bundle.metadata_error = f"expected an object, got {type(metadata).__name__}"
            except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
                bundle.metadata_error = str(e)

        content_path = self.content_path(source_id)
        if content_path.is_file():
            bundle.content_exists = True
            bundle.content = read_text_safe(content_path)

        return bundle

    def file_fingerprint(self, source_id: str) -> Dict[str, Optional[str]]:
        """Hashes of every file in a source's evidence directory, by name."""
        directory = self.evidence_dir(source_id)
        if not directory.is_dir():
            return {}
        return {
            str(p.relative_to(directory)): compute_file_hash(p)
            for p in sorted(directory.rglob("*"))
            if p.is_file()
        }

    def write_state(self, state: Dict[str, Any]) -> Path:
        """Write verification state atomically (temp file then rename)."""
        content = json.dumps(state, indent=2, sort_keys=True, ensure_ascii=False)
        temp_path = self.state_path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(temp_path, self.state_path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise
        return self.state_path


@dataclass(frozen=True)
class CaseContext:
    """
    Pre-loaded, read-only case state shared by every step of one run.
    """
    store: CaseStore
    registry: Optional[Dict[str, Any]]
    article: Optional[str]

    @classmethod
    def load(cls, case_dir: Union[str, Path], config: Optional[VerificationConfig] = None) -> "CaseContext":
        store = CaseStore(case_dir, config)
        return cls(store=store, registry=store.load_registry(), article=store.load_article())

    @property
    def config(self) -> VerificationConfig:
        return self.store.config

    @property
    def has_sources(self) -> bool:
        return self.registry is not None and isinstance(self.registry.get("sources"), list)

    def sources(self) -> List[SourceRecord]:
        if not self.has_sources:
            return []
        return [SourceRecord.from_dict(s) for s in self.registry["sources"] if isinstance(s, dict)]

    def source_map(self) -> Dict[str, SourceRecord]:
        return {s.id: s for s in self.sources()}

    def cited_source_ids(self, text: Optional[str] = None) -> List[str]:
        return cited_source_ids(self.article if text is None else text, self.config)

    def article_hash(self) -> Optional[str]:
        return compute_content_hash(self.article) if self.article is not None else None

    def registry_hash(self) -> Optional[str]:
        return compute_content_hash(canonical_json(self.registry)) if self.registry is not None else None
