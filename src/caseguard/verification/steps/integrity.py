"""
Step 2: hash verification and fabrication red flags.

Recomputes the SHA256 of each cited source's raw capture and compares it to
the hash recorded at capture time. A mismatch means the evidence can't be
trusted and is always blocking. Fabrication indicators (compilation phrasing,
synthesized source types, invalid URLs) are blocking too; a missing capture
signature, round timestamps, homepage URLs and suspicious titles are
advisory unless a missing signature coincides with a round timestamp.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..case_store import CaseContext, resolve_within
from ..hashing import compute_file_hash, normalize_hash
from ..models import STATUS_FAIL, STATUS_PASS, EvidenceBundle, SourceRecord, StepResult
from ..patterns import VerificationConfig
from ..url_normalize import is_homepage, is_valid_url
from .base import add_issue, seal

logger = logging.getLogger(__name__)

STEP_NUMBER = 2
STEP_NAME = "integrity"
DESCRIPTION = "Hash verification and red flag detection"

HASH_METHOD_VERIFICATION = "verification_block"
HASH_METHOD_FILES = "files_block"
HASH_METHOD_LEGACY = "legacy"

FABRICATION_TYPES = {
    "FABRICATED_CONTENT",
    "SUSPICIOUS_SOURCE_TYPE",
    "INVALID_URL",
    "LIKELY_FABRICATED",
}


@dataclass
class BundleVerification:
    """Outcome of verifying one evidence bundle."""
    source_id: str
    checks: List[Dict[str, Any]] = field(default_factory=list)
    findings: List[Tuple[str, str]] = field(default_factory=list)
    hash_method: Optional[str] = None
    computed_hash: Optional[str] = None
    hash_verified: bool = False
    signature_valid: bool = False

    def flag(self, issue_type: str, message: str) -> None:
        self.findings.append((issue_type, message))

    def check(self, name: str, passed: bool, **extra: Any) -> None:
        self.checks.append({"check": name, "passed": passed, **extra})

    @property
    def red_flags(self) -> List[str]:
        return [t for t, _ in self.findings]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "checks": self.checks,
            "red_flags": self.red_flags,
            "hash_method": self.hash_method,
            "computed_hash": self.computed_hash,
            "hash_verified": self.hash_verified,
        }


def _hash_record(metadata: Dict[str, Any], default_raw: str) -> Optional[Tuple[str, str, Optional[str], Optional[str]]]:
    """
    Locate the stored hash of the raw capture.

    Checked in order: the verification block, files.raw_html, then a legacy
    root-level sha256.

    Returns:
        (method, raw_relative_path, stored_hash, reported_hash), or None when
        the metadata records no hash for the raw file
    """
    verification = metadata.get("verification")
    if isinstance(verification, dict) and (verification.get("raw_file") or verification.get("computed_hash")):
        reported = verification.get("reported_hash") or verification.get("osint_reported_hash")
        return (
            HASH_METHOD_VERIFICATION,
            verification.get("raw_file") or default_raw,
            normalize_hash(verification.get("computed_hash")),
            normalize_hash(reported),
        )

    files = metadata.get("files") if isinstance(metadata.get("files"), dict) else {}
    raw_entry = files.get("raw_html")
    if isinstance(raw_entry, dict) and raw_entry.get("hash"):
        return HASH_METHOD_FILES, raw_entry.get("path") or default_raw, normalize_hash(raw_entry["hash"]), None

    if metadata.get("sha256"):
        raw_rel = raw_entry if isinstance(raw_entry, str) else default_raw
        return HASH_METHOD_LEGACY, raw_rel, normalize_hash(metadata["sha256"]), None

    return None


def _verify_raw_hash(bundle: EvidenceBundle, metadata: Dict[str, Any], config: VerificationConfig,
                     outcome: BundleVerification) -> Optional[Path]:
    """Hash self-consistency of the raw capture. Returns the raw path checked."""
    record = _hash_record(metadata, config.paths["raw_html"])
    if record is None:
        outcome.check("hash_match", False, message="No hash recorded for raw capture")
        outcome.flag("HASH_RECORD_MISSING", "metadata records no hash for the raw captured file")
        return None

    method, raw_rel, stored, reported = record
    outcome.hash_method = method
    raw_path = resolve_within(bundle.directory, raw_rel)

    if raw_path is None or not raw_path.is_file():
        outcome.check("hash_match", False, method=method, message=f"{raw_rel} missing")
        outcome.flag("RAW_FILE_MISSING", f"Raw capture {raw_rel} declared in metadata does not exist")
        return raw_path

    computed = compute_file_hash(raw_path)
    outcome.computed_hash = computed

    if stored is None:
        outcome.check("hash_match", False, method=method, message="computed_hash missing")
        outcome.flag("HASH_RECORD_MISSING", "verification block has no computed_hash")
    elif computed != stored:
        outcome.check("hash_match", False, method=method,
                      message=f"computed={computed[:20]}..., stored={stored[:20]}...")
        outcome.flag("HASH_MISMATCH", f"Hash mismatch for {raw_rel}: computed={computed}, stored={stored}")
    else:
        outcome.check("hash_match", True, method=method)
        outcome.hash_verified = True

    if reported is not None:
        if reported == computed:
            outcome.check("reported_hash_match", True)
        else:
            outcome.check("reported_hash_match", False, message=f"reported={reported[:20]}...")
            outcome.flag("REPORTED_HASH_MISMATCH",
                         f"Hash reported by capture tool ({reported}) differs from {raw_rel} ({computed})")

    return raw_path


def _verify_file_hashes(bundle: EvidenceBundle, metadata: Dict[str, Any], outcome: BundleVerification,
                        skip: Optional[Path]) -> None:
    """Re-hash every files-map entry that declares a path and hash."""
    files = metadata.get("files")
    if not isinstance(files, dict):
        return

    for name in sorted(files):
        info = files[name]
        if not isinstance(info, dict) or not info.get("path") or not info.get("hash"):
            continue
        path = resolve_within(bundle.directory, info["path"])
        if path is not None and skip is not None and path == skip.resolve():
            continue
        if path is None or not path.is_file():
            outcome.check(f"file_hash:{name}", False, message=f"{info['path']} missing")
            outcome.flag("FILE_HASH_MISMATCH", f"{info['path']} listed in metadata files but missing")
            continue

        actual = compute_file_hash(path)
        expected = normalize_hash(info["hash"])
        if actual != expected:
            outcome.check(f"file_hash:{name}", False)
            outcome.flag("FILE_HASH_MISMATCH", f"Hash mismatch for {info['path']}: actual={actual}, stored={expected}")
            continue

        size = info.get("size")
        if isinstance(size, int) and size != path.stat().st_size:
            outcome.check(f"file_hash:{name}", False, message="size differs")
            outcome.flag("FILE_SIZE_MISMATCH",
                         f"{info['path']} is {path.stat().st_size} bytes, metadata says {size}")
            continue

        outcome.check(f"file_hash:{name}", True)


def verify_bundle(
    bundle: EvidenceBundle,
    source: Optional[SourceRecord],
    config: VerificationConfig,
) -> BundleVerification:
    """
    Verify one evidence bundle.

    Args:
        bundle: Evidence bundle with parsed metadata
        source: Registry entry for the bundle's source, if any
        config: Verification config

    Returns:
        BundleVerification with checks and (issue_type, message) findings
    """
    outcome = BundleVerification(source_id=bundle.source_id)
    metadata = bundle.metadata or {}

    raw_path = _verify_raw_hash(bundle, metadata, config, outcome)
    _verify_file_hashes(bundle, metadata, outcome, raw_path)

    # Capture signature
    signature = bundle.signature
    if not signature:
        outcome.check("signature_present", False, message="No _capture_signature (may be manually created)")
        outcome.flag("MISSING_SIGNATURE", "No capture signature; bundle may have been hand-authored")
    elif not config.signature.match(str(signature)):
        outcome.check("signature_valid", False, message=f"Invalid signature format: {signature}")
        outcome.flag("INVALID_SIGNATURE_FORMAT", f"Capture signature has unexpected format: {signature}")
    else:
        outcome.check("signature_valid", True)
        outcome.signature_valid = True

    captured_at = bundle.captured_at
    round_timestamp = bool(captured_at) and config.is_round_timestamp(str(captured_at))
    if round_timestamp:
        outcome.flag("SUSPICIOUS_TIMESTAMP", f"Timestamp {captured_at} is suspiciously round")
        if not outcome.signature_valid:
            outcome.flag("LIKELY_FABRICATED",
                         f"Round timestamp {captured_at} without a valid capture signature")

    url = metadata.get("url")
    if url:
        if not is_valid_url(url):
            outcome.flag("INVALID_URL", f'URL "{url}" is not a valid HTTP/HTTPS URL')
        elif is_homepage(url):
            outcome.flag("HOMEPAGE_URL", f'URL "{url}" is a homepage, not a specific article')

    if bundle.content:
        prefix = bundle.content.strip()[:config.content_prefix_chars]
        if config.compilation_content.match(prefix):
            outcome.flag("FABRICATED_CONTENT",
                         f'{config.paths["content"]} starts with compilation phrasing: "{prefix[:60]}"')

    if source is not None and source.type and source.type.lower() in config.suspicious_types:
        outcome.flag("SUSPICIOUS_SOURCE_TYPE", f'Source type "{source.type}" indicates fabrication')

    title = metadata.get("title")
    if not isinstance(title, str) or not title:
        title = source.title if source else ""
    if title and config.suspicious_title.search(title):
        outcome.flag("SUSPICIOUS_TITLE", f'Title "{title}" suggests compilation/synthesis')

    outcome.check("red_flag_scan", True)
    return outcome


def _new_result() -> StepResult:
    return StepResult(
        step=STEP_NUMBER,
        name=STEP_NAME,
        metrics={
            "sources_checked": 0,
            "hash_verified": 0,
            "hash_failed": 0,
            "signature_present": 0,
            "signature_missing": 0,
            "red_flags_found": 0,
            "fabrication_detected": 0,
        },
    )


def run(context: CaseContext, previous_step_hash: Optional[str] = None) -> StepResult:
    """
    Run the integrity step over every cited source with evidence.

    Sources without an evidence directory or parseable metadata are skipped
    here; the capture step reports them.
    """
    started = time.monotonic()
    config = context.config
    store = context.store
    result = _new_result()

    source_map = context.source_map()
    cited = context.cited_source_ids()
    fingerprints = {}

    for source_id in cited:
        bundle = store.load_bundle(source_id)
        if bundle is None or bundle.metadata is None:
            continue

        fingerprints[source_id] = store.file_fingerprint(source_id)
        result.metrics["sources_checked"] += 1
        outcome = verify_bundle(bundle, source_map.get(source_id), config)

        if outcome.hash_verified:
            result.metrics["hash_verified"] += 1
        else:
            result.metrics["hash_failed"] += 1
        if outcome.signature_valid:
            result.metrics["signature_present"] += 1
        elif not bundle.signature:
            result.metrics["signature_missing"] += 1

        for issue_type, message in outcome.findings:
            result.metrics["red_flags_found"] += 1
            if issue_type in FABRICATION_TYPES:
                result.metrics["fabrication_detected"] += 1
            issue = add_issue(result, config, issue_type, message, source_id)
            if issue.is_blocking:
                logger.warning(f"integrity: {source_id} {issue_type}: {message}")

        detail = outcome.to_dict()
        detail["passed"] = not any(i.is_blocking for i in result.issues if i.source_id == source_id)
        result.details.append(detail)

    result.status = STATUS_FAIL if result.blocking_issues() else STATUS_PASS
    logger.info(
        f"integrity: {result.metrics['hash_verified']}/{result.metrics['sources_checked']} hashes verified, "
        f"{result.metrics['fabrication_detected']} fabrication indicators"
    )

    input_data = {
        "cited": cited,
        "sources": {
            sid: {"type": source_map[sid].type, "title": source_map[sid].title}
            for sid in cited if sid in source_map
        },
        "files": fingerprints,
    }
    return seal(result, input_data, previous_step_hash, started)
