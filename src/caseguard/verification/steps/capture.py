"""
Step 1: source capture integrity.

Every source cited in the article must be registered in sources.json, marked
captured, and have an evidence directory with valid metadata.json and a
non-empty content.md. All checks run for every source so a single pass
surfaces every defect.
"""

import json
import logging
import time
from functools import lru_cache
from typing import Any, Dict, Optional

import jsonschema

from ..case_store import CaseContext
from ..hashing import compute_file_hash
from ..models import STATUS_FAIL, STATUS_PASS, EvidenceBundle, StepResult
from .base import add_issue, seal

logger = logging.getLogger(__name__)

STEP_NUMBER = 1
STEP_NAME = "capture"
DESCRIPTION = "Verify source capture integrity"


@lru_cache(maxsize=4)
def _load_schema(schema_path: str) -> Dict[str, Any]:
    with open(schema_path, "r", encoding="utf-8") as f:
        return json.load(f)


def validate_metadata(metadata: Dict[str, Any], schema_path: str) -> Optional[str]:
    """
    Validate evidence metadata against the JSON schema.

    Returns:
        None if valid, otherwise the validation message
    """
    schema = _load_schema(schema_path)
    try:
        jsonschema.validate(metadata, schema)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path)
        return f"{path}: {e.message}" if path else e.message
    return None


def _new_result() -> StepResult:
    return StepResult(
        step=STEP_NUMBER,
        name=STEP_NAME,
        metrics={
            "sources_in_registry": 0,
            "sources_cited": 0,
            "sources_captured": 0,
            "sources_missing": 0,
            "sources_uncaptured": 0,
        },
    )


def _check(checks: list, name: str, passed: bool, message: Optional[str] = None) -> bool:
    entry = {"check": name, "passed": passed}
    if message:
        entry["message"] = message
    checks.append(entry)
    return passed


def check_bundle(
    result: StepResult,
    context: CaseContext,
    detail: Dict[str, Any],
    source_id: str,
    bundle: Optional[EvidenceBundle],
) -> bool:
    """Checks 3-5 for one source. Returns True if all passed."""
    config = context.config
    checks = detail["checks"]
    evidence_rel = f"{config.paths['evidence_dir']}/{source_id}"
    passed = True

    if not _check(checks, "evidence_dir_exists", bundle is not None, None if bundle else "Evidence directory missing"):
        add_issue(result, config, "EVIDENCE_DIR_MISSING",
                  f"{evidence_rel}/ directory does not exist", source_id)
        return False

    if not bundle.metadata_exists:
        _check(checks, "metadata_exists", False, "metadata.json missing")
        add_issue(result, config, "METADATA_MISSING",
                  f"{evidence_rel}/{config.paths['metadata']} does not exist", source_id)
        passed = False
    else:
        _check(checks, "metadata_exists", True)
        if bundle.metadata is None:
            _check(checks, "metadata_valid", False, bundle.metadata_error)
            add_issue(result, config, "METADATA_INVALID",
                      f"{evidence_rel}/{config.paths['metadata']} is not valid JSON: {bundle.metadata_error}",
                      source_id)
            passed = False
        else:
            _check(checks, "metadata_valid", True)
            schema_error = validate_metadata(bundle.metadata, str(config.schema_path))
            if schema_error:
                _check(checks, "metadata_schema", False, schema_error)
                issue = add_issue(result, config, "METADATA_SCHEMA_INVALID",
                                  f"{evidence_rel}/{config.paths['metadata']} failed schema validation: {schema_error}",
                                  source_id)
                passed = passed and not issue.is_blocking
            else:
                _check(checks, "metadata_schema", True)
            detail["metadata"] = {
                "url": bundle.metadata.get("url"),
                "captured_at": bundle.captured_at,
                "has_signature": bool(bundle.signature),
            }

    if not bundle.content_exists:
        _check(checks, "content_exists", False, "content.md missing")
        add_issue(result, config, "CONTENT_MISSING",
                  f"{evidence_rel}/{config.paths['content']} does not exist", source_id)
        passed = False
    elif not bundle.content or not bundle.content.strip():
        _check(checks, "content_not_empty", False, "content.md is empty")
        add_issue(result, config, "CONTENT_EMPTY",
                  f"{evidence_rel}/{config.paths['content']} is empty", source_id)
        passed = False
    else:
        _check(checks, "content_not_empty", True)
        detail["content_length"] = len(bundle.content)

    return passed


def run(context: CaseContext, previous_step_hash: Optional[str] = None) -> StepResult:
    """
    Run the capture step.

    Args:
        context: Pre-loaded case state
        previous_step_hash: Hash of the preceding step, if any

    Returns:
        StepResult with status pass iff no blocking issues
    """
    started = time.monotonic()
    config = context.config
    store = context.store
    result = _new_result()

    if not context.has_sources:
        add_issue(result, config, "SOURCES_JSON_MISSING",
                  f"{config.paths['sources_json']} not found or has no sources list")
        result.status = STATUS_FAIL
        return seal(result, {"registry": None, "article": context.article_hash()}, previous_step_hash, started)

    if context.article is None:
        add_issue(result, config, "ARTICLE_MISSING", f"{config.paths['article']} not found")

    source_map = context.source_map()
    cited = context.cited_source_ids()
    result.metrics["sources_in_registry"] = len(context.registry["sources"])
    result.metrics["sources_cited"] = len(cited)

    fingerprints = {}
    for source_id in cited:
        logger.debug(f"capture: checking {source_id}")
        detail = {"source_id": source_id, "checks": [], "passed": True}
        result.details.append(detail)
        checks = detail["checks"]

        entry = source_map.get(source_id)
        if not _check(checks, "in_registry", entry is not None, None if entry else "Not found in registry"):
            detail["passed"] = False
            result.metrics["sources_missing"] += 1
            add_issue(result, config, "SOURCE_NOT_IN_REGISTRY",
                      f"{source_id} cited in article but not in {config.paths['sources_json']}", source_id)
        else:
            detail["url"] = entry.url
            detail["title"] = entry.title
            if not _check(checks, "captured_true", entry.captured, None if entry.captured else "captured is not true"):
                detail["passed"] = False
                result.metrics["sources_uncaptured"] += 1
                add_issue(result, config, "SOURCE_NOT_CAPTURED",
                          f"{source_id} is not marked captured (should be true)", source_id)

        bundle = store.load_bundle(source_id)
        if not check_bundle(result, context, detail, source_id, bundle):
            detail["passed"] = False

        if detail["passed"]:
            result.metrics["sources_captured"] += 1

        fingerprints[source_id] = {
            "metadata": compute_file_hash(store.metadata_path(source_id)),
            "content": compute_file_hash(store.content_path(source_id)),
        }

    result.status = STATUS_FAIL if result.blocking_issues() else STATUS_PASS
    logger.info(
        f"capture: {result.metrics['sources_captured']}/{len(cited)} cited sources captured "
        f"({len(result.blocking_issues())} blocking issues)"
    )

    input_data = {
        "registry": sorted(
            ({"id": s.id, "captured": s.captured} for s in source_map.values()),
            key=lambda s: s["id"],
        ),
        "cited": cited,
        "files": fingerprints,
    }
    return seal(result, input_data, previous_step_hash, started)
