"""
Step 3: citation URL binding.

A citation can point somewhere other than what was captured: the URL in
``[S001](url)`` may differ from the registry URL, which may differ from the
URL recorded in the evidence metadata. All available URLs for a source are
normalized and must agree; any disagreement is blocking.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from ..case_store import CaseContext, extract_citations
from ..models import STATUS_FAIL, STATUS_PASS, Citation, StepResult
from ..url_normalize import normalize_url
from .base import add_issue, seal

logger = logging.getLogger(__name__)

STEP_NUMBER = 3
STEP_NAME = "binding"
DESCRIPTION = "Citation URL consistency check"

URL_ORIGINS = ("citation", "sources_json", "metadata")


def compare_urls(urls: Dict[str, Optional[str]]) -> Dict[str, Any]:
    """
    Compare normalized URLs from each origin.

    Args:
        urls: Raw URL per origin (citation, sources_json, metadata); None if absent

    Returns:
        Dict with normalized URLs, a match verdict (all_match, mismatch,
        insufficient_data, no_urls) and the disagreeing pairs
    """
    normalized = {origin: normalize_url(urls.get(origin)) if urls.get(origin) else None for origin in URL_ORIGINS}
    available = [(origin, normalized[origin]) for origin in URL_ORIGINS if normalized[origin]]

    if not available:
        verdict = "no_urls"
    elif len(available) == 1:
        verdict = "insufficient_data"
    elif all(url == available[0][1] for _, url in available):
        verdict = "all_match"
    else:
        verdict = "mismatch"

    mismatches = [
        {"a": {"source": a, "url": url_a}, "b": {"source": b, "url": url_b}}
        for i, (a, url_a) in enumerate(available)
        for b, url_b in available[i + 1:]
        if url_a != url_b
    ]
    return {"normalized": normalized, "match": verdict, "mismatches": mismatches}


def _group_by_source(citations: List[Citation]) -> Dict[str, List[Citation]]:
    grouped: Dict[str, List[Citation]] = {}
    for citation in citations:
        grouped.setdefault(citation.source_id, []).append(citation)
    return grouped


def _new_result() -> StepResult:
    return StepResult(
        step=STEP_NUMBER,
        name=STEP_NAME,
        metrics={
            "citations_checked": 0,
            "citations_with_urls": 0,
            "citations_verified": 0,
            "url_mismatches": 0,
            "orphan_citations": 0,
            "missing_metadata_url": 0,
        },
    )


def run(context: CaseContext, previous_step_hash: Optional[str] = None) -> StepResult:
    """
    Run the binding step.

    Args:
        context: Pre-loaded case state
        previous_step_hash: Hash of the preceding step, if any

    Returns:
        StepResult, fail on any orphan citation or URL mismatch
    """
    started = time.monotonic()
    config = context.config
    store = context.store
    result = _new_result()

    if not context.has_sources or context.article is None:
        if not context.has_sources:
            add_issue(result, config, "SOURCES_JSON_MISSING",
                      f"{config.paths['sources_json']} not found or has no sources list")
        if context.article is None:
            add_issue(result, config, "ARTICLE_MISSING", f"{config.paths['article']} not found")
        result.status = STATUS_FAIL
        return seal(result, {"registry": context.registry_hash(), "article": context.article_hash()},
                    previous_step_hash, started)

    source_map = context.source_map()
    citations = extract_citations(context.article, config)
    result.metrics["citations_checked"] = len(citations)

    metadata_urls = {}
    for source_id, source_citations in _group_by_source(citations).items():
        urls: Dict[str, Optional[str]] = {origin: None for origin in URL_ORIGINS}

        with_url = next((c for c in source_citations if c.url), None)
        if with_url is not None:
            urls["citation"] = with_url.url
            result.metrics["citations_with_urls"] += 1

        entry = source_map.get(source_id)
        if entry is None:
            result.metrics["orphan_citations"] += 1
            add_issue(result, config, "ORPHAN_CITATION",
                      f"{source_id} cited in article but not in {config.paths['sources_json']}", source_id)
        else:
            urls["sources_json"] = entry.url or None

        bundle = store.load_bundle(source_id)
        metadata = bundle.metadata if bundle is not None else None
        if metadata and metadata.get("url"):
            urls["metadata"] = metadata["url"]
        else:
            result.metrics["missing_metadata_url"] += 1
            if metadata is not None:
                add_issue(result, config, "MISSING_METADATA_URL",
                          f"{config.paths['metadata']} for {source_id} has no url", source_id)
        metadata_urls[source_id] = urls["metadata"]

        comparison = compare_urls(urls)
        if comparison["match"] == "all_match":
            result.metrics["citations_verified"] += 1
        elif comparison["match"] == "mismatch":
            result.metrics["url_mismatches"] += 1
            issue = add_issue(
                result, config, "URL_MISMATCH",
                f"URLs for {source_id} do not agree: "
                + ", ".join(f"{k}={v}" for k, v in urls.items() if v),
                source_id,
            )
            logger.warning(f"binding: {issue.message}")
        elif comparison["match"] == "no_urls":
            add_issue(result, config, "NO_URLS_TO_VERIFY", f"No URLs available to verify for {source_id}", source_id)

        result.details.append({"source_id": source_id, "urls": urls, **comparison})

    result.status = STATUS_FAIL if result.blocking_issues() else STATUS_PASS
    logger.info(
        f"binding: {result.metrics['citations_verified']} sources verified, "
        f"{result.metrics['url_mismatches']} URL mismatches, "
        f"{result.metrics['orphan_citations']} orphan citations"
    )

    input_data = {
        "citations": [{"source_id": c.source_id, "url": c.url} for c in citations],
        "registry": {sid: source_map[sid].url for sid in sorted(source_map)},
        "metadata": metadata_urls,
    }
    return seal(result, input_data, previous_step_hash, started)
