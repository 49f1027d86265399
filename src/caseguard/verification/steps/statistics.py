"""
Step 4: statistic verification.

Every number cited in the article must appear in the cited source's rendered
content. This catches "statistical drift", where a figure changes as it flows
from source to article:

    Article: "72% of users..." [S001]
    Source:  "52% of users..."
    -> STATISTIC_MISMATCH (blocking)

Significant numbers with no citation nearby are flagged for review.
"""

import logging
import time
from typing import Dict, Optional

from ..case_store import CaseContext
from ..hashing import compute_content_hash
from ..models import STATUS_FAIL, STATUS_PASS, STATUS_WARN, StepResult
from ..numbers import (
    extract_cited_statistics,
    extract_statistics,
    find_number_in_text,
    find_uncited_statistics,
    strip_sources_section,
)
from .base import add_issue, seal

logger = logging.getLogger(__name__)

STEP_NUMBER = 4
STEP_NAME = "statistics"
DESCRIPTION = "Statistics and number verification"


def _new_result() -> StepResult:
    return StepResult(
        step=STEP_NUMBER,
        name=STEP_NAME,
        metrics={
            "numbers_extracted": 0,
            "numbers_with_citations": 0,
            "exact_matches": 0,
            "approximate_matches": 0,
            "mismatches": 0,
            "source_missing": 0,
            "uncited_significant": 0,
        },
        details={"verified": [], "mismatched": [], "uncited": []},
    )


def run(context: CaseContext, previous_step_hash: Optional[str] = None) -> StepResult:
    """
    Run the statistics step.

    Status is fail on any mismatch, warn when uncited significant numbers
    exceed the configured ceiling, otherwise pass.
    """
    started = time.monotonic()
    config = context.config
    store = context.store
    result = _new_result()

    if context.article is None:
        add_issue(result, config, "ARTICLE_MISSING", f"{config.paths['article']} not found")
        result.status = STATUS_FAIL
        return seal(result, {"article": None}, previous_step_hash, started)

    body = strip_sources_section(context.article, config)
    claims = extract_cited_statistics(body, config)
    result.metrics["numbers_extracted"] = len(extract_statistics(body, config))
    result.metrics["numbers_with_citations"] = len(claims)

    contents: Dict[str, Optional[str]] = {}
    for claim in claims:
        source_id = claim.source_id
        if source_id not in contents:
            contents[source_id] = store.load_content(source_id)
        content = contents[source_id]

        if not content or not content.strip():
            result.metrics["source_missing"] += 1
            result.details["mismatched"].append({**claim.to_dict(), "issue": "SOURCE_MISSING"})
            add_issue(result, config, "STATISTIC_SOURCE_UNAVAILABLE",
                      f"Cannot check {claim.raw}: content for {source_id} not available",
                      source_id, claim.context)
            continue

        found = find_number_in_text(content, claim.value, config.tolerance, config)
        if not found.found:
            result.metrics["mismatches"] += 1
            result.details["mismatched"].append({**claim.to_dict(), "issue": "NOT_FOUND"})
            add_issue(result, config, "STATISTIC_MISMATCH",
                      f'Statistic "{claim.raw}" not found in cited source {source_id}',
                      source_id, claim.context)
            logger.warning(f"statistics: {claim.raw} not found in {source_id}")
            continue

        result.details["verified"].append({
            **claim.to_dict(),
            "match_type": found.match_type,
            "found_as": found.match,
        })
        if found.exact:
            result.metrics["exact_matches"] += 1
        else:
            result.metrics["approximate_matches"] += 1
            add_issue(result, config, "APPROXIMATE_MATCH",
                      f'"{claim.raw}" matched "{found.match}" in {source_id} only approximately; verify manually',
                      source_id, claim.context)

    for stat in find_uncited_statistics(body, config):
        result.metrics["uncited_significant"] += 1
        result.details["uncited"].append(stat.to_dict())
        add_issue(result, config, "UNCITED_STATISTIC",
                  f'Significant number "{stat.raw}" has no citation', context=stat.context)

    if result.metrics["mismatches"] > 0:
        result.status = STATUS_FAIL
    elif result.metrics["uncited_significant"] > config.uncited_ceiling:
        result.status = STATUS_WARN
    else:
        result.status = STATUS_PASS

    logger.info(
        f"statistics: {result.metrics['exact_matches']} exact, "
        f"{result.metrics['approximate_matches']} approximate, "
        f"{result.metrics['mismatches']} mismatches, "
        f"{result.metrics['uncited_significant']} uncited"
    )

    input_data = {
        "article": compute_content_hash(body),
        "sources": {
            sid: compute_content_hash(text) if text is not None else None
            for sid, text in sorted(contents.items())
        },
    }
    return seal(result, input_data, previous_step_hash, started)
