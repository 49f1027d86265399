"""
Verification pipeline runner.

Runs every step in order over one snapshot of the case, threading each
step's hash into the next so the results form a tamper-evident chain:

    step_hash  = sha256(input_hash + output_hash + previous_step_hash)
    chain_hash = sha256("|".join(step_hashes))

Every step runs even after a failure, so one pass reports every defect.
A step that raises is recorded with status "error"; the rest still run.

Usage:
    from caseguard.verification import run_pipeline

    result = run_pipeline("cases/my-case", write_state=True)
    print(result.final_status)
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, List, Optional, Union

from .case_store import CaseContext, CaseStore, extract_citations, read_json_safe
from .hashing import compute_chain_hash, compute_content_hash
from .models import (
    STATUS_ERROR,
    STATUS_FAIL,
    STATUS_PASS,
    STATUS_WARN,
    PipelineResult,
    StepResult,
)
from .patterns import VerificationConfig, get_config
from .steps import binding, capture, integrity, statistics
from .steps.base import add_issue, seal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Step:
    number: int
    name: str
    description: str
    module: ModuleType

    def run(self, context: CaseContext, previous_step_hash: Optional[str] = None) -> StepResult:
        return self.module.run(context, previous_step_hash)


STEPS: List[Step] = [
    Step(m.STEP_NUMBER, m.STEP_NAME, m.DESCRIPTION, m) for m in (capture, integrity, binding, statistics)
]


def get_step(name: str) -> Step:
    for step in STEPS:
        if step.name == name:
            return step
    raise ValueError(f"Unknown step: {name}. Available: {', '.join(s.name for s in STEPS)}")


def run_step(step: Step, context: CaseContext, previous_step_hash: Optional[str] = None) -> StepResult:
    """
    Run one step behind a fault boundary.

    An exception inside the step becomes a StepResult with status "error"
    and a blocking UNEXPECTED_ERROR issue. Its step hash is still chained
    from previous_step_hash.
    """
    started = time.monotonic()
    logger.debug(f"Running step {step.number}: {step.name}")
    try:
        result = step.run(context, previous_step_hash)
    except Exception as e:
        logger.exception(f"Step {step.number} ({step.name}) raised")
        result = StepResult(step=step.number, name=step.name, status=STATUS_ERROR)
        add_issue(result, context.config, "UNEXPECTED_ERROR", f"{type(e).__name__}: {e}")
        result = seal(result, {"step": step.name, "error": type(e).__name__}, previous_step_hash, started)

    logger.info(f"Step {step.number} ({step.name}): {result.status} ({result.duration_ms}ms)")
    return result


def aggregate_status(results: List[StepResult]) -> str:
    """fail if any step failed or errored, else warn if any warned, else pass."""
    statuses = {r.status for r in results}
    if statuses & {STATUS_FAIL, STATUS_ERROR}:
        return STATUS_FAIL
    if STATUS_WARN in statuses:
        return STATUS_WARN
    return STATUS_PASS


def article_info(context: CaseContext) -> Optional[Dict[str, Any]]:
    if context.article is None:
        return None
    return {
        "path": context.config.paths["article"],
        "hash": compute_content_hash(context.article),
        "word_count": len(context.article.split()),
        "citation_count": len(extract_citations(context.article, context.config)),
    }


def run_pipeline(
    case_dir: Union[str, Path],
    context: Optional[CaseContext] = None,
    write_state: bool = False,
    config: Optional[VerificationConfig] = None,
) -> PipelineResult:
    """
    Run every verification step over a case.

    Args:
        case_dir: Case directory
        context: Pre-loaded case state (loaded from case_dir if None)
        write_state: Persist the result to verification-state.json
        config: Verification config (process-wide config if None)

    Returns:
        PipelineResult with per-step results, chain hash and final status
    """
    started = time.monotonic()
    if context is None:
        context = CaseContext.load(case_dir, config or get_config())

    result = PipelineResult(
        case_id=context.store.case_id,
        version=context.config.schema_version,
        article=article_info(context),
    )

    previous_step_hash = None
    for step in STEPS:
        step_result = run_step(step, context, previous_step_hash)
        result.steps.append(step_result)
        previous_step_hash = step_result.step_hash

    result.chain_hash = compute_chain_hash(result.step_hashes)
    result.final_status = aggregate_status(result.steps)
    result.duration_ms = int((time.monotonic() - started) * 1000)

    logger.info(f"Verification of {result.case_id}: {result.final_status} (chain {result.chain_hash[:19]}...)")

    if write_state:
        path = context.store.write_state(result.to_dict())
        logger.info(f"Verification state written to {path}")

    return result


def run_single_step(
    case_dir: Union[str, Path],
    name: str,
    config: Optional[VerificationConfig] = None,
    context: Optional[CaseContext] = None,
) -> StepResult:
    """
    Run one step in isolation (no previous step hash).

    A pre-loaded context is used as-is; otherwise one is loaded from case_dir.

    Raises:
        ValueError: If name is not a known step
    """
    step = get_step(name)
    if context is None:
        context = CaseContext.load(case_dir, config or get_config())
    return run_step(step, context)


def get_verification_summary(
    case_dir: Union[str, Path],
    config: Optional[VerificationConfig] = None,
) -> Optional[Dict[str, Any]]:
    """Summary of the persisted verification state, or None if there is none."""
    state = read_json_safe(CaseStore(case_dir, config).state_path)
    if not isinstance(state, dict):
        return None

    return {
        "case_id": state.get("case_id"),
        "final_status": state.get("final_status"),
        "generated_at": state.get("generated_at"),
        "chain_hash": state.get("chain_hash"),
        "summary": state.get("summary"),
        "blocking_issues_count": len(state.get("blocking_issues") or []),
        "warnings_count": len(state.get("warnings") or []),
    }


def is_verification_current(
    case_dir: Union[str, Path],
    config: Optional[VerificationConfig] = None,
) -> Dict[str, Any]:
    """
    Check whether the persisted verification still matches the article.

    Returns:
        Dict with "current" (bool) and "reason" when not current
    """
    store = CaseStore(case_dir, config)
    state = read_json_safe(store.state_path)
    if not isinstance(state, dict):
        return {"current": False, "reason": "No verification state found"}

    article = store.load_article()
    if article is None:
        return {"current": False, "reason": "Article not found"}

    recorded = (state.get("article") or {}).get("hash")
    if recorded != compute_content_hash(article):
        return {"current": False, "reason": "Article has changed since verification"}

    return {"current": True, "final_status": state.get("final_status")}
