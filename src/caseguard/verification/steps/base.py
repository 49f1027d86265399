"""
Shared plumbing for verification steps: issue creation and step sealing.
"""

import time
from typing import Any, Optional

from ..hashing import compute_step_hash, hash_json
from ..models import Issue, StepResult, utc_now_iso
from ..patterns import VerificationConfig


def add_issue(
    result: StepResult,
    config: VerificationConfig,
    issue_type: str,
    message: str,
    source_id: Optional[str] = None,
    context: Optional[str] = None,
) -> Issue:
    """Append an issue whose severity comes from the registry's severity map."""
    issue = Issue(
        type=issue_type,
        severity=config.severity_for(issue_type),
        message=message,
        source_id=source_id,
        context=context,
    )
    result.issues.append(issue)
    return issue


def output_digest(result: StepResult) -> str:
    """Hash of a step's deterministic output (status, metrics, issues)."""
    return hash_json({
        "name": result.name,
        "status": result.status,
        "metrics": result.metrics,
        "issues": [i.to_dict() for i in result.issues],
    })


def seal(result: StepResult, input_data: Any, previous_step_hash: Optional[str], started: float) -> StepResult:
    """
    Stamp completion time and chain the step hash.

    Args:
        result: Step result with final status, metrics and issues
        input_data: JSON-serializable description of everything the step read
        previous_step_hash: Hash of the preceding step (None for the first)
        started: time.monotonic() at step start
    """
    result.input_hash = hash_json(input_data)
    result.output_hash = output_digest(result)
    result.step_hash = compute_step_hash(result.input_hash, result.output_hash, previous_step_hash)
    result.completed_at = utc_now_iso()
    result.duration_ms = int((time.monotonic() - started) * 1000)
    return result
