"""
Verification pipeline.

Modules:
    patterns - Pattern and threshold registry (config/verification.yaml)
    hashing - sha256 helpers and step-hash chaining
    url_normalize - URL canonicalization for citation binding
    models - Dataclasses for sources, evidence bundles, claims and results
    case_store - Read-only access to a case directory
    numbers - Statistic extraction and tolerance matching
    steps - Individual verification steps (capture, integrity, binding, statistics)
    pipeline - Runs the steps in order and chains their hashes
"""

from .pipeline import (
    STEPS,
    get_verification_summary,
    is_verification_current,
    run_pipeline,
    run_single_step,
)
