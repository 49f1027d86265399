"""
Verification steps, run in order by the pipeline.

Each module exposes STEP_NUMBER, STEP_NAME, DESCRIPTION and
``run(context, previous_step_hash=None) -> StepResult``.

Modules:
    capture - Step 1: every cited source registered, captured and on disk
    integrity - Step 2: raw capture hashes, signatures, fabrication red flags
    binding - Step 3: citation, registry and metadata URLs agree
    statistics - Step 4: cited numbers appear in the cited source
"""

from . import capture
from . import integrity
from . import binding
from . import statistics
