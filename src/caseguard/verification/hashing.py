"""
SHA256 helpers for evidence hashing and step-hash chaining.

All hashes use the "sha256:<hex_digest>" format written by the capture tools.
"""

import hashlib
import json
from pathlib import Path
from typing import Any, Iterable, Optional, Union

HASH_PREFIX = "sha256:"


def compute_content_hash(content: Union[bytes, str]) -> str:
    """
    Compute SHA256 hash of content.

    Args:
        content: Bytes or text (text is UTF-8 encoded)

    Returns:
        String in format "sha256:<hex_digest>"
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return f"{HASH_PREFIX}{hashlib.sha256(content).hexdigest()}"


def compute_file_hash(file_path: Union[str, Path]) -> Optional[str]:
    """
    Compute SHA256 hash of a file.

    Args:
        file_path: Path to the file to hash

    Returns:
        "sha256:<hex_digest>", or None if the file doesn't exist
    """
    file_path = Path(file_path)
    if not file_path.is_file():
        return None

    hasher = hashlib.sha256()
    with open(file_path, "rb") as f:
        # Read in chunks to handle large captures
        for chunk in iter(lambda: f.read(8192), b""):
            hasher.update(chunk)
    return f"{HASH_PREFIX}{hasher.hexdigest()}"


def normalize_hash(value: Optional[str]) -> Optional[str]:
    """Add the sha256: prefix to bare hex digests and lowercase them."""
    if not value or not isinstance(value, str):
        return None
    value = value.strip().lower()
    if not value.startswith(HASH_PREFIX):
        value = HASH_PREFIX + value
    return value


def canonical_json(data: Any) -> str:
    """Deterministic JSON serialization (sorted keys, no whitespace)."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def hash_json(data: Any) -> str:
    return compute_content_hash(canonical_json(data))


def compute_step_hash(input_hash: str, output_hash: str, previous_step_hash: Optional[str]) -> str:
    """
    Chain one step onto the previous one.

    step_hash = sha256(input_hash + output_hash + previous_step_hash)
    """
    return compute_content_hash(input_hash + output_hash + (previous_step_hash or ""))


def compute_chain_hash(step_hashes: Iterable[str]) -> str:
    return compute_content_hash("|".join(step_hashes))
