"""Policy intent loading with validation.

File reads enforce a size limit. All validation happens here, at the
boundary, so a bad intent document fails the run before any provider
call is issued.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_INTENT_FILE_SIZE_BYTES
from .errors import IntentValidationError
from .models import PolicyIntent

logger = logging.getLogger(__name__)

# Kubernetes-style wrapper accepted in addition to the flat format
INTENT_KIND = "ShieldPolicyIntent"


def read_document(path: Path, max_size_bytes: int) -> Any:
    """Read and parse a YAML (or JSON) document with a size limit.

    Raises:
        IntentValidationError: If the file is missing, too large, or not parseable.
    """
    if not path.exists():
        raise IntentValidationError(f"File not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise IntentValidationError(f"Failed to stat {path}: {e}") from e

    if file_size > max_size_bytes:
        raise IntentValidationError(
            f"File exceeds maximum size of {max_size_bytes} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise IntentValidationError(f"Failed to read {path}: {e}") from e

    # JSON is a subset of YAML, so one parser covers both formats
    try:
        return yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise IntentValidationError(f"Invalid YAML in {path}: {e}") from e


def format_validation_error(error: ValidationError) -> str:
    """Render pydantic errors as one `loc: msg` line each."""
    lines = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"]) or "<root>"
        lines.append(f"  - {loc}: {item['msg']}")
    return "\n".join(lines)


def parse_intent(data: Any, source: str = "<memory>") -> PolicyIntent:
    """Validate an in-memory intent document.

    Args:
        data: Parsed document, flat or wrapped in apiVersion/kind/spec.
        source: Where the document came from, for error messages.

    Returns:
        Validated, frozen PolicyIntent.

    Raises:
        IntentValidationError: If the document fails validation.
        InternalInvariantViolation: If accountScope sets both include and exclude.
    """
    if not isinstance(data, dict):
        raise IntentValidationError(f"Intent document must be a mapping: {source}")

    if "apiVersion" in data and "spec" in data:
        kind = data.get("kind")
        if kind is not None and kind != INTENT_KIND:
            raise IntentValidationError(
                f"Unsupported kind '{kind}' in {source}, expected {INTENT_KIND}"
            )
        intent_data = data.get("spec", {})
        if not isinstance(intent_data, dict):
            raise IntentValidationError(f"Spec section must be a mapping: {source}")
    else:
        intent_data = data

    try:
        return PolicyIntent.model_validate(intent_data)
    except ValidationError as e:
        raise IntentValidationError(
            f"Validation failed for {source}:\n{format_validation_error(e)}"
        ) from e


def load_intent(path: Path) -> PolicyIntent:
    """Load and validate a policy intent document.

    Raises:
        IntentValidationError: If the document cannot be loaded or fails validation.
    """
    data = read_document(path, MAX_INTENT_FILE_SIZE_BYTES)
    intent = parse_intent(data, source=str(path))

    logger.info(
        "Loaded policy intent",
        extra={"path": str(path), **intent.summary()},
    )
    return intent
