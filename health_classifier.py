"""Decide whether a failed call means the tool itself is broken.

Missing configuration and bad input are the caller's problem, so failures
whose message matches one of those patterns leave the tool HEALTHY.
"""
import re
from typing import Optional, Tuple

from tool_models import HealthStatus

ENVIRONMENT_ERROR_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"is required",
        r"is not set",
        r"missing.*environment",
        r"environment.*missing",
        r"api key.*required",
        r"api key.*not provided",
        r"missing.*api key",
        r"must be set",
        r"not found.*environment",
        r"please set",
        r"please provide",
        r"configure.*environment",
    )
]

VALIDATION_ERROR_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"must have a valid.*domain",
        r"valid.*path",
        r"invalid.*url",
        r"invalid.*format",
        r"expected.*received",
        r"must be.*string",
        r"must be.*number",
        r"must be.*boolean",
        r"must be.*array",
        r"must be.*object",
        r"validation.*failed",
        r"does not match",
        r"too short",
        r"too long",
        r"minimum.*length",
        r"maximum.*length",
    )
]

# structured error kinds a tool may report instead of free text
NON_BREAKING_KINDS = {"config", "validation"}
BREAKING_KINDS = {"internal"}


def is_environment_error(message: Optional[str]) -> bool:
    return bool(message) and any(p.search(message) for p in ENVIRONMENT_ERROR_PATTERNS)


def is_validation_error(message: Optional[str]) -> bool:
    return bool(message) and any(p.search(message) for p in VALIDATION_ERROR_PATTERNS)


def is_non_breaking_error(message: Optional[str], kind: Optional[str] = None) -> bool:
    if kind:
        kind = kind.lower()
        if kind in NON_BREAKING_KINDS:
            return True
        if kind in BREAKING_KINDS:
            return False
    return is_environment_error(message) or is_validation_error(message)


def classify(success: bool, error: Optional[str] = None, kind: Optional[str] = None) -> HealthStatus:
    if success:
        return HealthStatus.HEALTHY
    if is_non_breaking_error(error, kind):
        return HealthStatus.HEALTHY
    return HealthStatus.BROKEN


def classify_outcome(success: bool, error: Optional[str] = None,
                     kind: Optional[str] = None) -> Tuple[HealthStatus, Optional[str]]:
    """Status plus the error text worth storing; non-breaking errors are dropped."""
    status = classify(success, error, kind)
    if status == HealthStatus.BROKEN:
        return status, error or "Unknown error"
    return status, None
