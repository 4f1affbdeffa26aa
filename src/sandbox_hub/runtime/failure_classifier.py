from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from sandbox_core.errors import (
    AgentExitError,
    ResumeFailedError,
    SandboxAuthError,
    SandboxUnavailableError,
    TypedSandboxError,
)
from sandbox_core.shared import output_excerpt


FAILURE_UNAVAILABLE = "unavailable"
FAILURE_AUTH_FAILED = "auth_failed"
FAILURE_RESUME_FAILED = "resume_failed"
FAILURE_UNKNOWN = "unknown"

UNAVAILABLE_PATTERNS = (
    "no such container",
    "is not running",
    "cannot connect to the docker daemon",
    "sandbox not found",
    "docker daemon is not running",
    "does not exist",
)
AUTH_FAILURE_PATTERNS = (
    "not logged in",
    "unauthenticated",
    "authentication required",
    "oauth token has expired",
    "token has expired",
)
RESUME_FAILURE_PATTERNS = (
    "invalid session",
    "session not found",
    "could not resume",
    "no conversation found",
)

# Evaluated top to bottom; the first category with a matching pattern wins.
FAILURE_PATTERN_CATEGORIES: tuple[tuple[str, tuple[str, ...]], ...] = (
    (FAILURE_UNAVAILABLE, UNAVAILABLE_PATTERNS),
    (FAILURE_AUTH_FAILED, AUTH_FAILURE_PATTERNS),
    (FAILURE_RESUME_FAILED, RESUME_FAILURE_PATTERNS),
)

_API_KEY_AUTH_METHOD = re.compile(r"api[_-]?key", re.IGNORECASE)
_FIRST_PARTY_PROVIDER = re.compile(r"^first[_-]?party$", re.IGNORECASE)


@dataclass(frozen=True)
class FailureClassification:
    category: str
    pattern: str = ""


def combined_output(stderr: str, stdout: str) -> str:
    return f"{stderr} {stdout}".lower()


def classify_failure(output: str, *, exit_code: int | None, resumed: bool) -> FailureClassification:
    del exit_code
    lowered = output.lower()
    for category, patterns in FAILURE_PATTERN_CATEGORIES:
        if category == FAILURE_RESUME_FAILED and not resumed:
            continue
        for pattern in patterns:
            if pattern in lowered:
                return FailureClassification(category=category, pattern=pattern)
    return FailureClassification(category=FAILURE_UNKNOWN)


def failure_error(
    classification: FailureClassification,
    *,
    stderr: str,
    stdout: str,
    exit_code: int | None,
) -> TypedSandboxError:
    excerpt = output_excerpt(stderr, stdout)
    if classification.category == FAILURE_UNAVAILABLE:
        return SandboxUnavailableError(f"Sandbox unavailable: {excerpt}")
    if classification.category == FAILURE_AUTH_FAILED:
        return SandboxAuthError(f"Agent authentication failed: {excerpt}")
    if classification.category == FAILURE_RESUME_FAILED:
        return ResumeFailedError(f"Resume failed: {excerpt}")
    return AgentExitError(f"Agent exited with code {exit_code}: {excerpt}", exit_code=exit_code)


def is_api_key_auth(auth_method: Any, api_provider: Any) -> bool:
    if auth_method and _API_KEY_AUTH_METHOD.search(str(auth_method)):
        return True
    if api_provider and not _FIRST_PARTY_PROVIDER.match(str(api_provider)):
        return True
    return False
