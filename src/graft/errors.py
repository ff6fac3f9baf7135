"""Error taxonomy shared by the patching pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping


class FailureKind(str, Enum):
    """Why a patch step could not complete."""

    NOT_FOUND = "NOT_FOUND"
    PATTERN_MISMATCH = "PATTERN_MISMATCH"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    IO_FAILURE = "IO_FAILURE"


class GraftError(RuntimeError):
    """Raised for conditions that are not part of the patch outcome protocol."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class ProfileError(GraftError):
    """Raised when a target profile cannot be built from configuration."""
