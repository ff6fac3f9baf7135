"""Marker-based detection of the current patch state."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

__all__ = ["MarkerScan", "PatchMarkers", "PatchState", "scan_markers"]


class PatchState(str, Enum):
    """Derived state of a bundle; recomputed on every check, never stored."""

    NOT_APPLIED = "NOT_APPLIED"
    STALE_APPLIED = "STALE_APPLIED"
    UP_TO_DATE = "UP_TO_DATE"


@dataclass(frozen=True, slots=True)
class PatchMarkers:
    """Literal substrings whose presence identifies an applied patch."""

    command: str
    function: str
    fingerprint: str


@dataclass(frozen=True, slots=True)
class MarkerScan:
    """Presence of each marker in one buffer snapshot."""

    has_command: bool
    has_function: bool
    has_fingerprint: bool

    @property
    def missing(self) -> tuple[str, ...]:
        names: list[str] = []
        if not self.has_command:
            names.append("command")
        if not self.has_function:
            names.append("function")
        if not self.has_fingerprint:
            names.append("fingerprint")
        return tuple(names)

    @property
    def state(self) -> PatchState:
        if self.has_command and self.has_function and self.has_fingerprint:
            return PatchState.UP_TO_DATE
        if not (self.has_command or self.has_function or self.has_fingerprint):
            return PatchState.NOT_APPLIED
        # Outdated fingerprint or a partial patch left behind by the host updater.
        return PatchState.STALE_APPLIED

    def to_dict(self) -> dict[str, object]:
        return {
            "command": self.has_command,
            "function": self.has_function,
            "fingerprint": self.has_fingerprint,
            "state": self.state.value,
        }


def scan_markers(source: str, markers: PatchMarkers) -> MarkerScan:
    """Check each marker with plain substring search."""
    return MarkerScan(
        has_command=markers.command in source,
        has_function=markers.function in source,
        has_fingerprint=markers.fingerprint in source,
    )
