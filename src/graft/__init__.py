"""Graft an externally invokable command onto a minified host bundle."""

from .errors import FailureKind, GraftError, ProfileError
from .markers import MarkerScan, PatchMarkers, PatchState, scan_markers
from .orchestrator import PatchOrchestrator, PatchOutcome, PatchStatus, patch_source
from .profiles import KnownRegistration, KnownTemplate, TargetProfile, WINDSURF_PROFILE, load_profile

__all__ = [
    "FailureKind",
    "GraftError",
    "KnownRegistration",
    "KnownTemplate",
    "MarkerScan",
    "PatchMarkers",
    "PatchOrchestrator",
    "PatchOutcome",
    "PatchState",
    "PatchStatus",
    "ProfileError",
    "TargetProfile",
    "WINDSURF_PROFILE",
    "load_profile",
    "patch_source",
    "scan_markers",
]
