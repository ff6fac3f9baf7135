"""Collaborators used by the orchestrator."""

from .paths import (
    FilesystemPathResolver,
    PathResolver,
    PermissionCheck,
    PermissionReason,
    check_write_permission,
    detect_bundle_version,
)
from .telemetry import emit_event

__all__ = [
    "FilesystemPathResolver",
    "PathResolver",
    "PermissionCheck",
    "PermissionReason",
    "check_write_permission",
    "detect_bundle_version",
    "emit_event",
]
