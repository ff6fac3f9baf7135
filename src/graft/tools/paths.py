"""Locate the host bundle and check its filesystem permissions."""

from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Protocol

__all__ = [
    "FilesystemPathResolver",
    "PathResolver",
    "PermissionCheck",
    "PermissionReason",
    "check_write_permission",
    "detect_bundle_version",
]


class PathResolver(Protocol):
    """Collaborator resolving the bundle path and reporting its accessibility."""

    def get_extension_path(self) -> Path | None:
        ...

    def is_file_accessible(self, path: Path) -> bool:
        ...

    def is_file_writable(self, path: Path) -> bool:
        ...

    def get_permission_fix_suggestion(self, path: Path) -> str:
        ...


class PermissionReason(str, Enum):
    OK = "OK"
    MISSING_PATH = "MISSING_PATH"
    NOT_READABLE = "NOT_READABLE"
    NOT_WRITABLE = "NOT_WRITABLE"


@dataclass(frozen=True, slots=True)
class PermissionCheck:
    """Result of probing whether the bundle can be patched in place."""

    reason: PermissionReason
    path: Path | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.reason is PermissionReason.OK


def check_write_permission(resolver: PathResolver) -> PermissionCheck:
    """Check that the bundle exists, is readable, and is writable."""
    path = resolver.get_extension_path()
    if path is None:
        return PermissionCheck(
            reason=PermissionReason.MISSING_PATH,
            message="Host installation not found. Ensure the host application is installed.",
        )
    if not resolver.is_file_accessible(path):
        return PermissionCheck(
            reason=PermissionReason.NOT_READABLE,
            path=path,
            message=f"Cannot read host extension file at: {path}",
        )
    if not resolver.is_file_writable(path):
        suggestion = resolver.get_permission_fix_suggestion(path)
        return PermissionCheck(
            reason=PermissionReason.NOT_WRITABLE,
            path=path,
            message=f"Insufficient permissions to modify host extension at: {path}\n\n{suggestion}",
        )
    return PermissionCheck(reason=PermissionReason.OK, path=path)


class FilesystemPathResolver:
    """Resolve the bundle from explicit candidate paths on the local disk."""

    def __init__(self, candidates: Iterable[Path | str]) -> None:
        self.candidates = tuple(Path(candidate).expanduser() for candidate in candidates)

    def get_extension_path(self) -> Path | None:
        for candidate in self.candidates:
            if candidate.is_file():
                return candidate.resolve()
        return None

    def is_file_accessible(self, path: Path) -> bool:
        return path.is_file() and os.access(path, os.R_OK)

    def is_file_writable(self, path: Path) -> bool:
        return os.access(path, os.W_OK)

    def get_permission_fix_suggestion(self, path: Path) -> str:
        if sys.platform.startswith("win"):
            return (
                "Run the terminal as Administrator, or grant your user write access:\n"
                f'  icacls "{path}" /grant "%USERNAME%":M'
            )
        return (
            "Grant your user write access to the file, for example:\n"
            f'  sudo chown "$(whoami)" "{path}"\n'
            f'  chmod u+w "{path}"'
        )


def detect_bundle_version(path: Path, *, max_depth: int = 2) -> str | None:
    """Return the ``version`` of the nearest ``package.json`` above ``path``."""
    directory = path.parent
    for _ in range(max_depth + 1):
        manifest = directory / "package.json"
        if manifest.is_file():
            try:
                with manifest.open("r", encoding="utf-8") as handle:
                    data = json.load(handle)
            except (OSError, ValueError):
                return None
            version = data.get("version") if isinstance(data, dict) else None
            return version if isinstance(version, str) and version.strip() else None
        if directory.parent == directory:
            break
        directory = directory.parent
    return None
