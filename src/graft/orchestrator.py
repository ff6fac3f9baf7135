"""State machine that checks, patches, writes, and verifies the host bundle."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Tuple

from .errors import FailureKind
from .markers import MarkerScan, PatchState, scan_markers
from .patching.registration import inject_registration
from .patching.strategies import derive_patch
from .profiles import TargetProfile
from .scan.functions import extract_function, insert_text, remove_span
from .tools.paths import PathResolver, PermissionCheck, check_write_permission, detect_bundle_version
from .tools.telemetry import emit_event

__all__ = [
    "BACKUP_SUFFIX",
    "PatchOrchestrator",
    "PatchOutcome",
    "PatchStatus",
    "SourcePatch",
    "StateReport",
    "StepResult",
    "patch_source",
    "read_bundle",
]

LOGGER = logging.getLogger(__name__)

BACKUP_SUFFIX = ".graft.bak"


class PatchStatus(str, Enum):
    """Terminal status of one patch attempt."""

    UP_TO_DATE = "UP_TO_DATE"
    APPLIED = "APPLIED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    FAILED = "FAILED"


@dataclass(frozen=True, slots=True)
class StepResult:
    """Record of one pipeline step."""

    name: str
    ok: bool
    skipped: bool = False
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "ok": self.ok, "skipped": self.skipped, "message": self.message}


@dataclass(frozen=True, slots=True)
class SourcePatch:
    """Result of patching an in-memory buffer."""

    source: str
    steps: Tuple[StepResult, ...]
    failure: FailureKind | None = None
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def modified(self) -> bool:
        return any(step.ok and not step.skipped for step in self.steps)


@dataclass(frozen=True, slots=True)
class StateReport:
    """Read-only view of the bundle's current patch state."""

    path: Path | None
    scan: MarkerScan | None
    failure: FailureKind | None = None
    message: str = ""

    @property
    def state(self) -> PatchState | None:
        return self.scan.state if self.scan is not None else None


@dataclass(frozen=True, slots=True)
class PatchOutcome:
    """Structured outcome of ``PatchOrchestrator.apply``."""

    status: PatchStatus
    state: PatchState | None = None
    failure: FailureKind | None = None
    message: str = ""
    steps: Tuple[StepResult, ...] = ()
    path: Path | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status in {PatchStatus.UP_TO_DATE, PatchStatus.APPLIED}

    @property
    def needs_restart(self) -> bool:
        """The host loads the bundle once at startup, so a fresh patch needs a restart."""
        return self.status is PatchStatus.APPLIED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "state": self.state.value if self.state else None,
            "failure": self.failure.value if self.failure else None,
            "message": self.message,
            "needs_restart": self.needs_restart,
            "path": self.path.as_posix() if self.path else None,
            "steps": [step.to_dict() for step in self.steps],
            "details": dict(self.details),
        }


def patch_source(source: str, profile: TargetProfile, *, version: str | None = None) -> SourcePatch:
    """Apply the function and registration steps to ``source`` in memory.

    Each step runs only when its marker is missing.  A stale derived
    function is cut out before a fresh one is generated, so repeated runs
    never accumulate copies.
    """
    steps: list[StepResult] = []
    current = source
    keyword = profile.declaration_keyword

    existing = extract_function(current, profile.derived_function, keyword=keyword)
    if existing is not None and profile.fingerprint in existing.source:
        steps.append(StepResult("function", ok=True, skipped=True, message="derived function is up to date"))
    else:
        if existing is not None:
            LOGGER.info("Removing stale %s at [%d, %d).", profile.derived_function, existing.start, existing.end)
            current = remove_span(current, existing.span)
            steps.append(StepResult("remove_stale", ok=True, message=f"removed {len(existing.source)} chars"))

        derivation = derive_patch(current, profile, version=version)
        emit_event(
            "graft.derive",
            strategy=derivation.strategy,
            ok=derivation.ok,
            failure=derivation.failure,
            reason=derivation.reason,
        )
        if not derivation.ok:
            steps.append(StepResult("function", ok=False, message=derivation.reason))
            return SourcePatch(
                source=source,
                steps=tuple(steps),
                failure=derivation.failure,
                reason=derivation.reason,
            )
        current = insert_text(current, derivation.insert_at, derivation.text)
        steps.append(
            StepResult("function", ok=True, message=f"{derivation.strategy} derivation inserted at {derivation.insert_at}")
        )

    if profile.command_name in current:
        steps.append(StepResult("registration", ok=True, skipped=True, message="command already registered"))
    else:
        injection = inject_registration(current, profile)
        emit_event(
            "graft.register",
            method=injection.method,
            ok=injection.ok,
            failure=injection.failure,
            reason=injection.reason,
        )
        if not injection.ok:
            steps.append(StepResult("registration", ok=False, message=injection.reason))
            return SourcePatch(
                source=source,
                steps=tuple(steps),
                failure=injection.failure,
                reason=injection.reason,
            )
        current = injection.source
        steps.append(StepResult("registration", ok=True, message=f"{injection.method} injection"))

    return SourcePatch(source=current, steps=tuple(steps))


class PatchOrchestrator:
    """Drive one patch attempt against the bundle named by ``resolver``."""

    def __init__(self, profile: TargetProfile, resolver: PathResolver, *, backup: bool = False) -> None:
        self.profile = profile
        self.resolver = resolver
        self.backup = backup

    def check_state(self) -> StateReport:
        path = self.resolver.get_extension_path()
        if path is None:
            return StateReport(path=None, scan=None, failure=FailureKind.NOT_FOUND, message="Host installation not found.")
        try:
            source = read_bundle(path)
        except (OSError, UnicodeError) as error:
            return StateReport(path=path, scan=None, failure=FailureKind.IO_FAILURE, message=f"Failed to read bundle: {error}")
        return StateReport(path=path, scan=scan_markers(source, self.profile.markers))

    def check_write_permission(self) -> PermissionCheck:
        return check_write_permission(self.resolver)

    def apply(self) -> PatchOutcome:
        report = self.check_state()
        emit_event("graft.check", path=report.path, state=report.state, failure=report.failure)
        if report.state is PatchState.UP_TO_DATE:
            LOGGER.info("Patch is up to date; no restart needed.")
            return PatchOutcome(status=PatchStatus.UP_TO_DATE, state=report.state, path=report.path)

        permission = self.check_write_permission()
        if not permission.ok:
            LOGGER.warning("Permission check failed: %s", permission.reason.value)
            failure = FailureKind.NOT_FOUND if permission.path is None else FailureKind.PERMISSION_DENIED
            status = PatchStatus.FAILED if permission.path is None else PatchStatus.PERMISSION_DENIED
            return PatchOutcome(
                status=status,
                state=report.state,
                failure=failure,
                message=permission.message,
                path=permission.path,
                details={"permission": permission.reason.value},
            )
        path = permission.path
        if path is None:
            return PatchOutcome(
                status=PatchStatus.FAILED,
                state=report.state,
                failure=FailureKind.NOT_FOUND,
                message="Host installation not found.",
            )

        try:
            source = read_bundle(path)
        except (OSError, UnicodeError) as error:
            return self._io_failure(path, report.state, "read", error)

        version = detect_bundle_version(path)
        LOGGER.info("Patching %s (%d chars, bundle version %s).", path, len(source), version or "unknown")
        result = patch_source(source, self.profile, version=version)
        if not result.ok:
            return PatchOutcome(
                status=PatchStatus.FAILED,
                state=report.state,
                failure=result.failure,
                message=result.reason,
                steps=result.steps,
                path=path,
                details={"bundle_version": version},
            )
        if not result.modified:
            return PatchOutcome(status=PatchStatus.UP_TO_DATE, state=report.state, steps=result.steps, path=path)

        try:
            if self.backup:
                self._write_backup(path)
            _write_text(path, result.source)
            written = read_bundle(path)
        except (OSError, UnicodeError) as error:
            return self._io_failure(path, report.state, "write", error, steps=result.steps)

        verification = scan_markers(written, self.profile.markers)
        emit_event("graft.verify", path=path, missing=verification.missing)
        if verification.state is not PatchState.UP_TO_DATE:
            return PatchOutcome(
                status=PatchStatus.FAILED,
                state=verification.state,
                failure=FailureKind.VERIFICATION_FAILED,
                message=f"verification failed: missing {', '.join(verification.missing)} marker(s)",
                steps=result.steps,
                path=path,
            )
        if extract_function(written, self.profile.derived_function, keyword=self.profile.declaration_keyword) is None:
            return PatchOutcome(
                status=PatchStatus.FAILED,
                state=verification.state,
                failure=FailureKind.VERIFICATION_FAILED,
                message="verification failed: derived function cannot be located in the written bundle",
                steps=result.steps,
                path=path,
            )

        LOGGER.info("Patch applied to %s; restart the host to load it.", path)
        return PatchOutcome(
            status=PatchStatus.APPLIED,
            state=verification.state,
            steps=result.steps,
            path=path,
            details={"bundle_version": version, "previous_state": report.state.value if report.state else None},
        )

    def check_and_apply(self) -> PatchOutcome:
        """Check, gate on permission, and apply; the flow used by account switching."""
        outcome = self.apply()
        emit_event("graft.outcome", status=outcome.status, failure=outcome.failure, needs_restart=outcome.needs_restart)
        return outcome

    def _write_backup(self, path: Path) -> None:
        backup_path = path.with_name(path.name + BACKUP_SUFFIX)
        if backup_path.exists():
            return
        shutil.copy2(path, backup_path)
        LOGGER.info("Backed up original bundle to %s.", backup_path)

    def _io_failure(
        self,
        path: Path,
        state: PatchState | None,
        operation: str,
        error: Exception,
        *,
        steps: Tuple[StepResult, ...] = (),
    ) -> PatchOutcome:
        LOGGER.error("Failed to %s %s: %s", operation, path, error)
        return PatchOutcome(
            status=PatchStatus.FAILED,
            state=state,
            failure=FailureKind.IO_FAILURE,
            message=f"Failed to {operation} bundle: {error}",
            steps=steps,
            path=path,
        )


def read_bundle(path: Path) -> str:
    """Read a bundle as text; undecodable bytes survive a write back unchanged."""
    with path.open("r", encoding="utf-8", errors="surrogateescape", newline="") as handle:
        return handle.read()


def _write_text(path: Path, content: str) -> None:
    with path.open("w", encoding="utf-8", errors="surrogateescape", newline="") as handle:
        handle.write(content)
