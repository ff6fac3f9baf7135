from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from graft.errors import FailureKind
from graft.markers import PatchState, scan_markers
from graft.orchestrator import BACKUP_SUFFIX, PatchOrchestrator, PatchStatus, patch_source
from graft.profiles import KnownTemplate, TargetProfile

NEW_COMMAND = "windsurf.provideAuthTokenToAuthProviderWithShit"


def _count_derived(source: str) -> int:
    return source.count("async handleAuthTokenWithShit(")


def test_patch_source_from_not_applied(bundle_text: str, profile: TargetProfile) -> None:
    result = patch_source(bundle_text, profile)

    assert result.ok
    assert result.modified
    assert [step.name for step in result.steps] == ["function", "registration"]
    assert scan_markers(result.source, profile.markers).state is PatchState.UP_TO_DATE
    assert _count_derived(result.source) == 1
    # The derived function sits right after the original one.
    original_end = bundle_text.index("async logout(")
    assert result.source[original_end:].startswith("async handleAuthTokenWithShit(A){/*WSPATCH_V3*/")


def test_patch_source_up_to_date_is_noop(bundle_text: str, profile: TargetProfile) -> None:
    patched = patch_source(bundle_text, profile).source

    again = patch_source(patched, profile)

    assert again.ok
    assert not again.modified
    assert again.source == patched
    assert all(step.skipped for step in again.steps)


@pytest.mark.parametrize("stale_marker", ["/*WSPATCH_V2*/", ""])
def test_patch_source_replaces_stale_copy(bundle_text: str, profile: TargetProfile, stale_marker: str) -> None:
    patched = patch_source(bundle_text, profile).source
    stale = patched.replace("/*WSPATCH_V3*/", stale_marker)
    assert scan_markers(stale, profile.markers).state is PatchState.STALE_APPLIED

    result = patch_source(stale, profile)

    assert result.ok
    assert [step.name for step in result.steps] == ["remove_stale", "function", "registration"]
    assert result.steps[-1].skipped
    assert result.source == patched
    assert _count_derived(result.source) == 1
    assert result.source.count(NEW_COMMAND) == 1


def test_patch_source_repeated_stale_runs_do_not_grow(bundle_text: str, profile: TargetProfile) -> None:
    patched = patch_source(bundle_text, profile).source
    current = patched
    for _ in range(3):
        current = patch_source(current.replace("/*WSPATCH_V3*/", "/*WSPATCH_V2*/"), profile).source
    assert len(current) == len(patched)


def test_patch_source_restores_function_when_only_command_survives(bundle_text: str, profile: TargetProfile) -> None:
    patched = patch_source(bundle_text, profile)
    derived_step_text = patched.source[bundle_text.index("async logout(") :]
    derived = derived_step_text[: derived_step_text.index("async logout(")]
    gap = patched.source.replace(derived, "", 1)
    assert scan_markers(gap, profile.markers).state is PatchState.STALE_APPLIED

    result = patch_source(gap, profile)

    assert result.ok
    assert result.source == patched.source


def test_patch_source_pattern_mismatch_leaves_source(bundle_text: str, profile: TargetProfile) -> None:
    source = bundle_text.replace("await(0,n.registerUser)(A)", "await(0,n.signInUser)(A)")

    result = patch_source(source, profile)

    assert not result.ok
    assert result.failure is FailureKind.PATTERN_MISMATCH
    assert result.source == source


def test_patch_source_missing_registration_site(bundle_factory, profile: TargetProfile) -> None:
    source = bundle_factory(registration="A.subscriptions.push(u.commands.registerCommand(\"x\",()=>1))")

    result = patch_source(source, profile)

    assert result.failure is FailureKind.NOT_FOUND
    assert result.reason == "registration site not found"
    assert result.source == source


def test_patch_source_uses_exact_template_when_version_known(bundle_text: str, profile: TargetProfile) -> None:
    original = bundle_text[bundle_text.index("async handleAuthToken(") : bundle_text.index("async logout(")]
    template = KnownTemplate(
        version="1.48.2",
        original=original,
        replacement="async handleAuthTokenWithShit(A){return await this.store(A)}",
    )
    exact_profile = profile.model_copy(update={"templates": [template]})

    result = patch_source(bundle_text, exact_profile, version="1.48.2")

    assert result.ok
    assert "exact derivation" in result.steps[0].message
    assert "async handleAuthTokenWithShit(A){/*WSPATCH_V3*/return await this.store(A)}" in result.source


def test_apply_end_to_end(bundle_file: Path, profile: TargetProfile, fake_resolver_factory) -> None:
    resolver = fake_resolver_factory(bundle_file)
    orchestrator = PatchOrchestrator(profile, resolver)

    outcome = orchestrator.apply()

    assert outcome.status is PatchStatus.APPLIED
    assert outcome.needs_restart
    assert outcome.state is PatchState.UP_TO_DATE
    written = bundle_file.read_text(encoding="utf-8")
    assert scan_markers(written, profile.markers).state is PatchState.UP_TO_DATE

    second = orchestrator.apply()

    assert second.status is PatchStatus.UP_TO_DATE
    assert not second.needs_restart
    assert bundle_file.read_text(encoding="utf-8") == written


def test_apply_permission_denied_does_not_touch_file(
    bundle_file: Path, profile: TargetProfile, fake_resolver_factory
) -> None:
    before = bundle_file.read_bytes()
    mtime = bundle_file.stat().st_mtime_ns
    resolver = fake_resolver_factory(bundle_file, writable=False)

    outcome = PatchOrchestrator(profile, resolver, backup=True).apply()

    assert outcome.status is PatchStatus.PERMISSION_DENIED
    assert outcome.failure is FailureKind.PERMISSION_DENIED
    assert f"chmod u+w {bundle_file}" in outcome.message
    assert not outcome.needs_restart
    assert bundle_file.read_bytes() == before
    assert bundle_file.stat().st_mtime_ns == mtime
    assert not bundle_file.with_name(bundle_file.name + BACKUP_SUFFIX).exists()
    assert "suggestion" in resolver.calls


def test_apply_distinguishes_missing_and_unreadable(
    bundle_file: Path, profile: TargetProfile, fake_resolver_factory
) -> None:
    missing = PatchOrchestrator(profile, fake_resolver_factory(None)).apply()
    assert missing.status is PatchStatus.FAILED
    assert missing.failure is FailureKind.NOT_FOUND
    assert "not found" in missing.message

    unreadable = PatchOrchestrator(profile, fake_resolver_factory(bundle_file, accessible=False)).apply()
    assert unreadable.status is PatchStatus.PERMISSION_DENIED
    assert "Cannot read" in unreadable.message


def test_apply_reports_generation_failure(bundle_file: Path, profile: TargetProfile, fake_resolver_factory) -> None:
    text = bundle_file.read_text(encoding="utf-8").replace("async handleAuthToken(", "async onAuthToken(")
    bundle_file.write_text(text, encoding="utf-8")

    outcome = PatchOrchestrator(profile, fake_resolver_factory(bundle_file)).apply()

    assert outcome.status is PatchStatus.FAILED
    assert outcome.failure is FailureKind.NOT_FOUND
    assert "function not found" in outcome.message
    assert bundle_file.read_text(encoding="utf-8") == text


def test_apply_verification_failure(
    bundle_file: Path, profile: TargetProfile, fake_resolver_factory, monkeypatch: pytest.MonkeyPatch
) -> None:
    import graft.orchestrator as orchestrator_module

    def _drop_marker(path: Path, content: str) -> None:
        path.write_text(content.replace("/*WSPATCH_V3*/", ""), encoding="utf-8")

    monkeypatch.setattr(orchestrator_module, "_write_text", _drop_marker)

    outcome = PatchOrchestrator(profile, fake_resolver_factory(bundle_file)).apply()

    assert outcome.status is PatchStatus.FAILED
    assert outcome.failure is FailureKind.VERIFICATION_FAILED
    assert "fingerprint" in outcome.message
    assert not outcome.needs_restart


def test_apply_io_failure(
    bundle_file: Path, profile: TargetProfile, fake_resolver_factory, monkeypatch: pytest.MonkeyPatch
) -> None:
    import graft.orchestrator as orchestrator_module

    def _refuse(path: Path, content: str) -> None:
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(orchestrator_module, "_write_text", _refuse)

    outcome = PatchOrchestrator(profile, fake_resolver_factory(bundle_file)).apply()

    assert outcome.status is PatchStatus.FAILED
    assert outcome.failure is FailureKind.IO_FAILURE
    assert "Failed to write bundle" in outcome.message


def test_apply_writes_backup_once(bundle_file: Path, profile: TargetProfile, fake_resolver_factory) -> None:
    original = bundle_file.read_text(encoding="utf-8")

    outcome = PatchOrchestrator(profile, fake_resolver_factory(bundle_file), backup=True).apply()

    backup = bundle_file.with_name(bundle_file.name + BACKUP_SUFFIX)
    assert outcome.status is PatchStatus.APPLIED
    assert backup.read_text(encoding="utf-8") == original


def test_apply_preserves_crlf(tmp_path: Path, bundle_factory, profile: TargetProfile, fake_resolver_factory) -> None:
    target = tmp_path / "extension.js"
    target.write_bytes(("// header\r\n" + bundle_factory()).encode("utf-8"))

    outcome = PatchOrchestrator(profile, fake_resolver_factory(target)).apply()

    assert outcome.status is PatchStatus.APPLIED
    assert target.read_bytes().startswith(b"// header\r\n")


def test_apply_emits_telemetry(
    bundle_file: Path, profile: TargetProfile, fake_resolver_factory, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO, logger="graft.telemetry"):
        PatchOrchestrator(profile, fake_resolver_factory(bundle_file)).check_and_apply()

    events = [json.loads(record.getMessage())["event"] for record in caplog.records if record.name == "graft.telemetry"]
    assert events == ["graft.check", "graft.derive", "graft.register", "graft.verify", "graft.outcome"]


def test_outcome_to_dict(bundle_file: Path, profile: TargetProfile, fake_resolver_factory) -> None:
    payload = PatchOrchestrator(profile, fake_resolver_factory(bundle_file)).apply().to_dict()

    assert payload["status"] == "APPLIED"
    assert payload["needs_restart"] is True
    assert payload["path"] == bundle_file.as_posix()
    assert [step["name"] for step in payload["steps"]] == ["function", "registration"]


def test_apply_keeps_undecodable_bytes(bundle_file: Path, profile: TargetProfile, fake_resolver_factory) -> None:
    with bundle_file.open("ab") as handle:
        handle.write(b"/*\xff\xfe*/")

    resolver = fake_resolver_factory(bundle_file)
    report = PatchOrchestrator(profile, resolver).check_state()
    assert report.failure is None
    assert report.state is PatchState.NOT_APPLIED

    outcome = PatchOrchestrator(profile, resolver).apply()

    assert outcome.status is PatchStatus.APPLIED
    data = bundle_file.read_bytes()
    assert data.endswith(b"/*\xff\xfe*/")
    assert NEW_COMMAND.encode("utf-8") in data


def test_apply_without_resolved_path_fails_cleanly(
    bundle_file: Path, profile: TargetProfile, fake_resolver_factory, monkeypatch: pytest.MonkeyPatch
) -> None:
    import graft.orchestrator as orchestrator_module
    from graft.tools.paths import PermissionCheck, PermissionReason

    monkeypatch.setattr(
        orchestrator_module,
        "check_write_permission",
        lambda resolver: PermissionCheck(reason=PermissionReason.OK, path=None),
    )

    outcome = PatchOrchestrator(profile, fake_resolver_factory(bundle_file)).apply()

    assert outcome.status is PatchStatus.FAILED
    assert outcome.failure is FailureKind.NOT_FOUND
    assert outcome.path is None
