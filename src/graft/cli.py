"""CLI commands for inspecting and patching a host bundle."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml
from pydantic import ValidationError

from .errors import ProfileError
from .invocation import build_invocation
from .orchestrator import PatchOrchestrator, PatchStatus, read_bundle
from .profiles import TargetProfile, load_profile
from .scan.functions import extract_function
from .tools.paths import FilesystemPathResolver

APP_HELP = "Graft an externally invokable command onto a minified host bundle."
DEFAULT_CONFIG_NAME = "graft.yaml"

LOGGER = logging.getLogger(__name__)

app = typer.Typer(help=APP_HELP)

_CONFIG_OPTION = typer.Option(
    DEFAULT_CONFIG_NAME,
    "--config",
    "-c",
    help="Path to the graft configuration file.",
)
_PATH_OPTION = typer.Option(
    None,
    "--path",
    "-p",
    help="Bundle path; overrides target.path from the configuration.",
)


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk and return it as a dictionary."""
    if not config_path.exists():
        raise typer.BadParameter(f"Config file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        typer.echo(f"Failed to parse config: {error}")
        raise typer.Exit(code=1) from error

    if not isinstance(data, dict):
        typer.echo("Configuration must be a mapping at the top level.")
        raise typer.Exit(code=1)

    return data


def _load_settings(config: str, verbose: bool = False) -> Dict[str, Any]:
    """Load configuration; the default file is optional, explicit ones are not."""
    config_path = Path(config)
    if config == DEFAULT_CONFIG_NAME and not config_path.exists():
        data: Dict[str, Any] = {}
    else:
        data = load_config(config_path)
    _configure_logging(data, verbose)
    return data


def _configure_logging(config: Dict[str, Any], verbose: bool) -> None:
    logging_cfg = config.get("logging") or {}
    level_name = "DEBUG" if verbose else str(logging_cfg.get("level", "WARNING")).upper()
    level = getattr(logging, level_name, logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(level)


def _build_profile(config: Dict[str, Any]) -> TargetProfile:
    try:
        return load_profile(config.get("profile"))
    except ProfileError as error:
        typer.echo(str(error))
        for item in error.details.get("errors", []):
            location = ".".join(str(part) for part in item.get("loc", ()))
            typer.echo(f"  - {location}: {item.get('msg')}")
        raise typer.Exit(code=1) from error


def _build_resolver(config: Dict[str, Any], path: Optional[Path]) -> FilesystemPathResolver:
    target_cfg = config.get("target") or {}
    candidates: List[Path] = []
    if path is not None:
        candidates.append(path)
    else:
        configured = target_cfg.get("path")
        if isinstance(configured, str) and configured.strip():
            candidates.append(Path(configured.strip()))
        for item in target_cfg.get("candidates") or []:
            if isinstance(item, str) and item.strip():
                candidates.append(Path(item.strip()))
    if not candidates:
        typer.echo("No bundle path configured. Pass --path or set target.path in the configuration.")
        raise typer.Exit(code=1)
    return FilesystemPathResolver(candidates)


def _build_orchestrator(config: Dict[str, Any], path: Optional[Path]) -> PatchOrchestrator:
    patch_cfg = config.get("patch") or {}
    return PatchOrchestrator(
        _build_profile(config),
        _build_resolver(config, path),
        backup=bool(patch_cfg.get("backup", True)),
    )


@app.command()
def status(
    config: str = _CONFIG_OPTION,
    path: Optional[Path] = _PATH_OPTION,
) -> None:
    """Report which patch markers are present in the bundle."""
    settings = _load_settings(config)
    report = _build_orchestrator(settings, path).check_state()
    if report.scan is None:
        typer.echo(report.message)
        raise typer.Exit(code=1)

    typer.echo(f"Bundle: {report.path}")
    typer.echo(f"State: {report.scan.state.value}")
    for name, present in (
        ("command", report.scan.has_command),
        ("function", report.scan.has_function),
        ("fingerprint", report.scan.has_fingerprint),
    ):
        typer.echo(f"  {name}: {'present' if present else 'missing'}")


@app.command()
def check(
    config: str = _CONFIG_OPTION,
    path: Optional[Path] = _PATH_OPTION,
) -> None:
    """Check that the bundle can be read and written."""
    settings = _load_settings(config)
    permission = _build_orchestrator(settings, path).check_write_permission()
    if not permission.ok:
        typer.echo(permission.message)
        raise typer.Exit(code=1)
    typer.echo(f"Write access OK: {permission.path}")


@app.command()
def apply(
    config: str = _CONFIG_OPTION,
    path: Optional[Path] = _PATH_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print the outcome as JSON."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Apply the patch when it is missing or stale."""
    settings = _load_settings(config, verbose)
    outcome = _build_orchestrator(settings, path).check_and_apply()

    if as_json:
        typer.echo(json.dumps(outcome.to_dict(), indent=2))
    else:
        for step in outcome.steps:
            marker = "skip" if step.skipped else ("ok" if step.ok else "fail")
            typer.echo(f"  [{marker}] {step.name}: {step.message}")
        if outcome.status is PatchStatus.UP_TO_DATE:
            typer.echo("Patch is up to date; no restart needed.")
        elif outcome.status is PatchStatus.APPLIED:
            typer.echo("Patch applied. Restart the host application to load the new command.")
        else:
            kind = outcome.failure.value if outcome.failure else "UNKNOWN"
            typer.echo(f"Patch {outcome.status.value} ({kind}): {outcome.message}")

    if not outcome.ok:
        raise typer.Exit(code=1)


@app.command()
def extract(
    name: str = typer.Argument(..., help="Function name to locate."),
    config: str = _CONFIG_OPTION,
    path: Optional[Path] = _PATH_OPTION,
    keyword: str = typer.Option("async", "--keyword", help="Keyword preceding the function name."),
) -> None:
    """Print the verbatim source and span of a function in the bundle."""
    settings = _load_settings(config)
    bundle = _build_resolver(settings, path).get_extension_path()
    if bundle is None:
        typer.echo("Bundle not found.")
        raise typer.Exit(code=1)

    try:
        source = read_bundle(bundle)
    except (OSError, UnicodeError) as error:
        typer.echo(f"Failed to read bundle: {error}")
        raise typer.Exit(code=1) from error
    extracted = extract_function(source, name, keyword=keyword)
    if extracted is None:
        typer.echo(f"Function not found: {name}")
        raise typer.Exit(code=1)
    typer.echo(f"Span: [{extracted.start}, {extracted.end})")
    typer.echo(extracted.source)


@app.command()
def invocation(
    api_key: str = typer.Option(..., "--api-key", help="API key to hand to the host."),
    name: str = typer.Option(..., "--name", help="Account name to hand to the host."),
    api_server_url: Optional[str] = typer.Option(None, "--api-server-url", help="API server URL override."),
    config: str = _CONFIG_OPTION,
) -> None:
    """Print the command invocation accepted by the grafted command."""
    settings = _load_settings(config)
    profile = _build_profile(settings)
    try:
        command = build_invocation(profile, api_key=api_key, name=name, api_server_url=api_server_url)
    except ValidationError as error:
        typer.echo(f"Invalid invocation arguments: {error.error_count()} error(s).")
        for item in error.errors(include_url=False):
            location = ".".join(str(part) for part in item.get("loc", ()))
            typer.echo(f"  - {location}: {item.get('msg')}")
        raise typer.Exit(code=1) from error
    typer.echo(json.dumps(command.to_dict(), indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
