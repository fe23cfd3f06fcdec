"""mqdeploy CLI application -- Typer-based operator interface.

Provides commands to deploy an environment's MQSC configuration, inspect
its fingerprint, list and verify the audit history, and clear a stuck
deployment lease.  Human-readable output goes to *stderr* via Rich;
``--json`` writes machine-readable results to *stdout*.
"""

from __future__ import annotations

import asyncio
import getpass
import json
import os
import sys
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from sqlalchemy.ext.asyncio import AsyncEngine

from deploy_cli.display import (
    display_error,
    display_history,
    display_outcome,
    display_snapshot,
)
from deploy_engine.config import Environment, Settings, load_settings
from deploy_engine.errors import DeployError
from deploy_engine.logging_setup import configure_logging
from deploy_engine.pipeline import DeploymentPipeline, DeploymentRequest, RunAction

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="mqdeploy",
    help="mqdeploy - deploy-if-changed control loop for IBM MQ configuration",
    no_args_is_help=True,
)
console = Console(stderr=True)

# Mutable global options populated by the Typer callback.
_json_output: bool = False
_debug: bool = False


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug logging.",
    ),
) -> None:
    """Global options applied to every command."""
    global _json_output, _debug  # noqa: PLW0603
    _json_output = json_mode
    _debug = debug


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load(config_root: Path | None = None, env: Environment | None = None) -> Settings:
    overrides: dict[str, Any] = {}
    if config_root is not None:
        overrides["config_root"] = config_root
    if env is not None:
        overrides["env"] = env
    if _debug:
        overrides["debug"] = True
    try:
        settings = load_settings(**overrides)
    except ValidationError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(code=3) from exc
    configure_logging(structured=settings.structured_logging, debug=settings.debug)
    return settings


async def _open_engine(settings: Settings) -> AsyncEngine:
    from deploy_engine.state import init_engine

    return await init_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )


def _make_pipeline(engine: AsyncEngine, settings: Settings) -> DeploymentPipeline:
    return DeploymentPipeline(engine, settings)


def _resolve_actor(explicit: str | None) -> str:
    if explicit:
        return explicit
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def _write_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")


# ---------------------------------------------------------------------------
# deploy
# ---------------------------------------------------------------------------


@app.command()
def deploy(
    env: Environment = typer.Option(
        Environment.DEV,
        "--env",
        "-e",
        help="Target environment.",
        case_sensitive=False,
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Hash and compare only; never contact the cluster.",
    ),
    run_number: int | None = typer.Option(
        None,
        "--run-number",
        help="Run ordinal used in the attempt id. Defaults to the process id.",
        envvar="GITHUB_RUN_NUMBER",
        min=0,
    ),
    revision: str | None = typer.Option(
        None,
        "--revision",
        help="Source revision to record. Defaults to $GITHUB_SHA, then git HEAD.",
    ),
    actor: str | None = typer.Option(
        None,
        "--actor",
        help="Who initiated the deployment. Defaults to the current user.",
        envvar="GITHUB_ACTOR",
    ),
    config_root: Path | None = typer.Option(
        None,
        "--config-root",
        help="Root of the configuration tree (one directory per environment).",
        file_okay=False,
    ),
) -> None:
    """Deploy the environment's configuration if it changed since the last success."""
    from deploy_engine.git import resolve_source_revision
    from deploy_engine.state import IN_MEMORY_URL, init_engine, state_store_exists

    settings = _load(config_root, env)
    request = DeploymentRequest(
        environment=env,
        run_ordinal=run_number if run_number is not None else os.getpid(),
        source_revision=resolve_source_revision(Path.cwd(), revision),
        actor=_resolve_actor(actor),
        dry_run=dry_run,
    )

    async def _run() -> Any:
        if dry_run and not state_store_exists(settings.database_url):
            # No state store yet: compare against an empty history without creating one.
            engine = await init_engine(IN_MEMORY_URL)
        else:
            engine = await _open_engine(settings)
        try:
            return await _make_pipeline(engine, settings).run(request)
        finally:
            await engine.dispose()

    try:
        outcome = asyncio.run(_run())
    except DeployError as exc:
        if _json_output:
            _write_json({"status": "failed", "error": str(exc), "attempt_id": exc.attempt_id, "logs": exc.logs})
        display_error(console, exc)
        raise typer.Exit(code=3) from exc
    except Exception as exc:
        console.print(f"[red]Deployment failed:[/red] {exc}")
        raise typer.Exit(code=3) from exc

    if _json_output:
        _write_json(outcome.model_dump(mode="json"))
    display_outcome(console, outcome)

    if outcome.action == RunAction.SKIPPED:
        console.print(f"[cyan]{env.value} is already at {outcome.fingerprint[:12]}; nothing to deploy.[/cyan]")


# ---------------------------------------------------------------------------
# fingerprint
# ---------------------------------------------------------------------------


@app.command()
def fingerprint(
    env: Environment = typer.Option(
        Environment.DEV,
        "--env",
        "-e",
        help="Environment whose configuration to hash.",
        case_sensitive=False,
    ),
    config_root: Path | None = typer.Option(
        None,
        "--config-root",
        help="Root of the configuration tree.",
        file_okay=False,
    ),
) -> None:
    """Compute and print the configuration fingerprint without deploying."""
    from deploy_engine.snapshot import compute_snapshot

    settings = _load(config_root, env)
    try:
        snapshot = compute_snapshot(settings.config_root, env, extensions=settings.config_extensions)
    except DeployError as exc:
        display_error(console, exc)
        raise typer.Exit(code=3) from exc

    if _json_output:
        _write_json(
            {
                "environment": env.value,
                "fingerprint": snapshot.fingerprint,
                "manifest": snapshot.manifest,
                "warnings": list(snapshot.warnings),
            }
        )
    display_snapshot(console, snapshot)


# ---------------------------------------------------------------------------
# history
# ---------------------------------------------------------------------------


@app.command()
def history(
    env: Environment = typer.Option(
        Environment.DEV,
        "--env",
        "-e",
        help="Environment to list.",
        case_sensitive=False,
    ),
    limit: int = typer.Option(
        20,
        "--limit",
        help="Maximum number of records to show.",
        min=1,
        max=500,
    ),
) -> None:
    """Show recorded deployments, most recent first."""
    from deploy_engine.state import DeploymentRecordRepository, get_session

    settings = _load(env=env)

    async def _run() -> Any:
        engine = await _open_engine(settings)
        try:
            async with get_session(engine) as session:
                return await DeploymentRecordRepository(session).list_recent(env.value, limit=limit)
        finally:
            await engine.dispose()

    try:
        records = asyncio.run(_run())
    except Exception as exc:
        console.print(f"[red]Could not read history:[/red] {exc}")
        raise typer.Exit(code=3) from exc

    if _json_output:
        _write_json([r.model_dump(mode="json") for r in records])
    display_history(console, env.value, records)


# ---------------------------------------------------------------------------
# verify-audit
# ---------------------------------------------------------------------------


@app.command("verify-audit")
def verify_audit(
    env: Environment = typer.Option(
        Environment.DEV,
        "--env",
        "-e",
        help="Environment whose audit chain to verify.",
        case_sensitive=False,
    ),
) -> None:
    """Recompute the audit hash chain and report whether it is intact."""
    from deploy_engine.state import DeploymentRecordRepository, get_session

    settings = _load(env=env)

    async def _run() -> tuple[bool, int]:
        engine = await _open_engine(settings)
        try:
            async with get_session(engine) as session:
                return await DeploymentRecordRepository(session).verify_chain(env.value)
        finally:
            await engine.dispose()

    try:
        valid, checked = asyncio.run(_run())
    except Exception as exc:
        console.print(f"[red]Could not verify audit chain:[/red] {exc}")
        raise typer.Exit(code=3) from exc

    if _json_output:
        _write_json({"environment": env.value, "valid": valid, "records_checked": checked})

    if valid:
        console.print(f"[green]Audit chain for {env.value} intact[/green] ({checked} records)")
    else:
        console.print(f"[red]Audit chain for {env.value} is broken[/red] (checked {checked} records)")
        raise typer.Exit(code=3)


# ---------------------------------------------------------------------------
# release-lease
# ---------------------------------------------------------------------------


@app.command("release-lease")
def release_lease(
    env: Environment = typer.Option(
        ...,
        "--env",
        "-e",
        help="Environment whose lease to clear.",
        case_sensitive=False,
    ),
    reason: str = typer.Option(
        ...,
        "--reason",
        help="Why the lease is being cleared (logged).",
    ),
    released_by: str | None = typer.Option(
        None,
        "--by",
        help="Operator name. Defaults to the current user.",
    ),
) -> None:
    """Force-release a deployment lease left behind by a crashed run."""
    from deploy_engine.state import LeaseRepository, get_session

    settings = _load(env=env)
    operator = _resolve_actor(released_by)

    async def _run() -> bool:
        engine = await _open_engine(settings)
        try:
            async with get_session(engine) as session:
                return await LeaseRepository(session).force_release(env.value, operator, reason)
        finally:
            await engine.dispose()

    try:
        released = asyncio.run(_run())
    except Exception as exc:
        console.print(f"[red]Could not release lease:[/red] {exc}")
        raise typer.Exit(code=3) from exc

    if _json_output:
        _write_json({"environment": env.value, "released": released})
    if released:
        console.print(f"[green]Lease on {env.value} released.[/green]")
    else:
        console.print(f"[yellow]No lease held on {env.value}.[/yellow]")
