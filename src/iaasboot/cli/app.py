# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from iaasboot.config.loader import ParamsError, load_params
from iaasboot.config.models import NodeParams
from iaasboot.errors import ProvisioningError
from iaasboot.execution.runner import CommandRunner
from iaasboot.logging.log import init_logging, register_secrets
from iaasboot.observers.jsonfile import JsonFileObserver
from iaasboot.observers.logger import LoggerObserver
from iaasboot.pipeline import build_context, provision_node
from iaasboot.tiers.registry import build_tier
from iaasboot.utils.execution import ExecutionContext
from iaasboot.utils.hostfs import HostFS
from iaasboot.verify.checks import verify_node
from iaasboot.verify.ssh import open_ssh

# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="IaaS workshop node bootstrap CLI")

EXIT_FAILED = 1
EXIT_BAD_PARAMS = 2


def _load(params: Path) -> NodeParams:
    try:
        cfg = load_params(params)
    except FileNotFoundError as e:
        typer.secho(f"Parameter file not found: {e.filename}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_BAD_PARAMS)
    except ValidationError as e:
        typer.secho(f"Invalid parameters in {params}:\n{e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_BAD_PARAMS)
    except ParamsError as e:
        typer.secho(f"Invalid parameters: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_BAD_PARAMS)
    register_secrets(cfg.secret_values())
    return cfg


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def provision(
    params: Path = typer.Option(..., "--params", help="Node parameter file (YAML)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Probe the host and log intended changes only"),
    verbose: bool = typer.Option(False, "--verbose"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir"),
):
    """Converge this VM to its role. Safe to re-run."""
    logger, run_id, log_path = init_logging(base_dir=log_dir, verbose=verbose)
    cfg = _load(params)

    typer.echo("")
    typer.secho("iaasboot provisioning started", bold=True)
    typer.echo(f"  Role     : {cfg.node.role}")
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo("")

    observers = [
        LoggerObserver(logger),
        JsonFileObserver(log_path.with_suffix(".events.jsonl")),
    ]
    try:
        report = provision_node(cfg, dry_run=dry_run, observers=observers, run_id=run_id)
    except ProvisioningError as e:
        typer.secho(f"Provisioning failed: {e}", fg=typer.colors.RED, err=True)
        typer.echo(f"Full trace: {log_path}", err=True)
        raise typer.Exit(EXIT_FAILED)

    typer.secho(report.summary(), fg=typer.colors.GREEN)
    if not report.changed:
        typer.echo("Host already converged; nothing changed.")


@app.command()
def render(
    params: Path = typer.Option(..., "--params", help="Node parameter file (YAML)"),
    out: Path = typer.Option(..., "--out", help="Directory to write the rendered files under"),
    verbose: bool = typer.Option(False, "--verbose"),
):
    """Render the role's configuration files under OUT without touching the host."""
    init_logging(base_dir=out / ".iaasboot-logs", verbose=verbose)
    cfg = _load(params)

    fs = HostFS(root=out, ctx=ExecutionContext(dry_run=False), manage_owner=False)
    # commands are logged, never executed
    runner = CommandRunner(dry_run=True, label="render")
    ctx = build_context(cfg, dry_run=True, fs=fs, runner=runner)
    tier = build_tier(cfg.node.role, ctx)
    try:
        actions = tier.configure()
    except ProvisioningError as e:
        typer.secho(f"Render failed: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_FAILED)

    for a in actions:
        typer.echo(f"  {a}")
    typer.secho(f"Rendered {cfg.node.role} configuration under {out}", fg=typer.colors.GREEN)


@app.command()
def verify(
    params: Path = typer.Option(..., "--params", help="Node parameter file (YAML)"),
    host: str = typer.Option(..., "--host", help="Address of the provisioned VM"),
    user: str = typer.Option("azureuser", "--user"),
    key: Optional[Path] = typer.Option(None, "--key", help="SSH private key"),
    port: int = typer.Option(22, "--port"),
    verbose: bool = typer.Option(False, "--verbose"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir"),
):
    """Check a provisioned VM over SSH."""
    init_logging(base_dir=log_dir, verbose=verbose)
    cfg = _load(params)

    ssh = open_ssh(host, username=user, key_path=str(key) if key else None, port=port)
    try:
        results = verify_node(ssh, cfg)
    finally:
        ssh.close()

    for r in results:
        colour = typer.colors.GREEN if r.ok else typer.colors.RED
        typer.secho(f"  [{'PASS' if r.ok else 'FAIL'}] {r.name}: {r.detail}", fg=colour)

    failed = [r for r in results if not r.ok]
    if failed:
        typer.secho(f"{len(failed)} of {len(results)} check(s) failed", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_FAILED)
    typer.secho(f"All {len(results)} checks passed", fg=typer.colors.GREEN)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
