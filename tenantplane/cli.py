"""
tenantplane CLI

Usage:
    $ tenantplane run --force-tenant-prefix --owner-group tenantplane.io
    $ tenantplane config
    $ tenantplane version

Every option falls back to the matching TENANTPLANE_* environment variable.
"""
from __future__ import annotations

import json
from typing import Optional

import typer

from tenantplane import __version__
from tenantplane.tier0_core.config import ManagerConfig, load_config
from tenantplane.tier0_core.errors import ConfigurationError

app = typer.Typer(
    name="tenantplane",
    help="Multi-tenancy control plane: tenant reconciliation and namespace admission.",
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)


def _load(**overrides: object) -> ManagerConfig:
    try:
        return load_config(**overrides)
    except ConfigurationError as exc:
        typer.echo(f"error: {exc.detail}", err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def run(
    metrics_addr: Optional[str] = typer.Option(None, help="Address the metrics endpoint binds to."),
    enable_leader_election: Optional[bool] = typer.Option(
        None, "--enable-leader-election/--disable-leader-election",
        help="Accepted for compatibility; leader election is external.",
    ),
    owner_group: Optional[str] = typer.Option(None, help="Group whose members may own tenants."),
    force_tenant_prefix: Optional[bool] = typer.Option(
        None, "--force-tenant-prefix/--no-force-tenant-prefix",
        help="Require namespace names to start with '<tenant>-'.",
    ),
    protected_namespace_regex: Optional[str] = typer.Option(
        None, help="Namespaces matching this regex cannot be created by tenant owners.",
    ),
    store_backend: Optional[str] = typer.Option(None, help="memory | kubernetes"),
    kubeconfig: Optional[str] = typer.Option(None, help="Path to a kubeconfig file."),
    webhook_port: Optional[int] = typer.Option(None, help="Admission webhook port."),
    webhook_cert_file: Optional[str] = typer.Option(None, help="TLS certificate for the webhook server."),
    webhook_key_file: Optional[str] = typer.Option(None, help="TLS key for the webhook server."),
    reconcile_workers: Optional[int] = typer.Option(None, help="Tenants reconciled in parallel."),
    log_level: Optional[str] = typer.Option(None, help="DEBUG | INFO | WARNING | ERROR"),
    log_format: Optional[str] = typer.Option(None, help="json | console"),
) -> None:
    """Run the manager: reconcilers, admission webhooks and metrics."""
    from tenantplane.manager import run as run_manager

    config = _load(
        metrics_addr=metrics_addr,
        enable_leader_election=enable_leader_election,
        owner_group=owner_group,
        force_tenant_prefix=force_tenant_prefix,
        protected_namespace_regex=protected_namespace_regex,
        store_backend=store_backend,
        kubeconfig=kubeconfig,
        webhook_port=webhook_port,
        webhook_cert_file=webhook_cert_file,
        webhook_key_file=webhook_key_file,
        reconcile_workers=reconcile_workers,
        log_level=log_level,
        log_format=log_format,
    )
    try:
        run_manager(config)
    except ConfigurationError as exc:
        typer.echo(f"error: {exc.detail}", err=True)
        raise typer.Exit(code=1) from exc


@app.command("config")
def show_config() -> None:
    """Print the effective configuration."""
    typer.echo(json.dumps(_load().model_dump(mode="json"), indent=2, sort_keys=True))


@app.command()
def version() -> None:
    typer.echo(f"tenantplane {__version__}")


def main() -> None:
    app()


__all__ = ["app", "main"]
