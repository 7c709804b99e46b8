"""CLI entry point for vaultmark.

Invoked as::

    vaultmark [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m vaultmark.cli.main

Commands
--------
init        Initialize the certificate authority
grant       Issue an ephemeral SSH certificate
password    Issue an ephemeral password
revoke      Revoke a credential immediately
list        List credentials
audit       Show the audit log
cleanup     Expire overdue credentials now
rebuild-krl Regenerate the revocation artifact from the database
status      Show CA and credential status
"""
from __future__ import annotations

import datetime
import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from vaultmark.config import VaultPaths
from vaultmark.errors import VaultMarkError

if TYPE_CHECKING:
    from vaultmark.lifecycle.manager import CredentialManager

console = Console()
err_console = Console(stderr=True)

_STATUS_STYLES = {
    "active": "green",
    "expired": "dim",
    "revoked": "red",
}


# ------------------------------------------------------------------
# Root group
# ------------------------------------------------------------------


@click.group()
@click.version_option(package_name="vaultmark")
@click.option(
    "--home",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="VAULTMARK_HOME",
    default=None,
    help="Vault directory (default: ~/.vaultmark).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
@click.pass_context
def cli(ctx: click.Context, home: Path | None, log_level: str) -> None:
    """Ephemeral SSH certificates and one-time passwords."""
    logging.basicConfig(level=getattr(logging, log_level.upper()))
    ctx.obj = VaultPaths(home.expanduser()) if home else VaultPaths.default()


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from vaultmark import __version__

    console.print(f"[bold]vaultmark[/bold] v{__version__}")


# ------------------------------------------------------------------
# init
# ------------------------------------------------------------------


@cli.command(name="init")
@click.option("--passphrase", default=None, help="CA passphrase (prompted if omitted).")
@click.option("--key-id", default="vaultmark-ca", show_default=True, help="CA key identifier.")
@click.option("--force", "-f", is_flag=True, default=False, help="Reinitialize an existing CA.")
@click.option("--yes", "-y", is_flag=True, default=False, help="Skip confirmations.")
@click.pass_obj
def init_command(
    paths: VaultPaths, passphrase: str | None, key_id: str, force: bool, yes: bool
) -> None:
    """Initialize the certificate authority."""
    from vaultmark.custody.vault import KeyCustody
    from vaultmark.lifecycle.manager import initialize_vault

    with _handle_errors():
        if force and KeyCustody(paths.ca_dir).is_initialized() and not yes:
            click.confirm(
                "This will reinitialize the CA and invalidate ALL existing certificates. Continue?",
                abort=True,
            )
        if passphrase is None:
            passphrase = click.prompt(
                "Enter CA passphrase", hide_input=True, confirmation_prompt=True
            )
        public_key = initialize_vault(paths, passphrase, key_id=key_id, force=force)

    console.print("[green]VaultMark initialized successfully[/green]")
    console.print(f"  CA public key: {paths.ca_dir / 'ca_key.pub'}")
    console.print(f"  Key ID:        {key_id}")
    console.print(f"  Storage:       {paths.root}")
    console.print(f"\n  {public_key}")


# ------------------------------------------------------------------
# grant
# ------------------------------------------------------------------


@cli.command(name="grant")
@click.argument("host")
@click.option("--user", "-u", required=True, help="Remote username (certificate principal).")
@click.option("--ttl", "-t", default=None, help="Time to live, e.g. 30m, 1h, 4h.")
@click.option("--force-command", default=None, help="Force a specific command on the remote.")
@click.option("--identity", default=None, help="Certificate identity string.")
@click.option("--passphrase", default=None, help="CA passphrase (prompted if omitted).")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the credential as JSON.")
@click.pass_obj
def grant_command(
    paths: VaultPaths,
    host: str,
    user: str,
    ttl: str | None,
    force_command: str | None,
    identity: str | None,
    passphrase: str | None,
    as_json: bool,
) -> None:
    """Issue an ephemeral SSH certificate for USER at HOST."""
    from vaultmark.ttl import format_duration

    with _handle_errors(), _manager(paths) as manager:
        if passphrase is None:
            passphrase = click.prompt("CA passphrase", hide_input=True)
        credential = manager.issue_certificate(
            passphrase,
            principal=user,
            ttl=ttl,
            host=host,
            force_command=force_command,
            identity=identity,
        )
        ssh_command = manager.ssh_command(credential)

    if as_json:
        click.echo(json.dumps(credential.to_dict(), indent=2))
        return

    console.print(f"[green]Access granted:[/green] [bold]{user}@{host}[/bold]")
    console.print(f"  ID:       {credential.id}")
    console.print(f"  TTL:      {format_duration(credential.ttl_seconds)}")
    console.print(f"  Expires:  {credential.expires_at.isoformat()}")
    console.print(f"  Serial:   {credential.serial}")
    if force_command:
        console.print(f"  Command:  {force_command}")
    console.print("\n  Connect with:")
    console.print(f"  [cyan]{ssh_command}[/cyan]", soft_wrap=True)
    console.print(f"\n  Revoke early: vaultmark revoke {credential.id}")


# ------------------------------------------------------------------
# password
# ------------------------------------------------------------------


@cli.command(name="password")
@click.argument("label")
@click.option("--ttl", "-t", default=None, help="Time to live, e.g. 30m, 1h.")
@click.option("--length", "-l", type=int, default=None, help="Password length.")
@click.option(
    "--charset",
    "-c",
    type=click.Choice(["alphanumeric", "alpha", "numeric", "special", "hex"]),
    default=None,
    help="Character set.",
)
@click.pass_obj
def password_command(
    paths: VaultPaths, label: str, ttl: str | None, length: int | None, charset: str | None
) -> None:
    """Issue an ephemeral password tagged with LABEL."""
    from vaultmark.ttl import format_duration

    with _handle_errors(), _manager(paths) as manager:
        credential, password = manager.issue_password(
            label, ttl=ttl, length=length, charset=charset
        )

    console.print(f"[green]Password generated[/green] for [bold]{label}[/bold]")
    console.print(f"  ID:       {credential.id}")
    console.print(f"  TTL:      {format_duration(credential.ttl_seconds)}")
    console.print(f"  Expires:  {credential.expires_at.isoformat()}")
    console.print(f"\n  {password}", markup=False, highlight=False)
    console.print("\n  [dim]This password is shown only once.[/dim]")


# ------------------------------------------------------------------
# revoke
# ------------------------------------------------------------------


@cli.command(name="revoke")
@click.argument("credential_id")
@click.option("--yes", "-y", is_flag=True, default=False, help="Skip confirmation.")
@click.pass_obj
def revoke_command(paths: VaultPaths, credential_id: str, yes: bool) -> None:
    """Revoke the credential CREDENTIAL_ID immediately."""
    from vaultmark.errors import NotFound

    with _handle_errors(), _manager(paths) as manager:
        credential = manager.get(credential_id)
        if credential is None:
            raise NotFound(credential_id)

        if not yes:
            console.print(f"  ID:     {credential.id}")
            console.print(f"  Type:   {credential.kind.value}")
            console.print(f"  Label:  {credential.label}")
            if credential.host:
                console.print(f"  Host:   {credential.principal}@{credential.host}")
            click.confirm("Revoke this credential?", abort=True)

        manager.revoke(credential_id)

    console.print(f"[red]Credential {credential_id} has been revoked[/red]")
    console.print("  [dim]Secret material has been destroyed[/dim]")


# ------------------------------------------------------------------
# list
# ------------------------------------------------------------------


@cli.command(name="list")
@click.option("--all", "-a", "include_all", is_flag=True, default=False, help="Include expired and revoked.")
@click.option("--type", "kind", type=click.Choice(["ssh-cert", "password"]), default=None)
@click.option("--status", type=click.Choice(["active", "expired", "revoked"]), default=None)
@click.option("--host", default=None, help="Filter by host.")
@click.pass_obj
def list_command(
    paths: VaultPaths, include_all: bool, kind: str | None, status: str | None, host: str | None
) -> None:
    """List credentials."""
    from vaultmark.credentials.models import CredentialKind, CredentialStatus
    from vaultmark.ttl import format_relative, utcnow

    with _handle_errors(), _manager(paths) as manager:
        credentials = manager.list_credentials(
            kind=CredentialKind(kind) if kind else None,
            status=CredentialStatus(status) if status else None,
            host=host,
            include_terminal=include_all,
        )

    if not credentials:
        console.print("[yellow]No credentials found matching your criteria.[/yellow]")
        return

    now = utcnow()
    table = Table(title="Credentials", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Target")
    table.add_column("Serial", justify="right")
    table.add_column("Status", justify="center")
    table.add_column("Expires")

    for credential in credentials:
        style = _STATUS_STYLES[credential.status.value]
        target = (
            f"{credential.principal}@{credential.host}" if credential.host else credential.label
        )
        expires = (
            format_relative(credential.expires_at, now)
            if credential.status.value == "active"
            else credential.status.value
        )
        table.add_row(
            credential.id,
            credential.kind.value,
            target,
            str(credential.serial),
            f"[{style}]{credential.status.value}[/{style}]",
            expires,
        )

    console.print(table)
    console.print(f"\nTotal: {len(credentials)} credential(s)")


# ------------------------------------------------------------------
# audit
# ------------------------------------------------------------------


@cli.command(name="audit")
@click.option("--limit", "-n", type=int, default=50, show_default=True, help="Number of entries.")
@click.option(
    "--action",
    type=click.Choice(["init", "grant", "password", "revoke", "cleanup", "setup-host"]),
    default=None,
)
@click.option("--id", "credential_id", default=None, help="Filter by credential id.")
@click.option("--since", default=None, help="Only entries newer than this duration, e.g. 1d.")
@click.pass_obj
def audit_command(
    paths: VaultPaths, limit: int, action: str | None, credential_id: str | None, since: str | None
) -> None:
    """Show the audit log, newest first."""
    from vaultmark.audit.log import AuditAction
    from vaultmark.ttl import parse_ttl, utcnow

    with _handle_errors(), _manager(paths) as manager:
        since_dt = (
            utcnow() - datetime.timedelta(seconds=parse_ttl(since)) if since else None
        )
        entries = manager.audit_entries(
            limit=limit,
            action=AuditAction(action) if action else None,
            credential_id=credential_id,
            since=since_dt,
        )

    if not entries:
        console.print("[yellow]No audit entries found.[/yellow]")
        return

    table = Table(title="Audit Log", show_header=True)
    table.add_column("#", justify="right")
    table.add_column("Timestamp")
    table.add_column("Action", style="cyan")
    table.add_column("Credential")
    table.add_column("Details")
    for entry in entries:
        table.add_row(
            str(entry.sequence),
            entry.timestamp.isoformat(timespec="seconds"),
            entry.action.value,
            entry.credential_id or "-",
            entry.details,
        )
    console.print(table)


# ------------------------------------------------------------------
# cleanup
# ------------------------------------------------------------------


@cli.command(name="cleanup")
@click.pass_obj
def cleanup_command(paths: VaultPaths) -> None:
    """Expire overdue credentials and destroy their secret material."""
    with _handle_errors(), _manager(paths) as manager:
        count = manager.sweep()

    if count:
        console.print(f"[green]Cleaned up {count} expired credential(s)[/green]")
    else:
        console.print("No expired credentials to clean up")


# ------------------------------------------------------------------
# rebuild-krl
# ------------------------------------------------------------------


@cli.command(name="rebuild-krl")
@click.pass_obj
def rebuild_krl_command(paths: VaultPaths) -> None:
    """Regenerate the revocation artifact from revoked certificates in the database."""
    with _handle_errors(), _manager(paths) as manager:
        count = manager.rebuild_revocations()
        artifact_path = manager.revocations.path

    console.print(f"[green]Revocation artifact rebuilt: {count} revoked serial(s)[/green]")
    console.print(f"  [dim]{escape(str(artifact_path))}[/dim]")


# ------------------------------------------------------------------
# status
# ------------------------------------------------------------------


@cli.command(name="status")
@click.pass_obj
def status_command(paths: VaultPaths) -> None:
    """Show CA information and credential counts."""
    from vaultmark.config import load_config
    from vaultmark.credentials.models import CredentialStatus
    from vaultmark.custody.vault import KeyCustody

    if not KeyCustody(paths.ca_dir).is_initialized():
        console.print("[yellow]VaultMark is not initialized[/yellow]")
        console.print("  Run: vaultmark init")
        return

    with _handle_errors(), _manager(paths) as manager:
        config = load_config(paths)
        snapshot = manager.status()
        public_key = manager.custody.public_key()

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Key ID", config.key_id)
    table.add_row("Created", config.created_at or "unknown")
    table.add_row("Max TTL", config.policy.max_ttl)
    table.add_row("CA Public Key", _truncate_key(public_key))
    table.add_row("Storage", str(paths.root))
    table.add_row(
        "KRL",
        f"Active ({snapshot.revoked_serials} serial(s))"
        if snapshot.revocation_artifact_present
        else "None",
    )
    console.print(table)

    counts = snapshot.counts
    console.print(
        f"\n  Credentials: [green]{counts[CredentialStatus.ACTIVE]} active[/green]  "
        f"[dim]{counts[CredentialStatus.EXPIRED]} expired[/dim]  "
        f"[red]{counts[CredentialStatus.REVOKED]} revoked[/red]"
    )
    if paths.db.exists():
        console.print(f"  [dim]Database: {_format_size(paths.db.stat().st_size)}[/dim]")


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


@contextmanager
def _manager(paths: VaultPaths) -> Iterator[CredentialManager]:
    """Open a CredentialManager for the duration of one command."""
    from vaultmark.lifecycle.manager import CredentialManager

    manager = CredentialManager.from_paths(paths)
    try:
        yield manager
    finally:
        manager.close()


@contextmanager
def _handle_errors() -> Iterator[None]:
    """Print typed failures with their suggestions and exit with status 1."""
    try:
        yield
    except VaultMarkError as exc:
        err_console.print(f"[red]Error:[/red] {escape(exc.message)}")
        for suggestion in exc.suggestions:
            err_console.print(f"  [dim]-[/dim] {escape(suggestion)}")
        sys.exit(1)
    except ValueError as exc:
        err_console.print(f"[red]Error:[/red] {escape(str(exc))}")
        sys.exit(1)


def _truncate_key(key: str) -> str:
    if len(key) <= 60:
        return key
    return f"{key[:30]}...{key[-20:]}"


def _format_size(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size / (1024 * 1024):.1f}MB"


if __name__ == "__main__":
    cli()
