"""CLI interface for the user provisioning tool."""
from dataclasses import replace
from typing import Optional

import typer

from . import config
from . import steps
from . import utils
from .errors import ConfigError


def setup(
    config_path: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to the users YAML file (default: $USERPROV_CONFIG or /etc/userprov/users.yaml)"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview changes without applying them"),
    key_host: Optional[str] = typer.Option(None, "--key-host", help="Host serving <name>.keys public keys"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
):
    """Create and configure user accounts from a declarative user list."""
    utils.setup_logging(verbose)

    if not dry_run and not utils.is_root():
        typer.echo("❗ Account provisioning requires root. Run with sudo or use --dry-run")
        raise typer.Exit(1)

    path = config.resolve_config_path(config_path)
    try:
        loaded = config.load_config(path)
    except ConfigError as exc:
        typer.echo(f"❗ Invalid configuration in {path}: {exc}")
        raise typer.Exit(2)

    settings = loaded.settings
    if key_host:
        settings = replace(settings, key_host=key_host)

    result = steps.reconcile(loaded.users, loaded.rbash_links, settings, dry_run=dry_run)

    if not result.ok:
        typer.echo(f"❌ Provisioning failed for {len(result.failures)} step(s):")
        for failure in result.failures:
            typer.echo(f"  - {failure.describe()}")
        raise typer.Exit(1)

    if result.changes:
        verb = "Would change" if dry_run else "Changed"
        typer.echo(f"✅ Provisioning complete! {verb} {len(result.changes)} item(s).")
    else:
        typer.echo("✅ Provisioning complete! Nothing to change.")


app = typer.Typer(
    name="userprov",
    help="Declarative user account provisioning tool.",
    add_completion=False,
    invoke_without_command=True,
    callback=setup,
)


if __name__ == "__main__":
    app()
