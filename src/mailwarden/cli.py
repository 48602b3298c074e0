"""Command-line interface for mailwarden."""

import asyncio
import signal
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from mailwarden.config import ConfigurationError, Settings

app = typer.Typer(
    name="mailwarden",
    help="Rule-based mailbox automation over IMAP",
    no_args_is_help=True,
)
console = Console()

rules_app = typer.Typer(help="Inspect processing rules")
app.add_typer(rules_app, name="rules")


def get_settings() -> Settings:
    """Load application settings."""
    return Settings()


@app.command()
def version() -> None:
    """Show version information."""
    from mailwarden import __version__

    console.print(f"mailwarden v{__version__}")


EXAMPLE_ACCOUNTS = """# mailwarden accounts
# Passwords may also be kept out of this file; see MAILWARDEN_* settings.

accounts:
  - name: work
    host: imap.example.com
    port: 993
    use_tls: true
    username: me@example.com
    password: change-me
    folders: [INBOX]
    max_messages_per_session: 100
    inter_action_delay_ms: 500
    max_actions_per_minute: 60

  - name: archive
    host: imap.example.org
    username: me@example.org
    password: change-me
    enabled: false
"""

EXAMPLE_RULES = """# mailwarden rules
# Rules run in ascending priority; equal priorities keep file order.

rules:
  - name: Newsletter Organization
    description: File newsletters and mark them read
    accounts: [ALL]
    priority: 10
    conditions:
      match_type: any
      from:
        contains: newsletter
      subject:
        contains: digest
    actions:
      - type: move_to_folder
        folder: Newsletters
      - type: mark_read
    stop_processing: true

  - name: Flag Invoices
    priority: 50
    conditions:
      subject:
        regex: "invoice|receipt"
    actions:
      - type: add_flag
        flag: flagged

  - name: Purge Old Notifications
    enabled: false
    priority: 200
    conditions:
      from:
        ends_with: "@notifications.example.com"
      received:
        older_than_days: 30
    actions:
      - type: delete
"""


@app.command()
def init(
    config_dir: Annotated[
        Path | None,
        typer.Option("--config-dir", "-c", help="Configuration directory"),
    ] = None,
) -> None:
    """Initialize configuration directory with example files."""
    settings = get_settings()
    if config_dir:
        settings.config_dir = config_dir

    settings.ensure_config_dir()

    for path, content in (
        (settings.accounts_path, EXAMPLE_ACCOUNTS),
        (settings.rules_path, EXAMPLE_RULES),
    ):
        if path.exists():
            console.print(f"[dim]Exists[/dim]  {path}")
            continue
        path.write_text(content)
        console.print(f"[green]Created[/green] {path}")

    console.print(f"\n[bold]Configuration initialized at:[/bold] {settings.config_dir}")


@app.command()
def run(
    dry_run: Annotated[
        bool | None,
        typer.Option("--dry-run/--live", "-n", help="Report actions without executing them"),
    ] = None,
    account: Annotated[
        str | None,
        typer.Option("--account", "-a", help="Process only this account"),
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log activity to the terminal")
    ] = False,
) -> None:
    """Process unprocessed messages in every enabled account once."""
    from mailwarden.config import load_accounts, load_rules
    from mailwarden.logging import setup_logging
    from mailwarden.mail.backup import DirectoryBackupPolicy
    from mailwarden.mail.imap import ImapGateway
    from mailwarden.processing import process_accounts
    from mailwarden.storage import IdempotencyStore

    settings = get_settings()
    dry_run = settings.dry_run if dry_run is None else dry_run

    setup_logging(
        log_dir=settings.log_dir,
        log_level="DEBUG" if verbose else settings.log_level,
        max_bytes=settings.log_rotation_size_mb * 1024 * 1024,
        backup_count=settings.log_backup_count,
        console=verbose,
    )

    try:
        accounts = load_accounts(settings.accounts_path)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        console.print("Run [bold]mailwarden init[/bold] to create example files.")
        raise typer.Exit(1)

    if account:
        accounts = [a for a in accounts if a.name == account]
        if not accounts:
            console.print(f"[red]Unknown account:[/red] {account}")
            raise typer.Exit(1)

    rules = load_rules(settings.rules_path)
    if not rules:
        console.print("[yellow]No rules configured[/yellow]")
        raise typer.Exit(0)

    store = IdempotencyStore(settings.database_path)
    backup = DirectoryBackupPolicy(settings.backup_dir) if settings.backup_enabled else None

    console.print("[bold]mailwarden[/bold] starting...")
    console.print(f"  Accounts: {', '.join(a.name for a in accounts if a.enabled) or 'none'}")
    console.print(f"  Rules: {len(rules)}")
    console.print(f"  Dry run: {'Yes' if dry_run else 'No'}")

    async def run_all():
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()

        def handle_sigint(sig, frame):
            if cancel.is_set():
                console.print("\n[red]Force quit[/red]")
                raise KeyboardInterrupt
            loop.call_soon_threadsafe(cancel.set)
            console.print(
                "\n[yellow]Stopping after the current message (Ctrl+C again to force)[/yellow]"
            )

        original_handler = signal.signal(signal.SIGINT, handle_sigint)
        try:
            return await process_accounts(
                accounts,
                rules,
                store,
                ImapGateway,
                dry_run=dry_run,
                cancel=cancel,
                backup=backup,
            )
        finally:
            signal.signal(signal.SIGINT, original_handler)

    results = asyncio.run(run_all())

    table = Table(title="Run Summary")
    table.add_column("Account", style="cyan")
    table.add_column("Found", justify="right")
    table.add_column("Processed", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Actions", justify="right")
    table.add_column("Status")

    for result in results:
        if result.error:
            status = f"[red]{result.error}[/red]"
        elif result.cancelled:
            status = "[yellow]cancelled[/yellow]"
        else:
            status = f"[green]ok[/green] ({result.duration_seconds:.1f}s)"
        table.add_row(
            result.account,
            str(result.messages_found),
            str(result.messages_processed),
            str(result.messages_failed),
            f"{result.actions_executed}/{result.actions_executed + result.actions_failed}",
            status,
        )

    console.print(table)
    if any(r.error for r in results):
        raise typer.Exit(1)


# === Rules Commands ===


@rules_app.command("list")
def rules_list(
    account: Annotated[
        str | None,
        typer.Option("--account", "-a", help="Show only rules that apply to this account"),
    ] = None,
) -> None:
    """List configured rules in execution order."""
    from mailwarden.config import load_rules
    from mailwarden.rules import select_ordered

    settings = get_settings()
    rules = load_rules(settings.rules_path)

    if not rules:
        console.print("[yellow]No rules configured[/yellow]")
        console.print("Run [bold]mailwarden init[/bold] to create example rules")
        return

    if account:
        rules = select_ordered(account, rules)
    else:
        rules = sorted(rules, key=lambda r: r.priority)

    table = Table(title="Processing Rules")
    table.add_column("Priority", style="dim", width=8)
    table.add_column("Name", style="cyan")
    table.add_column("Accounts")
    table.add_column("Actions", style="green")
    table.add_column("Enabled", width=7)
    table.add_column("Stop", width=4)

    for rule in rules:
        table.add_row(
            str(rule.priority),
            rule.name,
            ", ".join(rule.accounts),
            "; ".join(a.describe() for a in rule.actions),
            "✓" if rule.enabled else "✗",
            "✓" if rule.stop_processing else "",
        )

    console.print(table)


# === Maintenance Commands ===


@app.command()
def status() -> None:
    """Show configuration paths and processing statistics."""
    from mailwarden.storage import IdempotencyStore

    settings = get_settings()

    console.print("[bold]mailwarden Status[/bold]\n")
    for label, path in (
        ("Accounts", settings.accounts_path),
        ("Rules", settings.rules_path),
        ("Database", settings.database_path),
    ):
        mark = "[green]✓[/green]" if path.exists() else "[red]✗[/red]"
        console.print(f"{label}: {mark} {path}")

    if not settings.database_path.exists():
        console.print("\n[yellow]Database not initialized (no runs yet)[/yellow]")
        return

    stats = IdempotencyStore(settings.database_path).get_stats()

    table = Table(title="Processed Messages")
    table.add_column("Account", style="cyan")
    table.add_column("Processed", justify="right")
    for name, count in sorted(stats["processed_by_account"].items()):
        table.add_row(name, str(count))
    console.print(table)

    console.print(f"\n  Total processed: {stats['processed_total']}")
    console.print(f"  Cross-account moves: {stats['cross_account_moves']}")
    console.print(f"  Last processed: {stats['last_processed_at'] or 'never'}")


@app.command()
def cleanup(
    days: Annotated[
        int | None,
        typer.Option("--days", "-d", min=1, help="Retention in days (default from settings)"),
    ] = None,
) -> None:
    """Delete processing records older than the retention period."""
    from mailwarden.storage import IdempotencyStore

    settings = get_settings()
    if not settings.database_path.exists():
        console.print("[yellow]No database found - nothing to clean up.[/yellow]")
        return

    retention = days or settings.processed_retention_days
    result = IdempotencyStore(settings.database_path).cleanup(retention)
    console.print(
        f"[green]✓ Removed {result.processed_deleted} processed and "
        f"{result.moves_deleted} move records older than {retention} days.[/green]"
    )


if __name__ == "__main__":
    app()
