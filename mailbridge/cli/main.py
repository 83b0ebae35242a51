"""
MailBridge CLI

Commands:
- mailbridge run                 poll the Gmail label until interrupted
- mailbridge check               validate credentials and the watched label
- mailbridge status              idempotency stats and unanswered claims
- mailbridge sender-key ADDRESS  print the workspace key for an address
"""

import asyncio
import logging
import signal
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from mailbridge import __version__
from mailbridge.channels.email import create_email_channel
from mailbridge.core.config import get_config
from mailbridge.core.time import from_epoch_ms, iso_z
from mailbridge.dedupe import IdempotencyStore
from mailbridge.providers.email.credentials import CredentialManager
from mailbridge.providers.email.gmail_client import GmailAPIError, TokenRefreshError
from mailbridge.providers.email.gmail_provider import GmailProvider
from mailbridge.session_router import WORKSPACE_PREFIX, compute_sender_key

logger = logging.getLogger(__name__)
console = Console()


def setup_logging(level: str, plain: bool = False) -> None:
    if plain:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        return

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                rich_tracebacks=True,
                show_time=True,
                show_path=False,
            )
        ],
    )


@click.group()
@click.version_option(version=__version__, prog_name="mailbridge")
@click.option("--plain-logs", is_flag=True, help="Plain log lines instead of rich output.")
@click.option("--verbose", is_flag=True, help="Enable debug logs.")
@click.pass_context
def cli(ctx, plain_logs, verbose):
    """MailBridge - answer labeled Gmail messages with an agent"""
    config = get_config()
    setup_logging("DEBUG" if verbose else config.log_level, plain=plain_logs)
    ctx.obj = config


async def _run_channel(channel) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(channel.stop()))
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    if not channel.start():
        return
    await channel.wait()


@cli.command(name="run")
@click.option("--label", default=None, help="Override the watched Gmail label.")
@click.option("--interval", default=None, type=int, help="Override the poll interval (seconds).")
@click.pass_obj
def run_cmd(config, label, interval):
    """Start the email channel and poll until interrupted."""
    if label:
        config.email_label = label
    if interval:
        config.poll_interval_seconds = interval

    if not config.agent_argv:
        console.print("[red]Error:[/red] MAILBRIDGE_AGENT_COMMAND is not set")
        sys.exit(1)

    channel = create_email_channel(config)
    if channel.provider is None:
        console.print(
            f"[yellow]Gmail credentials not found in {config.credentials_dir}, "
            f"email channel disabled[/yellow]"
        )
        return

    try:
        asyncio.run(_run_channel(channel))
    except KeyboardInterrupt:
        console.print("stopped")


@cli.command(name="check")
@click.pass_obj
def check_cmd(config):
    """Validate Gmail credentials and make sure the label exists."""
    client = CredentialManager(config.credentials_dir).build_client()
    if client is None:
        console.print(
            f"[red]Error:[/red] Gmail OAuth files missing or invalid in {config.credentials_dir}"
        )
        sys.exit(1)

    provider = GmailProvider(client)
    ok, error = provider.validate_credentials()
    if not ok:
        console.print(f"[red]Error:[/red] {error}")
        sys.exit(1)

    try:
        label_id = provider.ensure_label(config.email_label)
    except (GmailAPIError, TokenRefreshError) as e:
        console.print(f"[red]Error:[/red] label check failed: {e}")
        sys.exit(1)

    console.print(f"[green]✓[/green] Credentials valid")
    console.print(f"[green]✓[/green] Label [cyan]{config.email_label}[/cyan] ({label_id})")


@cli.command(name="status")
@click.option("--limit", default=20, show_default=True, help="Unanswered claims to list.")
@click.pass_obj
def status_cmd(config, limit):
    """Show processed/responded counts and unanswered claims."""
    store = IdempotencyStore(config.resolved_database_path)
    stats = store.get_stats()

    console.print(f"[bold]Database:[/bold] {store.db_path}")
    console.print(
        f"Processed: [cyan]{stats['total_processed']}[/cyan]  "
        f"Responded: [green]{stats['total_responded']}[/green]  "
        f"Unanswered: [yellow]{stats['unresponded']}[/yellow]"
    )

    records = store.list_unresponded(limit=limit)
    if not records:
        return

    table = Table(title="Claimed without reply")
    table.add_column("Message", style="cyan")
    table.add_column("Sender")
    table.add_column("Subject")
    table.add_column("Claimed at")
    for record in records:
        table.add_row(
            record.message_id,
            record.sender_address,
            record.subject,
            iso_z(from_epoch_ms(record.processed_at)),
        )
    console.print(table)


@cli.command(name="sender-key")
@click.argument("address")
def sender_key_cmd(address):
    """Print the sender key and workspace folder for ADDRESS."""
    key = compute_sender_key(address)
    click.echo(key)
    click.echo(f"{WORKSPACE_PREFIX}{key}")


def main():
    cli()


if __name__ == "__main__":
    main()
