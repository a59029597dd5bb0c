"""CLI entry point for Subscription Scanner."""

from __future__ import annotations

import click

from . import __version__
from .auth import GoogleOAuthClient, TokenManager, check_auth
from .classifier import SubscriptionClassifier
from .config import Settings
from .constants import DEFAULT_ACCOUNT
from .display import console, display_record, display_sync_result, setup_logging
from .exceptions import ClassificationUnavailable, MessageFetchError, NotAuthenticated, TokenExchangeFailed
from .export import export_sync
from .models import ProcessedAuthCodes, SyncState
from .store import ScannerStore
from .sync import classify_message, merge_with_previous, sync_accounts

_processed_codes = ProcessedAuthCodes()

account_option = click.option(
    "-a", "--account", default=DEFAULT_ACCOUNT, show_default=True, help="Account label."
)


def _oauth_client(settings: Settings) -> GoogleOAuthClient:
    try:
        return GoogleOAuthClient.from_client_secrets_file(redirect_uri=settings.redirect_uri)
    except FileNotFoundError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version=__version__, prog_name="subscription-scanner")
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Subscription Scanner - find subscriptions and receipts in your Gmail."""
    setup_logging(verbose)
    ctx.obj = Settings.from_env()


@cli.command(name="auth-url")
@click.pass_obj
def auth_url(settings: Settings) -> None:
    """Print the Google consent URL to authorize Gmail access."""
    url = _oauth_client(settings).authorization_url()
    console.print("Open this URL, approve access, then run 'connect' with the code:")
    console.print(url, soft_wrap=True)


@cli.command()
@click.argument("code")
@account_option
@click.pass_obj
def connect(settings: Settings, code: str, account: str) -> None:
    """Exchange an authorization CODE for tokens."""
    client = _oauth_client(settings)
    with ScannerStore() as store:
        manager = TokenManager(account, client, store, processed_codes=_processed_codes)
        try:
            state = manager.exchange_code(code)
        except TokenExchangeFailed as e:
            raise click.ClickException(str(e)) from e

    if state is None:
        console.print("[yellow]This authorization code was already used.[/yellow]")
        return
    console.print(f"[green]Connected account '{account}'.[/green]")


@cli.command()
@account_option
@click.pass_obj
def status(settings: Settings, account: str) -> None:
    """Check that the account's Gmail authorization works."""
    client = _oauth_client(settings)
    with ScannerStore() as store:
        manager = TokenManager(account, client, store)
        try:
            email = check_auth(manager)
        except (NotAuthenticated, TokenExchangeFailed) as e:
            raise click.ClickException(f"Authentication failed: {e}") from e
    console.print(f"Authenticated as {email}")


@cli.command()
@account_option
def disconnect(account: str) -> None:
    """Forget the tokens stored for an account."""
    with ScannerStore() as store:
        TokenManager(account, None, store).disconnect()
    console.print(f"[green]Disconnected account '{account}'.[/green]")


@cli.command()
@click.option("-a", "--account", "accounts", multiple=True, help="Account(s) to sync (default: all connected).")
@click.option("-m", "--max-messages", default=None, type=int, help="Maximum candidate messages per account.")
@click.option("--min-confidence", default=None, type=int, help="Minimum confidence (0-100) to report.")
@click.pass_obj
def sync(settings: Settings, accounts: tuple[str, ...], max_messages: int | None, min_confidence: int | None) -> None:
    """Scan connected mailboxes for subscriptions."""
    if max_messages is not None:
        settings.max_messages = max_messages
    if min_confidence is not None:
        settings.min_confidence = min_confidence
    if not settings.openai_api_key:
        raise click.ClickException("OPENAI_API_KEY is not set.")

    client = _oauth_client(settings)
    classifier = SubscriptionClassifier(
        api_key=settings.openai_api_key,
        model=settings.model,
        timeout=settings.classifier_timeout,
    )

    with ScannerStore() as store:
        names = list(accounts) or store.list_accounts()
        if not names:
            raise click.ClickException("No connected accounts. Run 'auth-url' and 'connect' first.")

        managers = [TokenManager(name, client, store) for name in names]
        with console.status("Syncing..."):
            results = sync_accounts(managers, classifier, settings)

        for result in results:
            merge_with_previous(result, store.load_latest_sync(result.account_id))
            store.save_sync(result)
            display_sync_result(result)

    if all(result.state is SyncState.FAILED for result in results):
        raise click.ClickException("Sync failed for every account.")


@cli.command()
@click.argument("message_id")
@account_option
@click.pass_obj
def classify(settings: Settings, message_id: str, account: str) -> None:
    """Classify a single message by its Gmail MESSAGE_ID."""
    if not settings.openai_api_key:
        raise click.ClickException("OPENAI_API_KEY is not set.")

    client = _oauth_client(settings)
    classifier = SubscriptionClassifier(
        api_key=settings.openai_api_key,
        model=settings.model,
        timeout=settings.classifier_timeout,
    )

    with ScannerStore() as store:
        manager = TokenManager(account, client, store)
        try:
            record = classify_message(manager, classifier, message_id, settings)
        except (NotAuthenticated, TokenExchangeFailed, MessageFetchError, ClassificationUnavailable) as e:
            raise click.ClickException(str(e)) from e

    if record is None:
        console.print("[yellow]Message has no text to classify.[/yellow]")
        return
    display_record(record)


@cli.command(name="export")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["csv", "json"]),
    default="csv",
    help="Output format.",
)
@click.option("-o", "--output", required=True, help="Output file path.")
@click.option("-a", "--account", default=None, help="Account to export (default: latest sync).")
def export_cmd(fmt: str, output: str, account: str | None) -> None:
    """Export the latest sync's candidates to CSV or JSON."""
    with ScannerStore() as store:
        sync_result = store.load_latest_sync(account)

    if not sync_result:
        raise click.ClickException("No sync results found. Run 'sync' first.")

    export_sync(sync_result, format=fmt, output_path=output)


@cli.group(name="cache")
def cache_group() -> None:
    """Manage stored sync results."""


@cache_group.command(name="info")
def cache_info() -> None:
    """Show store statistics."""
    with ScannerStore() as store:
        info = store.get_info()

    console.print(f"[bold]Connected accounts:[/bold] {info['account_count']}")
    if info["last_sync_date"] is None:
        console.print("[dim]No syncs recorded.[/dim]")
        return

    console.print(f"[bold]Database size:[/bold] {info['db_file_size'] / 1024:.1f} KB")
    console.print(f"[bold]Last sync:[/bold] {info['last_sync_date']}")
    console.print(f"[bold]Syncs:[/bold] {info['sync_count']}")
    console.print(f"[bold]Candidates:[/bold] {info['candidate_count']}")


@cache_group.command(name="clear")
def cache_clear() -> None:
    """Clear stored sync results (tokens are kept)."""
    with ScannerStore() as store:
        store.clear()
    console.print("[green]Sync results cleared.[/green]")
