"""
CLI interface for the POML converter.

Hosts the conversion core: resolves a session, submits text and shows
quota and history.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from poml_converter.config.loader import ConverterConfig, default_config, load_converter_config
from poml_converter.core.artifact import write_poml
from poml_converter.core.history import HistoryStore
from poml_converter.core.identity import Identity, StaticEntitlements, Tier
from poml_converter.core.orchestrator import (
    ConversionOrchestrator,
    Converted,
    InvalidInput,
    QuotaDenied,
    RemoteFailed,
    StorageFailed,
    TierHint,
)
from poml_converter.core.quota import QuotaLedger
from poml_converter.core.session import SessionManager
from poml_converter.sdk.auth import Provider, StaticAuthProvider
from poml_converter.sdk.gemini_client import GeminiConversionClient
from poml_converter.storage.db import DEFAULT_DB_PATH, StorageError
from poml_converter.storage.repository import (
    SqliteHistoryRepository,
    SqliteQuotaRepository,
    initialize_schema,
)

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1
EXIT_CODE_DENIED = 2

_HINT_MESSAGES = {
    TierHint.SIGN_IN: (
        "You've used all your free trial conversions. "
        "Sign in to save your history and get 20 more conversions, on us!"
    ),
    TierHint.UPGRADE: "Upgrade to Pro for unlimited conversions and full history access.",
}

# Options shared by every command that acts for an identity
ConfigOption = typer.Option(None, "--config", "-c", help="Path to YAML configuration file")
DbOption = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to SQLite database file")
SignInOption = typer.Option(None, "--sign-in", "-s", help="Sign in with a provider instead of continuing as guest")
UserIdOption = typer.Option("user_12345", "--user-id", help="User id returned by the sign-in")
EmailOption = typer.Option("test@example.com", "--email", help="Email returned by the sign-in")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show diagnostic logs")
):
    """POML Converter CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True
    )
    if ctx.invoked_subcommand is None:
        console.print("POML Converter - Use --help to see available commands")


def _load_config(config_path: Optional[str]) -> ConverterConfig:
    if config_path is None:
        return default_config()
    return load_converter_config(config_path)


def _resolve_session(
    config: ConverterConfig,
    provider: Optional[Provider],
    user_id: str,
    email: str
) -> Tuple[Identity, Tier]:
    """Run the entry choice through the session manager."""
    session = SessionManager(auth=StaticAuthProvider(user_id=user_id, email=email))
    identity = asyncio.run(session.sign_in(provider))
    tier = session.tier(StaticEntitlements(config.pro_users))
    return identity, tier


def _build_orchestrator(config: ConverterConfig, db_path: str) -> ConversionOrchestrator:
    client = GeminiConversionClient(
        api_key=config.endpoint.resolved_api_key(),
        model=config.endpoint.model,
        base_url=config.endpoint.base_url,
        max_attempts=config.retry.max_attempts,
        initial_backoff_ms=config.retry.initial_backoff_ms,
        timeout_seconds=config.endpoint.timeout_seconds
    )
    ledger = QuotaLedger(
        SqliteQuotaRepository(db_path),
        trial_limit=config.quota.trial_limit,
        bonus_allowance=config.quota.bonus_allowance
    )
    return ConversionOrchestrator(
        ledger=ledger,
        client=client,
        history=HistoryStore(SqliteHistoryRepository(db_path)),
        persist_anonymous_history=config.history.persist_anonymous
    )


@app.command()
def init(db_path: str = DbOption):
    """Initialize the converter database."""
    try:
        initialize_schema(db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except StorageError as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def convert(
    text: Optional[str] = typer.Argument(None, help="Free-form prompt to convert"),
    input_file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read the prompt from a file"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the POML document to this file"),
    provider: Optional[Provider] = SignInOption,
    user_id: str = UserIdOption,
    email: str = EmailOption,
    config_path: Optional[str] = ConfigOption,
    db_path: str = DbOption
):
    """
    Convert a free-form prompt into a POML document.

    Guests get a short free trial; signing in adds a bonus allowance.
    """
    try:
        if input_file is not None:
            text = input_file.read_text(encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Error reading prompt file:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    if not text or not text.strip():
        console.print("[red]Error:[/] Provide a prompt as an argument or with --file")
        sys.exit(EXIT_CODE_FAIL)

    try:
        config = _load_config(config_path)
        initialize_schema(db_path)
        identity, tier = _resolve_session(config, provider, user_id, email)
        orchestrator = _build_orchestrator(config, db_path)
        result = asyncio.run(orchestrator.submit(identity, tier, text))
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    hint = orchestrator.tier_hint(tier, result)

    if isinstance(result, Converted):
        console.print("[green]✓[/] Conversion successful!")
        print(result.document)
        if output is not None:
            _download(result.document, output)
        _print_hint(hint)
        sys.exit(EXIT_CODE_PASS)

    if isinstance(result, QuotaDenied):
        console.print(f"[yellow]Quota exhausted:[/] {result.reason.value}")
        _print_hint(hint)
        sys.exit(EXIT_CODE_DENIED)

    if isinstance(result, RemoteFailed):
        console.print("[red]An error occurred during conversion. Please try again.[/]")
    elif isinstance(result, StorageFailed):
        console.print(f"[red]Could not record the conversion:[/] {result.message}")
    elif isinstance(result, InvalidInput):
        console.print(f"[red]Error:[/] {result.message}")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def quota(
    provider: Optional[Provider] = SignInOption,
    user_id: str = UserIdOption,
    email: str = EmailOption,
    config_path: Optional[str] = ConfigOption,
    db_path: str = DbOption
):
    """Show conversions used and remaining for the identity."""
    try:
        config = _load_config(config_path)
        initialize_schema(db_path)
        identity, tier = _resolve_session(config, provider, user_id, email)
        ledger = QuotaLedger(
            SqliteQuotaRepository(db_path),
            trial_limit=config.quota.trial_limit,
            bonus_allowance=config.quota.bonus_allowance
        )
        used = ledger.used(identity)
        limit = ledger.limit_for(tier)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Tier:[/bold] {tier.value}")
    if limit is None:
        console.print(f"Conversions: {used} (unlimited)")
    else:
        console.print(f"Conversions: {used}/{limit}")
        console.print(f"Remaining: {ledger.remaining(identity, tier)}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def history(
    provider: Optional[Provider] = SignInOption,
    user_id: str = UserIdOption,
    email: str = EmailOption,
    config_path: Optional[str] = ConfigOption,
    db_path: str = DbOption
):
    """List past conversions, oldest first."""
    try:
        config = _load_config(config_path)
        initialize_schema(db_path)
        identity, tier = _resolve_session(config, provider, user_id, email)
        store = HistoryStore(SqliteHistoryRepository(db_path))
        records = store.visible_for(identity, tier, config.history.free_history_limit)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not records:
        console.print("Your conversion history will appear here. Start converting!")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Your Conversion History")
    table.add_column("ID")
    table.add_column("Created")
    table.add_column("Prompt")
    for record in records:
        table.add_row(record.id, _format_timestamp(record.created_at), record.preview)
    console.print(table)

    if tier != Tier.PRO:
        console.print("This history is limited. Upgrade to Pro for full history access.")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def show(
    record_id: str = typer.Argument(..., help="Record id from the history listing"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the POML document to this file"),
    provider: Optional[Provider] = SignInOption,
    user_id: str = UserIdOption,
    email: str = EmailOption,
    config_path: Optional[str] = ConfigOption,
    db_path: str = DbOption
):
    """Print a POML document from the history."""
    try:
        config = _load_config(config_path)
        initialize_schema(db_path)
        identity, _ = _resolve_session(config, provider, user_id, email)
        record = HistoryStore(SqliteHistoryRepository(db_path)).find(identity, record_id)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    print(record.output_document)
    if output is not None:
        _download(record.output_document, output)
    sys.exit(EXIT_CODE_PASS)


def _download(document: str, output: Path) -> None:
    """Write the .poml artifact, exiting with a failure if it cannot be saved."""
    try:
        written = write_poml(document, output)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error writing {output}:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Downloaded {written}")


def _format_timestamp(timestamp) -> str:
    return timestamp.strftime("%Y-%m-%d %H:%M:%S")


def _print_hint(hint: TierHint) -> None:
    message = _HINT_MESSAGES.get(hint)
    if message:
        console.print(f"\n[bold]{message}[/bold]")


if __name__ == "__main__":
    app()
