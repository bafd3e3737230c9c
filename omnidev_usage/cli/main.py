"""
CLI interface for OmniDev usage accounting.

Provides command-line access to the ledger, the quota gate and the API server.
"""

import sys
from dataclasses import replace
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from omnidev_usage.config.loader import StorageConfig, configure_logging, load_settings
from omnidev_usage.core.errors import UsageError
from omnidev_usage.core.ledger import ADMIN_ROLE, Caller, UsageLedger
from omnidev_usage.core.pricing import PRICING_TABLE
from omnidev_usage.core.summary import UsageSummary
from omnidev_usage.storage.repository import SqliteUsageRepository

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

# Operators running the CLI act with admin rights
CLI_CALLER = Caller(user_id="cli", roles=frozenset({ADMIN_ROLE}))


def _get_ledger(db_path: Optional[str] = None) -> UsageLedger:
    """Ledger backed by SQLite so usage survives between invocations."""
    settings = load_settings()
    storage = StorageConfig(
        backend="sqlite",
        db_path=db_path or settings.storage.db_path,
        retention_cap=settings.storage.retention_cap,
    )
    return UsageLedger.from_config(replace(settings, storage=storage))


def _format_currency(amount: float) -> str:
    """Format currency with enough precision for sub-cent charges."""
    return f"${amount:,.4f}"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
):
    """OmniDev usage CLI."""
    configure_logging(log_level, default="WARNING")
    if ctx.invoked_subcommand is None:
        console.print("OmniDev Usage - Use --help to see available commands")


@app.command()
def init(db: Optional[str] = typer.Option(None, "--db", help="SQLite database path")):
    """Initialize the usage database."""
    try:
        settings = load_settings()
        repository = SqliteUsageRepository(
            db or settings.storage.db_path, settings.storage.retention_cap
        )
        repository.initialize_schema()
        console.print(f"[green]✓[/] Database initialized at {repository.db_path}")
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def record(
    user_id: str = typer.Argument(..., help="User the usage belongs to"),
    model_id: str = typer.Argument(..., help="Model identifier"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p"),
    usage_type: str = typer.Option("chat", "--type", "-t", help="chat, image, video or embedding"),
    tokens_input: int = typer.Option(0, "--tokens-in"),
    tokens_output: int = typer.Option(0, "--tokens-out"),
    latency_ms: int = typer.Option(0, "--latency"),
    duration: Optional[float] = typer.Option(None, "--duration", help="Video length in seconds"),
    context_mode: Optional[str] = typer.Option(None, "--context-mode"),
    tier: Optional[str] = typer.Option(None, "--tier", help="Tier to enforce against"),
    enforce: bool = typer.Option(False, "--enforce", "-e", help="Refuse the record if over quota"),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database path"),
):
    """Record one usage log."""
    try:
        ledger = _get_ledger(db)
        if tier:
            ledger.set_tier(user_id, tier)
        log = ledger.create_log(
            user_id=user_id,
            model_id=model_id,
            provider=provider,
            usage_type=usage_type,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            latency_ms=latency_ms,
            context_mode=context_mode,
            duration_seconds=duration,
        )
        if enforce:
            admission = ledger.record_if_allowed(log)
            if not admission.allowed:
                check = admission.check
                console.print(
                    f"[red]✗[/] {check.resource.value} limit reached: "
                    f"{check.display_remaining:,} of {check.limit:,} remaining"
                )
                sys.exit(EXIT_CODE_FAIL)
        else:
            ledger.record_usage(log)
    except (UsageError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(
        f"[green]✓[/] Recorded {log.id}: {log.total_tokens:,} tokens, {_format_currency(log.cost)}"
    )


@app.command()
def summary(
    user_id: str = typer.Argument(..., help="User to summarize"),
    period: str = typer.Option("month", "--period", help="day, week, month or all"),
    tier: Optional[str] = typer.Option(None, "--tier", help="Tier to report limits for"),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database path"),
):
    """Show a usage summary for a user."""
    try:
        ledger = _get_ledger(db)
        if tier:
            ledger.set_tier(user_id, tier)
        result = ledger.get_summary(user_id, period)
    except (UsageError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_summary(user_id, result)


@app.command()
def check(
    user_id: str = typer.Argument(..., help="User to check"),
    resource: str = typer.Argument("tokens", help="tokens, images or videos"),
    amount: int = typer.Option(1, "--amount", "-a"),
    tier: Optional[str] = typer.Option(None, "--tier"),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database path"),
):
    """Check whether a request fits the user's quota. Exits 1 when it does not."""
    try:
        ledger = _get_ledger(db)
        if tier:
            ledger.set_tier(user_id, tier)
        result = ledger.check_quota(user_id, resource, amount)
    except (UsageError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    status = "[green]ALLOWED[/]" if result.allowed else "[red]LIMIT REACHED[/]"
    console.print(
        f"{status} {result.resource.value}: requested {amount:,}, "
        f"{result.display_remaining:,} of {result.limit:,} remaining"
    )
    if not result.allowed:
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def reset(
    user_id: Optional[str] = typer.Argument(None, help="User to clear"),
    all_users: bool = typer.Option(False, "--all", help="Clear every user"),
    confirm: bool = typer.Option(False, "--confirm", help="Confirm clearing every user"),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database path"),
):
    """Clear usage logs for one user, or for all users with --all --confirm."""
    if user_id is None and not all_users:
        console.print("[red]Error:[/] pass a user id or --all")
        sys.exit(EXIT_CODE_FAIL)
    if user_id is not None and all_users:
        console.print("[red]Error:[/] pass either a user id or --all, not both")
        sys.exit(EXIT_CODE_FAIL)

    try:
        ledger = _get_ledger(db)
        cleared = ledger.reset(CLI_CALLER, user_id=user_id, confirm=confirm)
    except UsageError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        if getattr(e, "requires_confirmation", False):
            console.print("Re-run with --confirm to clear all usage data")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Cleared usage data for {len(cleared)} user(s)")


@app.command()
def pricing():
    """List the built-in model prices."""
    table = Table(title="Model pricing (USD)")
    table.add_column("Model")
    table.add_column("Input / 1K", justify="right")
    table.add_column("Output / 1K", justify="right")
    table.add_column("Image", justify="right")
    table.add_column("Video / s", justify="right")

    for model_id, price in sorted(PRICING_TABLE.prices.items()):
        table.add_row(
            model_id,
            str(price.input_per_1k_tokens),
            str(price.output_per_1k_tokens),
            str(price.image_per_generation) if price.image_per_generation is not None else "-",
            str(price.video_per_second) if price.video_per_second is not None else "-",
        )
    console.print(table)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
):
    """Run the usage HTTP API."""
    import uvicorn

    uvicorn.run("omnidev_usage.api.app:build_app", factory=True, host=host, port=port)


def _display_summary(user_id: str, result: UsageSummary) -> None:
    """Display a summary in a clean, financial format."""
    console.print(f"\n[bold]Usage for {user_id}[/bold] ({result.period.value})")
    console.print("-" * 40)
    console.print(
        f"Tokens: {result.tokens_used:,} / {result.tokens_limit:,} "
        f"({result.percent_used:.1f}%, {result.tokens_remaining:,} remaining)"
    )
    console.print(f"Images: {result.images_generated:,} / {result.images_limit:,}")
    console.print(f"Videos: {result.videos_generated:,} / {result.videos_limit:,}")
    console.print(f"Requests: {result.request_count:,}")
    console.print(f"Total cost: {_format_currency(result.total_cost)}")
    console.print(f"Average latency: {result.average_latency:,.0f} ms")

    if result.top_models:
        table = Table(title="Top models")
        table.add_column("Model")
        table.add_column("Requests", justify="right")
        table.add_column("Tokens", justify="right")
        for model in result.top_models:
            table.add_row(model.model_id, f"{model.count:,}", f"{model.tokens:,}")
        console.print(table)

    if result.daily_usage:
        table = Table(title="Daily usage")
        table.add_column("Date")
        table.add_column("Tokens", justify="right")
        table.add_column("Cost", justify="right")
        for day in result.daily_usage:
            table.add_row(day.date, f"{day.tokens:,}", _format_currency(day.cost))
        console.print(table)


if __name__ == "__main__":
    app()
