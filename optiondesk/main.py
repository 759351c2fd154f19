"""CLI interface for the optiondesk trading engine."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="optiondesk",
    help="Simulated binary-options desk: pending orders, risk checks and outcome learning.",
    add_completion=False,
)
pending_app = typer.Typer(help="Manage pending orders.", add_completion=False)
risk_app = typer.Typer(help="Inspect the risk profile.", add_completion=False)
app.add_typer(pending_app, name="pending")
app.add_typer(risk_app, name="risk")

console = Console()


def _configure_logging(level: str = "INFO", fmt: str | None = None) -> None:
    """Set up root logger with the specified level."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=fmt or "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _load(profile: str, log_level: str | None = None):
    from optiondesk.config.settings import load_settings

    settings = load_settings(profile)
    _configure_logging(log_level or settings.logging.level, settings.logging.format)
    return settings


@asynccontextmanager
async def _open_engine(settings) -> AsyncIterator:
    """Engine with storage and services ready, feed not started."""
    from optiondesk.core.engine import TradingEngine

    engine = TradingEngine(settings)
    await engine.initialize()
    try:
        yield engine
    finally:
        await engine.close()


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/]")
    raise typer.Exit(code=1)


def _parse_pending(raw: str) -> tuple[str, str, float, float]:
    """Parse ``SYMBOL,SIDE,AMOUNT,TARGET``."""
    parts = [p.strip() for p in raw.split(",")]
    if len(parts) != 4:
        raise typer.BadParameter(f"Expected SYMBOL,SIDE,AMOUNT,TARGET, got {raw!r}")
    symbol, side, amount, target = parts
    try:
        return symbol, side.upper(), float(amount), float(target)
    except ValueError:
        raise typer.BadParameter(f"Amount and target must be numbers: {raw!r}") from None


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


async def _run_session(
    settings,
    duration: float,
    pending: list[tuple[str, str, float, float]],
) -> None:
    from optiondesk.core.engine import TradingEngine, run_session
    from optiondesk.core.order_manager import OrderValidationError

    engine = TradingEngine(settings)
    await engine.initialize()

    for symbol, side, amount, target in pending:
        try:
            order = await engine.orders.add_order(symbol, side, amount, target)
        except OrderValidationError as e:
            console.print(f"[red]Pending order rejected: {e}[/]")
            continue
        console.print(f"[dim]Pending order {order.id} added.[/]")

    await run_session(engine, duration)
    _print_outcomes(engine.outcomes)


def _print_outcomes(outcomes) -> None:
    if not outcomes:
        console.print("[yellow]No trades settled during this session.[/]")
        return

    table = Table(title="Settled Trades", show_header=True)
    table.add_column("Trade", style="cyan")
    table.add_column("Side")
    table.add_column("Amount", justify="right")
    table.add_column("Entry", justify="right")
    table.add_column("Exit", justify="right")
    table.add_column("Result")
    table.add_column("Profit", justify="right")

    for o in outcomes:
        colour = "green" if o.is_win else "red"
        table.add_row(
            o.id,
            f"{o.side.value} {o.symbol}",
            f"${o.amount:,.2f}",
            f"{o.entry_price:.5f}",
            f"{o.exit_price:.5f}",
            f"[{colour}]{o.result.value}[/]",
            f"[{colour}]{o.profit:+,.2f}[/]",
        )
    console.print(table)


@app.command()
def run(
    profile: str = typer.Option("demo", help="Config profile (default/demo)"),
    duration: float = typer.Option(30.0, help="Session length in seconds"),
    symbols: Optional[list[str]] = typer.Option(None, help="Symbols to simulate"),
    pending: Optional[list[str]] = typer.Option(
        None, help="Pending order as SYMBOL,SIDE,AMOUNT,TARGET (repeatable)"
    ),
    log_level: Optional[str] = typer.Option(None, help="Log level"),
) -> None:
    """Run a simulated trading session."""
    settings = _load(profile, log_level)
    if symbols:
        settings.simulator.symbols = symbols

    console.print(f"[bold green]Starting trading session[/] (profile={profile})")
    console.print(f"  Symbols: {settings.simulator.symbols}")
    console.print(f"  Duration: {duration:g}s")

    orders = [_parse_pending(raw) for raw in pending or []]
    try:
        asyncio.run(_run_session(settings, duration, orders))
    except KeyboardInterrupt:
        console.print("\n[yellow]KeyboardInterrupt, stopping...[/]")

    console.print("[green]Session finished.[/]")


async def _show_status(settings) -> None:
    async with _open_engine(settings) as engine:
        connection = await engine.repo.get_connection_state()
        risk = engine.risk.get_risk_status()
        summary = engine.orders.summary()

        table = Table(title="Desk Status", show_header=True)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Database", settings.storage.path)
        table.add_row("Symbols", ", ".join(settings.simulator.symbols))
        if connection and connection.account_info:
            table.add_row(
                "Broker",
                f"{connection.account_info.account_id} "
                f"(${connection.account_info.balance:,.2f})",
            )
        else:
            table.add_row("Broker", "No active session")
        table.add_row(
            "Pending Orders",
            ", ".join(f"{k}={v}" for k, v in summary.items() if v) or "none",
        )
        table.add_row("Risk Level", risk["risk_level"])
        table.add_row("Trades Today", str(risk["daily_stats"]["trades_count"]))
        table.add_row("Loss Today", f"${risk['daily_stats']['total_loss']:,.2f}")
        table.add_row("Trades Learned", str(engine.learning.data.total_trades))

        console.print(table)


@app.command()
def status(
    profile: str = typer.Option("default", help="Config profile"),
    log_level: str = typer.Option("WARNING", help="Log level"),
) -> None:
    """Show broker session, pending orders and risk level."""
    settings = _load(profile, log_level)
    asyncio.run(_show_status(settings))


@app.command()
def migrate(
    profile: str = typer.Option("default", help="Config profile"),
) -> None:
    """Initialize or migrate the database schema."""
    from optiondesk.config.settings import load_settings
    from optiondesk.data.migrations import run_migrations

    settings = load_settings(profile)
    console.print(f"[bold]Running migrations[/] → {settings.storage.path}")
    asyncio.run(run_migrations(settings.storage.path))
    console.print("[green]Migrations complete.[/]")


# ---------------------------------------------------------------------------
# Pending orders
# ---------------------------------------------------------------------------


async def _add_pending(
    settings,
    symbol: str,
    side: str,
    amount: float,
    target: float,
    timeframe: str,
    expires_in: float | None,
):
    from optiondesk.data.models import utcnow

    async with _open_engine(settings) as engine:
        expiry = utcnow() + timedelta(seconds=expires_in) if expires_in else None
        return await engine.orders.add_order(
            symbol, side, amount, target, timeframe=timeframe, expiry_time=expiry
        )


@pending_app.command("add")
def pending_add(
    symbol: str = typer.Argument(..., help="Symbol, e.g. EURUSD"),
    side: str = typer.Argument(..., help="BUY or SELL"),
    amount: float = typer.Argument(..., help="Stake"),
    target: float = typer.Argument(..., help="Target price"),
    timeframe: str = typer.Option("1m", help="Option expiry once executed"),
    expires_in: Optional[float] = typer.Option(
        None, help="Mark the order expired after this many seconds"
    ),
    profile: str = typer.Option("default", help="Config profile"),
    log_level: str = typer.Option("WARNING", help="Log level"),
) -> None:
    """Add a pending order that fires when the target price is reached."""
    from optiondesk.core.order_manager import OrderValidationError

    settings = _load(profile, log_level)
    try:
        order = asyncio.run(
            _add_pending(settings, symbol, side.upper(), amount, target, timeframe, expires_in)
        )
    except OrderValidationError as e:
        _fail(str(e))
        return
    console.print(
        f"[green]Pending order {order.id} added:[/] "
        f"{order.side.value} {order.symbol} ${order.amount:,.2f} @ {order.target_price}"
    )


async def _list_pending(settings, status):
    async with _open_engine(settings) as engine:
        return engine.orders.list_orders(status)


@pending_app.command("list")
def pending_list(
    status: Optional[str] = typer.Option(None, help="Only orders with this status"),
    profile: str = typer.Option("default", help="Config profile"),
    log_level: str = typer.Option("WARNING", help="Log level"),
) -> None:
    """List stored pending orders."""
    from optiondesk.config.constants import PendingStatus

    settings = _load(profile, log_level)
    try:
        wanted = PendingStatus(status) if status else None
    except ValueError:
        _fail(f"Unknown status: {status}")
        return

    orders = asyncio.run(_list_pending(settings, wanted))
    if not orders:
        console.print("[yellow]No pending orders.[/]")
        return

    table = Table(title="Pending Orders", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Order")
    table.add_column("Target", justify="right")
    table.add_column("Expires")
    table.add_column("Status")
    table.add_column("Note", style="dim")
    for o in orders:
        table.add_row(
            o.id,
            f"{o.side.value} {o.symbol} ${o.amount:,.2f}",
            f"{o.target_price}",
            o.expiry_time.isoformat() if o.expiry_time else "-",
            o.status.value,
            o.note,
        )
    console.print(table)


async def _cancel_pending(settings, order_id: str):
    async with _open_engine(settings) as engine:
        return await engine.orders.cancel(order_id)


@pending_app.command("cancel")
def pending_cancel(
    order_id: str = typer.Argument(..., help="Order ID"),
    profile: str = typer.Option("default", help="Config profile"),
    log_level: str = typer.Option("WARNING", help="Log level"),
) -> None:
    """Cancel a pending order."""
    settings = _load(profile, log_level)
    order = asyncio.run(_cancel_pending(settings, order_id))
    if order is None:
        _fail(f"No pending order {order_id} to cancel.")
        return
    console.print(f"[green]Order {order_id} cancelled.[/]")


# ---------------------------------------------------------------------------
# Risk and learning
# ---------------------------------------------------------------------------


async def _check_risk(settings, request, balance: float):
    async with _open_engine(settings) as engine:
        return engine.risk.validate(request, balance)


@risk_app.command("check")
def risk_check(
    symbol: str = typer.Argument(..., help="Symbol"),
    side: str = typer.Argument(..., help="BUY, SELL, CALL or PUT"),
    amount: float = typer.Argument(..., help="Stake"),
    balance: float = typer.Option(1000.0, help="Account balance"),
    confidence: float = typer.Option(60.0, help="Signal confidence (0-100)"),
    timeframe: str = typer.Option("1m", help="Expiry"),
    profile: str = typer.Option("default", help="Config profile"),
    log_level: str = typer.Option("WARNING", help="Log level"),
) -> None:
    """Validate a hypothetical trade against the risk profile."""
    from optiondesk.config.constants import TradeSide
    from optiondesk.data.models import TradeRequest

    settings = _load(profile, log_level)
    try:
        trade_side = TradeSide(side.upper())
    except ValueError:
        _fail(f"Invalid side: {side}")
        return

    request = TradeRequest(
        symbol=symbol,
        side=trade_side,
        amount=amount,
        timeframe=timeframe,
        confidence=confidence,
    )
    assessment = asyncio.run(_check_risk(settings, request, balance))

    verdict = "[green]ALLOWED[/]" if assessment.allowed else "[red]BLOCKED[/]"
    console.print(f"{verdict}  risk score {assessment.risk_score:.0f}/100")
    console.print(f"Recommended amount: ${assessment.recommended_amount:,.0f}")

    if assessment.risks:
        table = Table(title="Risk Findings", show_header=True)
        table.add_column("Type", style="cyan")
        table.add_column("Severity")
        table.add_column("Action")
        table.add_column("Message")
        for r in assessment.risks:
            table.add_row(r.type.value, r.severity.value, r.action.value, r.message)
        console.print(table)

    if not assessment.allowed:
        raise typer.Exit(code=1)


async def _insights(settings):
    async with _open_engine(settings) as engine:
        return engine.learning.get_learning_insights()


@app.command()
def insights(
    profile: str = typer.Option("default", help="Config profile"),
    log_level: str = typer.Option("WARNING", help="Log level"),
) -> None:
    """Show what the learning engine has picked up so far."""
    settings = _load(profile, log_level)
    data = asyncio.run(_insights(settings))

    table = Table(title="Learning Insights", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Total Trades", str(data["total_trades"]))
    table.add_row("Win Rate", f"{data['overall_win_rate']}%")
    table.add_row("Profit Factor", f"{data['profit_factor']:.2f}")
    table.add_row("Experience", data["experience_level"])
    best = data["best_strategy"]
    table.add_row(
        "Best Strategy",
        f"{best['name']} ({best['win_rate']}%, {best['trades']} trades)" if best else "N/A",
    )
    adaptive = data["adaptive_settings"]
    table.add_row("Confidence Threshold", f"{adaptive['confidence_threshold']:g}")
    table.add_row("Max Risk / Trade", f"{adaptive['max_risk_per_trade']:g}%")
    metrics = data["risk_metrics"]
    if metrics:
        table.add_row("Max Drawdown", f"{metrics['max_drawdown']:.1f}%")
        table.add_row("Avg Win / Loss", f"${metrics['avg_win']:.2f} / ${metrics['avg_loss']:.2f}")
    console.print(table)

    for line in data["recommendations"]:
        console.print(f"  • {line}")


async def _reset_learning(settings) -> None:
    async with _open_engine(settings) as engine:
        await engine.learning.clear()


@app.command("reset-learning")
def reset_learning(
    profile: str = typer.Option("default", help="Config profile"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete all learned trade statistics."""
    if not yes and not typer.confirm("Forget all learned trade statistics?"):
        raise typer.Abort()

    settings = _load(profile, "WARNING")
    asyncio.run(_reset_learning(settings))
    console.print("[green]Learning data cleared.[/]")


if __name__ == "__main__":
    app()
