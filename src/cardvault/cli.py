"""cardvault CLI - manage the local card catalog, collections and prices."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Annotated, Any, TypeVar

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from .config import get_settings
from .data.models import ScanInput
from .exceptions import CardVaultError
from .setup import SetupProgress
from .vault import CardVault

console = Console()
T = TypeVar("T")

cli = typer.Typer(
    name="cardvault",
    help="cardvault - local trading card catalog, collections and price history.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
lorcana_app = typer.Typer(help="Disney Lorcana cards and collections", no_args_is_help=True)
cli.add_typer(lorcana_app, name="lorcana")


def run_async(coro: Any) -> Any:
    """Run async coroutine in sync context."""
    return asyncio.run(coro)


def output_json(data: Any) -> None:
    """Output data as JSON (plain text, no Rich formatting)."""
    if isinstance(data, list):
        data = [item.model_dump(mode="json") if hasattr(item, "model_dump") else item for item in data]
    elif hasattr(data, "model_dump"):
        data = data.model_dump(mode="json")
    print(json.dumps(data, indent=2, default=str))


def with_vault(func: Callable[[CardVault], Awaitable[T]], show_progress: bool = False) -> T:
    """Open a vault, run func against it, and close it again."""

    async def _run() -> T:
        vault = CardVault(get_settings())
        if show_progress:
            with Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("Checking card catalog...", total=1.0)

                def report(update: SetupProgress) -> None:
                    progress.update(task, completed=update.progress, description=update.message)

                await vault.open(report)
        else:
            await vault.open()
        try:
            return await func(vault)
        finally:
            await vault.close()

    try:
        return run_async(_run())
    except CardVaultError as e:
        console.print(f"[red]Error:[/] {e.message}")
        raise typer.Exit(1) from e


@cli.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
) -> None:
    """Configure logging for every command."""
    settings = get_settings()
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s:%(name)s:%(message)s")


# =============================================================================
# Catalog
# =============================================================================


@cli.command()
def setup() -> None:
    """Download and verify the card catalog."""

    async def _run(vault: CardVault) -> None:
        if vault.catalog_available:
            console.print("[green]OK[/] Card catalog ready")
        else:
            console.print("[red]Card catalog unavailable[/] (see log for details)")
            raise typer.Exit(1)

    with_vault(_run, show_progress=True)


@cli.command()
def search(
    query: Annotated[str, typer.Argument(help="Card name or part of it")],
    limit: Annotated[int, typer.Option("--limit", "-l", help="Maximum results")] = 25,
    as_json: Annotated[bool, typer.Option("--json", help="Output JSON")] = False,
) -> None:
    """Search the card catalog by name."""

    async def _run(vault: CardVault) -> None:
        cards = await vault.search_catalog(query, limit)
        if as_json:
            output_json(cards)
            return
        if not cards:
            console.print(f"No cards matching [cyan]{query}[/]")
            return
        table = Table(title=f"Cards matching '{query}'")
        table.add_column("Name", style="cyan")
        table.add_column("Set")
        table.add_column("#", justify="right")
        table.add_column("Price", justify="right", style="green")
        table.add_column("UUID", style="dim")
        for card in cards:
            price = f"${card.prices.normal:.2f}" if card.prices.normal else "-"
            table.add_row(card.name, card.set_code or "", card.collector_number or "", price, card.uuid or "")
        console.print(table)

    with_vault(_run)


# =============================================================================
# Collections
# =============================================================================


@cli.command()
def collections(
    as_json: Annotated[bool, typer.Option("--json", help="Output JSON")] = False,
) -> None:
    """List collections with card count and value."""

    async def _run(vault: CardVault) -> None:
        items = await vault.list_collections()
        if as_json:
            output_json(items)
            return
        table = Table(title="Collections")
        table.add_column("ID", justify="right", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Cards", justify="right")
        table.add_column("Value", justify="right", style="green")
        for c in items:
            table.add_row(str(c.id), c.name, str(c.card_count), f"${c.total_value:.2f}")
        console.print(table)

    with_vault(_run)


@cli.command()
def add(
    card_uuid: Annotated[str, typer.Argument(help="Catalog uuid of the card")],
    collection: Annotated[str, typer.Option("--collection", "-c", help="Collection name")],
    quantity: Annotated[int, typer.Option("--quantity", "-q", min=1)] = 1,
) -> None:
    """Add a card to a collection (created if needed)."""

    async def _run(vault: CardVault) -> None:
        target = await vault.get_or_create_collection(collection)
        total = await vault.add_card_to_collection(card_uuid, target.id, quantity)
        console.print(f"[green]OK[/] {card_uuid} in [cyan]{target.name}[/]: {total}")

    with_vault(_run)


@cli.command()
def scan(
    text: Annotated[str, typer.Argument(help="Recognized card name")],
) -> None:
    """Record a scan as if it came from the camera."""

    async def _run(vault: CardVault) -> None:
        outcome = await vault.record_scan(ScanInput(text=text))
        name = outcome.card.name if outcome.card else text
        console.print(f"{outcome.status.value}: [cyan]{name}[/] ({outcome.stage.value})")
        if outcome.error:
            console.print(f"[yellow]{outcome.error}[/]")

    with_vault(_run)


@cli.command()
def completion(
    set_code: Annotated[str, typer.Argument(help="Set code, e.g. LEA")],
    show_missing: Annotated[bool, typer.Option("--missing", help="List missing cards")] = False,
) -> None:
    """Show completion of a set collection."""

    async def _run(vault: CardVault) -> None:
        result = await vault.get_set_completion(set_code)
        title = result.set_name or result.set_code
        console.print(
            f"[bold]{title}[/]: {result.collected_cards}/{result.total_cards} "
            f"({result.percentage:.1f}%), value ${result.total_value:.2f}"
        )
        if show_missing and result.missing_cards:
            table = Table(title="Missing cards")
            table.add_column("#", justify="right")
            table.add_column("Name", style="cyan")
            for card in result.missing_cards:
                table.add_row(card.collector_number or "", card.name)
            console.print(table)

    with_vault(_run)


@cli.command("repair-cache")
def repair_cache() -> None:
    """Rebuild missing cache entries of owned cards from the catalog."""

    async def _run(vault: CardVault) -> None:
        repaired = await vault.ensure_cache_populated()
        console.print(f"[green]OK[/] Repaired {repaired} cache entries")

    with_vault(_run)


# =============================================================================
# Prices
# =============================================================================


@cli.command()
def history(
    card_uuid: Annotated[str, typer.Argument(help="Catalog uuid of the card")],
    as_json: Annotated[bool, typer.Option("--json", help="Output JSON")] = False,
) -> None:
    """Show a card's price history and statistics."""

    async def _run(vault: CardVault) -> None:
        snapshots = await vault.get_price_history(card_uuid)
        stats = await vault.get_price_history_stats(card_uuid)
        if as_json:
            output_json({"history": [s.model_dump() for s in snapshots], "stats": stats.model_dump()})
            return
        table = Table(title=f"Price history of {card_uuid}")
        table.add_column("Date")
        table.add_column("Normal", justify="right", style="green")
        table.add_column("Foil", justify="right")
        for s in snapshots:
            table.add_row(s.date, f"${s.normal:.2f}", f"${s.foil:.2f}")
        console.print(table)
        console.print(
            f"min ${stats.min_price:.2f}  max ${stats.max_price:.2f}  avg ${stats.avg_price:.2f}  "
            f"7d {stats.change_7d:+.2f} ({stats.change_7d_percent:+.1f}%)  "
            f"30d {stats.change_30d:+.2f} ({stats.change_30d_percent:+.1f}%)"
        )

    with_vault(_run)


@cli.command("refresh-prices")
def refresh_prices(
    force: Annotated[bool, typer.Option("--force", help="Download even if done today")] = False,
) -> None:
    """Import today's prices into the catalog."""

    async def _run(vault: CardVault) -> None:
        count = await vault.refresh_prices(force=force)
        await vault.manager.tasks.drain()
        if count:
            console.print(f"[green]OK[/] Imported prices for {count:,} cards")
        else:
            console.print("Prices already up to date")

    with_vault(_run)


# =============================================================================
# Lorcana
# =============================================================================


@lorcana_app.command("search")
def lorcana_search(
    name: Annotated[str, typer.Argument(help="Card name or part of it")],
    limit: Annotated[int, typer.Option("--limit", "-l")] = 25,
) -> None:
    """Search the Lorcana catalog."""

    async def _run(vault: CardVault) -> None:
        store = await vault.open_lorcana()
        cards = await store.search_cards(name, limit)
        table = Table(title=f"Lorcana cards matching '{name}'")
        table.add_column("Name", style="cyan")
        table.add_column("Set")
        table.add_column("Rarity")
        table.add_column("Price", justify="right", style="green")
        for card in cards:
            price = f"${card.price_usd:.2f}" if card.price_usd else "-"
            table.add_row(card.name or "", card.set_name or "", card.rarity or "", price)
        console.print(table)

    with_vault(_run)


@lorcana_app.command("sets")
def lorcana_sets() -> None:
    """Show completion of the Lorcana set collections."""

    async def _run(vault: CardVault) -> None:
        store = await vault.open_lorcana()
        table = Table(title="Lorcana sets")
        table.add_column("Set", style="cyan")
        table.add_column("Collected", justify="right")
        table.add_column("%", justify="right")
        table.add_column("Value", justify="right", style="green")
        for c in await store.get_set_collections():
            table.add_row(
                c.set_name or c.set_code,
                f"{c.collected_cards}/{c.total_cards}",
                f"{c.percentage:.1f}",
                f"${c.total_value:.2f}",
            )
        console.print(table)

    with_vault(_run)


if __name__ == "__main__":
    cli()
