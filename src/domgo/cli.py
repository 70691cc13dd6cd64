"""Command line interface for the listing data layer.

Run via: domgo <command>
Or: python -m domgo.cli <command>
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .errors import DomgoError
from .models.listing import Listing
from .service import PropertyService

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with Rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _listing_table(listings: list[Listing]) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", max_width=12)
    table.add_column("Title", max_width=40)
    table.add_column("Type")
    table.add_column("Rooms", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Created")

    for listing in listings:
        price = f"{listing.price:,.0f} {listing.currency or ''}".strip() if listing.price else "N/A"
        table.add_row(
            listing.id[:12],
            (listing.title or "")[:40],
            listing.property_type or "",
            str(listing.rooms) if listing.rooms is not None else "",
            price,
            listing.created_at.strftime("%Y-%m-%d"),
        )
    return table


async def browse(category: str, pages: int, page_size: Optional[int]) -> int:
    """Load ``pages`` pages of a category and print the merged list."""
    async with PropertyService(restart_hook=None) as service:
        first = await service.get_properties_by_type(category, page_size=page_size)
        console.print(f"[bold]{category}[/bold]: {first.total_count} listings")

        for _ in range(pages - 1):
            appended = await service.pagination.load_next_page(category, page_size)
            if not appended:
                break

        listings = service.visible_properties(category)
        state = service.pagination.state(category)
        console.print(_listing_table(listings))
        if state is not None:
            more = "yes" if state.has_more else "no"
            console.print(
                f"[dim]Page {state.current_page_index}, {len(listings)} shown, more: {more}[/dim]"
            )
    return 0


async def check_version() -> int:
    async with PropertyService(restart_hook=None) as service:
        cleared = await service.run_startup_version_check()
        if cleared:
            console.print("[yellow]Caches cleared for this build[/yellow]")
        else:
            console.print("[green]Stored version matches this build[/green]")

        info = await service.invalidator.get_diagnostic_info()
        stored = info["stored"] or {}
        console.print(f"  Current: {info['current']['app_version']} "
                      f"(build {info['current']['build_version']})")
        if stored:
            console.print(f"  Last clear: {stored['last_clear_at']} - {stored['clear_reason']}")
    return 0


async def clear(reason: str) -> int:
    async with PropertyService(restart_hook=None) as service:
        fingerprint = await service.invalidator.force_clear_all(reason)
        console.print(f"[green]All caches cleared[/green] ({fingerprint.clear_reason})")
    return 0


async def diagnose() -> int:
    async with PropertyService(restart_hook=None) as service:
        report = await service.diagnostics.collect()
        console.print("[bold]Cache diagnostics[/bold]")
        console.print(f"  Stored keys: {report.storage_key_count}")
        console.print(f"  Estimated size: {report.estimated_size_bytes / 1024:.1f} KB")
        for name, stats in report.cache_stats.items():
            console.print(
                f"  {name}: {stats.valid_items}/{stats.max_entries} valid "
                f"({stats.fill_percentage:.0f}% full)"
            )

        result = await service.diagnostics.check_for_issues()
        if not result.has_issues:
            console.print("[green]No issues found[/green]")
            return 0

        console.print()
        for issue, recommendation in zip(result.issues, result.recommendations):
            console.print(f"  [yellow]![/yellow] {issue}")
            console.print(f"    [dim]{recommendation}[/dim]")
    return 1


async def check_updates(force: bool) -> int:
    async with PropertyService(restart_hook=None) as service:
        result = await service.updates.check_for_updates(force=force)
        if not result.checked:
            console.print("[dim]Checked recently; use --force to check again[/dim]")
        elif result.is_update_available:
            console.print(
                f"[bold green]Update available:[/bold green] "
                f"{result.current_version} -> {result.latest_version}"
            )
        else:
            console.print(f"[green]Up to date[/green] ({result.current_version})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="domgo",
        description="domgo listing data layer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  domgo browse rent --pages 3
  domgo check-version
  domgo clear --reason "Bad data after migration"
  domgo diagnose -v
        """,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    browse_parser = subparsers.add_parser("browse", help="Page through a category")
    browse_parser.add_argument("category", help="Category key (all, sale, rent, new-builds)")
    browse_parser.add_argument("--pages", type=int, default=1, help="Pages to load")
    browse_parser.add_argument("--page-size", type=int, default=None, help="Listings per page")

    subparsers.add_parser("check-version", help="Clear caches if the build changed")

    clear_parser = subparsers.add_parser("clear", help="Clear all caches")
    clear_parser.add_argument("--reason", default="Manual clear", help="Reason recorded")

    subparsers.add_parser("diagnose", help="Report cache state and issues")

    updates_parser = subparsers.add_parser("updates", help="Check for a newer version")
    updates_parser.add_argument(
        "--force",
        action="store_true",
        help="Check even if the last check is recent",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for CLI."""
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)

    if args.command == "browse":
        coro = browse(args.category, max(args.pages, 1), args.page_size)
    elif args.command == "check-version":
        coro = check_version()
    elif args.command == "clear":
        coro = clear(args.reason)
    elif args.command == "diagnose":
        coro = diagnose()
    else:
        coro = check_updates(args.force)

    try:
        sys.exit(asyncio.run(coro))
    except DomgoError as e:
        console.print(f"[red]Error:[/red] {e}")
        if args.verbose:
            raise
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
