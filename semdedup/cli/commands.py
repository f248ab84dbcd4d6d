"""CLI commands for semantic dedup.

Typer commands are synchronous; each one drives the async pipeline or store
with a single asyncio.run() call and disposes the engine before returning.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from semdedup.config import settings
from semdedup.errors import DedupError

# Module-level console used by all commands
console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _dispose_engine() -> None:
    from semdedup.db.session import engine  # noqa: PLC0415
    from semdedup.pipeline.embedder import close_embedder  # noqa: PLC0415

    await close_embedder()
    await engine.dispose()


def run(
    org_id: str = typer.Option(..., envvar="SEMDEDUP_ORG_ID", help="Tenant (organization) id"),
    source: str = typer.Option("raw_messages", help="raw_messages | segments"),
    limit: Optional[int] = typer.Option(None, help="Max messages to read (default from settings)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Run one semantic dedup pass for a tenant and print its counters."""
    from semdedup.dedup.pipeline import run_semantic_dedup  # noqa: PLC0415

    _configure_logging(verbose)

    async def _run():
        try:
            return await run_semantic_dedup(org_id, source=source, limit=limit)
        finally:
            await _dispose_engine()

    try:
        report = asyncio.run(_run())
    except DedupError as exc:
        console.print(f"[red]Semantic dedup failed:[/red] {exc}")
        raise typer.Exit(code=1)

    table = Table(title=f"Semantic dedup — {org_id} ({source})")
    table.add_column("Counter")
    table.add_column("Value", justify="right")
    for key, value in report.as_dict().items():
        if key in ("cancelled", "message"):
            continue
        table.add_row(key, str(value))
    console.print(table)

    if report.message:
        console.print(f"[dim]{report.message}[/dim]")
    if report.cancelled:
        console.print("[yellow]Run stopped early; re-run to continue.[/yellow]")
    if report.errors:
        console.print(f"[yellow]{report.errors} item(s) failed and will be retried next run.[/yellow]")


def clusters(
    org_id: str = typer.Option(..., envvar="SEMDEDUP_ORG_ID", help="Tenant (organization) id"),
    limit: int = typer.Option(20, help="Max clusters to show"),
) -> None:
    """List a tenant's newest semantic clusters."""
    from semdedup.db.session import AsyncSessionFactory  # noqa: PLC0415
    from semdedup.db.store import SqlAlchemyClusterStore  # noqa: PLC0415

    async def _list():
        try:
            return await SqlAlchemyClusterStore(AsyncSessionFactory).list_clusters(org_id, limit)
        finally:
            await _dispose_engine()

    summaries = asyncio.run(_list())
    if not summaries:
        console.print(f"[dim]No clusters for {org_id} yet.[/dim]")
        return

    table = Table(title=f"Clusters — {org_id}")
    table.add_column("Canonical text")
    table.add_column("Members", justify="right")
    table.add_column("Avg sim", justify="right")
    table.add_column("Created")
    for s in summaries:
        table.add_row(
            s.canonical_text[:80],
            str(s.member_count),
            f"{s.avg_similarity:.3f}",
            s.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)
