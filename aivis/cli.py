"""Command-line entry point: citation repair, re-aggregation, verification and the API server.

Exit codes: 0 success, 1 storage unreachable, 2 verification violations.
"""

from __future__ import annotations

import asyncio
import json
import logging

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from aivis.analysis.citation_classifier import ClassificationRules, classify_citation, clean_url, extract_hostname
from aivis.core.config import settings
from aivis.core.exceptions import StorageUnavailableError
from aivis.core.logging import setup_logging
from aivis.core.sentry import init_sentry
from aivis.db.postgres import make_session_factory
from aivis.services.reaggregation_service import (
    ReaggregationResult,
    ReprocessSummary,
    VerificationReport,
    reaggregate,
    reprocess_all,
    resolve_user_id,
    verify_aggregates,
)
from aivis.services.storage import MetricsStorage

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="aivis",
    help="Citation classification and brand visibility metrics maintenance.",
    no_args_is_help=True,
)
console = Console()

EXIT_STORAGE_UNAVAILABLE = 1
EXIT_VERIFICATION_FAILED = 2


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    setup_logging("DEBUG" if verbose else None)
    init_sentry()


# ---------------------------------------------------------------------------
# Async runners
# ---------------------------------------------------------------------------


async def _run_reprocess(user_id: str | None, fix_urls: bool) -> ReprocessSummary:
    session_factory, engine = make_session_factory()
    try:
        async with session_factory() as session:
            return await reprocess_all(
                MetricsStorage(session),
                user_id=user_id,
                rules=ClassificationRules.from_settings(settings),
                fix_urls=fix_urls,
            )
    finally:
        await engine.dispose()


async def _run_reaggregate(user_id: str | None, tracked_brands: tuple[str, ...]) -> ReaggregationResult | None:
    session_factory, engine = make_session_factory()
    try:
        async with session_factory() as session:
            storage = MetricsStorage(session)
            resolved = await resolve_user_id(storage, user_id)
            if resolved is None:
                return None
            return await reaggregate(
                storage,
                user_id=resolved,
                tracked_brands=tracked_brands,
                rules=ClassificationRules.from_settings(settings),
            )
    finally:
        await engine.dispose()


async def _run_verify(user_id: str | None) -> VerificationReport:
    session_factory, engine = make_session_factory()
    try:
        async with session_factory() as session:
            return await verify_aggregates(MetricsStorage(session), user_id=user_id)
    finally:
        await engine.dispose()



# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _breakdown_table(summary: ReprocessSummary) -> Table:
    table = Table(title="Citation breakdown")
    table.add_column("Type")
    table.add_column("Before", justify="right")
    table.add_column("After", justify="right")
    before = summary.before.to_dict()
    after = summary.after.to_dict()
    for kind in ("brand", "earned", "social"):
        table.add_row(
            kind,
            f"{before[kind]['count']} ({before[kind]['percent']}%)",
            f"{after[kind]['count']} ({after[kind]['percent']}%)",
        )
    return table


def _render_reprocess(summary: ReprocessSummary) -> None:
    console.print(f"[bold]Prompt tests processed:[/bold] {summary.processed}")
    console.print(f"[bold]Prompt tests updated:[/bold]   {summary.updated}")
    console.print(f"Citations processed: {summary.citations_processed}")
    console.print(f"Citations reclassified: {summary.citations_changed}")
    console.print(f"Brand mentions changed: {summary.brand_mentions_changed}")
    if summary.urls_cleaned:
        console.print(f"URLs cleaned: {summary.urls_cleaned}")
    console.print(f"Aggregates updated: {summary.aggregates_updated}")
    console.print(_breakdown_table(summary))
    if summary.errors:
        console.print(f"[yellow]{summary.errors} item(s) failed:[/yellow]")
        for failure in summary.failures:
            console.print(f"  {failure.kind} {failure.record_id}: {failure.error}")
    else:
        console.print("[green]Citation reprocess complete[/green]")


def _render_reaggregate(result: ReaggregationResult) -> None:
    console.print(
        f"[bold]User {result.user_id}:[/bold] {result.records} tests, "
        f"{result.total_prompts} prompts, {len(result.metrics)} aggregates saved"
    )
    console.print(f"Platforms: {result.platforms}  Topics: {result.topics}  Personas: {result.personas}")

    overall = result.metrics[0] if result.metrics else None
    if overall and overall.brand_metrics:
        table = Table(title="Overall brand metrics")
        for column in ("Brand", "Visibility", "Rank", "Mentions", "SoV", "Avg pos", "Citations", "Sentiment"):
            table.add_column(column, justify="left" if column == "Brand" else "right")
        for b in overall.brand_metrics:
            table.add_row(
                b.brand_name,
                f"{b.visibility_score}%",
                str(b.visibility_rank),
                str(b.total_mentions),
                f"{b.share_of_voice}%",
                str(b.avg_position),
                str(b.total_citations),
                str(b.sentiment_score),
            )
        console.print(table)


def _render_verification(report: VerificationReport) -> None:
    console.print(f"Checked {report.metrics_checked} aggregates, {report.brands_checked} brand rows")
    if report.ok:
        console.print("[green]All invariants hold[/green]")
        return
    table = Table(title="Violations")
    for column in ("Scope", "Value", "Brand", "Check", "Detail"):
        table.add_column(column)
    for v in report.violations:
        table.add_row(v.scope, v.scope_value, v.brand_name, v.check, v.detail)
    console.print(table)


def _storage_failure(exc: StorageUnavailableError) -> typer.Exit:
    console.print(f"[red]Storage unavailable:[/red] {exc}")
    return typer.Exit(code=EXIT_STORAGE_UNAVAILABLE)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("reprocess-citations")
def reprocess_citations(
    user_id: str = typer.Argument(None, help="Limit to one user (default: all users)"),
    fix_urls: bool = typer.Option(False, "--fix-urls", help="Also strip trailing punctuation from stored URLs"),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON instead of Rich tables"),
) -> None:
    """Reclassify every stored citation and patch aggregate citation totals."""
    try:
        summary = asyncio.run(_run_reprocess(user_id, fix_urls))
    except StorageUnavailableError as exc:
        raise _storage_failure(exc) from exc

    if json_output:
        console.print_json(json.dumps(summary.to_dict()))
    else:
        _render_reprocess(summary)


@app.command("reaggregate")
def reaggregate_command(
    user_id: str = typer.Argument(None, help="User to re-aggregate (default: owner of the first prompt test)"),
    brands: str = typer.Option(None, "--brands", help="Comma-separated tracked brands, reported first"),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON instead of Rich tables"),
) -> None:
    """Recompute every scope for a user and replace the stored aggregates."""
    tracked = tuple(b.strip() for b in (brands or "").split(",") if b.strip())
    try:
        result = asyncio.run(_run_reaggregate(user_id, tracked))
    except StorageUnavailableError as exc:
        raise _storage_failure(exc) from exc

    if result is None:
        console.print("[yellow]No prompt tests found; nothing to aggregate[/yellow]")
        return

    if json_output:
        console.print_json(json.dumps(result.to_dict(), default=str))
    else:
        _render_reaggregate(result)

    if not result.verification.ok:
        _render_verification(result.verification)
        raise typer.Exit(code=EXIT_VERIFICATION_FAILED)


@app.command("verify")
def verify(
    user_id: str = typer.Argument(None, help="Limit to one user (default: all users)"),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON instead of Rich tables"),
) -> None:
    """Check stored aggregates against their bounds and closure invariants."""
    try:
        report = asyncio.run(_run_verify(user_id))
    except StorageUnavailableError as exc:
        raise _storage_failure(exc) from exc

    if json_output:
        console.print_json(json.dumps(report.to_dict()))
    else:
        _render_verification(report)

    if not report.ok:
        raise typer.Exit(code=EXIT_VERIFICATION_FAILED)


@app.command("classify")
def classify(
    url: str = typer.Argument(..., help="Cited URL"),
    brand: str = typer.Argument(..., help="Brand name the citation belongs to"),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON"),
) -> None:
    """Classify a single URL as brand / social / earned."""
    citation_type = classify_citation(url, brand, ClassificationRules.from_settings(settings))
    if json_output:
        payload = {
            "url": url,
            "brand_name": brand,
            "hostname": extract_hostname(clean_url(url)),
            "type": citation_type.value,
        }
        console.print_json(json.dumps(payload))
    else:
        console.print(citation_type.value)


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
) -> None:
    """Run the metrics HTTP API."""
    uvicorn.run("aivis.main:app", host=host, port=port, reload=reload, log_level=settings.log_level.lower())


if __name__ == "__main__":
    app()
