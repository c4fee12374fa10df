"""CLI entrypoint for the scrape orchestrator."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from .batches.linker import wait_for_batch_completion
from .batches.models import Batch
from .client.models import CorpusLinkRequest, EngineType
from .config import Settings, get_settings
from .errors import OrchestratorError
from .jobs.models import JobListing
from .logging_utils import configure_logging
from .monitoring.metrics import start_metrics_server
from .orchestrator import Orchestrator

app = typer.Typer(help="Scrape orchestrator command line interface")

logger = logging.getLogger(__name__)


def build_orchestrator(settings: Settings) -> Orchestrator:
    return Orchestrator.from_settings(settings)


def _prepare() -> Settings:
    settings = get_settings()
    configure_logging(settings.log_file, settings.log_level)
    if settings.enable_metrics:
        start_metrics_server(settings.metrics_port)
    return settings


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except OrchestratorError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


def _format_batch(batch: Batch) -> str:
    progress = batch.progress
    line = (
        f"{batch.id}  {batch.status.value:<10} {progress.settled}/{progress.total}"
        f" ({progress.percent:.0f}%, {progress.failed} failed)  {batch.name}"
    )
    if batch.corpus_id:
        line += f"  corpus={batch.corpus_id}"
    return line


def _print_listing(listing: JobListing) -> None:
    for label, group in (("Waiting", listing.waiting), ("Active", listing.active), ("Completed", listing.completed)):
        typer.echo(f"{label} ({len(group)})")
        for snapshot in group:
            typer.echo(f"  {snapshot.job_id}  {snapshot.name or ''}".rstrip())


def _print_sitemap(sitemap: Dict[str, Any]) -> None:
    pages = sitemap.get("pages") or []
    typer.echo(f"Domain: {sitemap.get('domain', '-')}")
    typer.echo(f"Pages: {sitemap.get('totalPages', len(pages))}")
    if "totalDepth" in sitemap:
        typer.echo(f"Depth: {sitemap['totalDepth'] + 1}")
    errors = (sitemap.get("statistics") or {}).get("errors")
    if errors:
        typer.echo(f"Errors: {errors}")
    for page in pages:
        if isinstance(page, dict):
            typer.echo(f"  {page.get('url', '')}")


@app.command()
def show_config() -> None:
    """Print the active configuration."""

    settings = get_settings()
    typer.echo(settings.model_dump_json(indent=2))


@app.command()
def dive(
    url: str,
    max_depth: int = typer.Option(3, help="Maximum crawl depth (1-10)"),
    max_pages: int = typer.Option(50, help="Maximum pages to visit (1-1000)"),
    delay: int = typer.Option(1000, help="Delay between requests in milliseconds"),
    engine: EngineType = typer.Option(EngineType.SPIDER, help="Crawl engine"),
    follow_external_links: bool = typer.Option(False, help="Follow links to other domains"),
    respect_robots_txt: bool = typer.Option(True, help="Honour robots.txt"),
    exclude: Optional[List[str]] = typer.Option(None, help="URL patterns to skip"),
    include: Optional[List[str]] = typer.Option(None, help="URL patterns to keep"),
    output: Optional[Path] = typer.Option(None, help="Write the sitemap JSON to this file"),
    markdown: Optional[Path] = typer.Option(None, help="Write the sitemap markdown to this file"),
) -> None:
    """Run a full dive and wait for its sitemap."""

    settings = _prepare()
    config = {
        "url": url,
        "max_depth": max_depth,
        "max_pages": max_pages,
        "delay": delay,
        "engine_type": engine,
        "follow_external_links": follow_external_links,
        "respect_robots_txt": respect_robots_txt,
        "exclude_patterns": exclude or None,
        "include_patterns": include or None,
    }

    async def _dive() -> Any:
        async with build_orchestrator(settings) as orchestrator:
            machine = await orchestrator.submitter.submit_dive(config)
            typer.echo(f"Submitted dive job {machine.job_id}")
            return await orchestrator.tracker.wait(machine.job_id)

    result = _run(_dive())
    sitemap = result.get("sitemap") if isinstance(result, dict) else None
    if not sitemap:
        typer.echo("Dive finished without a sitemap")
        return
    _print_sitemap(sitemap)
    if output:
        output.write_text(json.dumps(sitemap, indent=2), encoding="utf-8")
        typer.echo(f"Sitemap written to {output}")
    if markdown and sitemap.get("markdown"):
        markdown.write_text(sitemap["markdown"], encoding="utf-8")
        typer.echo(f"Markdown written to {markdown}")


@app.command()
def preview(url: str) -> None:
    """Run a preview dive and print its result."""

    settings = _prepare()

    async def _preview() -> Any:
        async with build_orchestrator(settings) as orchestrator:
            machine = await orchestrator.submitter.submit_preview(url)
            typer.echo(f"Submitted preview job {machine.job_id}")
            return await orchestrator.tracker.wait(machine.job_id)

    result = _run(_preview())
    typer.echo(json.dumps(result, indent=2, default=str))


@app.command()
def jobs() -> None:
    """List jobs grouped by state."""

    settings = _prepare()

    async def _jobs() -> JobListing:
        async with build_orchestrator(settings) as orchestrator:
            return await orchestrator.board.refresh()

    _print_listing(_run(_jobs()))


@app.command()
def cancel(job_id: str) -> None:
    """Cancel and delete a job."""

    settings = _prepare()

    async def _cancel() -> None:
        async with build_orchestrator(settings) as orchestrator:
            await orchestrator.tracker.cancel(job_id)

    _run(_cancel())
    typer.echo(f"Cancelled job {job_id}")


@app.command()
def mass_scrape(
    urls: List[str] = typer.Argument(..., help="URLs to scrape"),
    batch_name: Optional[str] = typer.Option(None, help="Batch name"),
    screenshot: bool = typer.Option(False, help="Capture screenshots"),
    create_corpus: bool = typer.Option(False, help="Link the finished batch to a new corpus"),
    corpus_name: Optional[str] = typer.Option(None, help="Corpus name"),
    corpus_description: Optional[str] = typer.Option(None, help="Corpus description"),
    tag: Optional[List[str]] = typer.Option(None, help="Corpus tag (repeatable)"),
    wait: bool = typer.Option(False, help="Wait for the batch to settle (and link it when requested)"),
) -> None:
    """Submit a mass-scrape batch."""

    settings = _prepare()
    tags = list(tag or []) or list(settings.default_tags) or None

    async def _submit() -> None:
        async with build_orchestrator(settings) as orchestrator:
            created = await orchestrator.submitter.submit_mass_scrape(
                urls,
                batch_name=batch_name,
                options={"screenshot": screenshot},
                create_corpus=create_corpus,
                corpus_name=corpus_name,
                corpus_description=corpus_description,
                corpus_tags=tags,
            )
            typer.echo(f"Submitted batch {created.batch_id} with {created.total} URLs")
            if not wait:
                return
            if create_corpus and not created.corpus_id:
                corpus_id = await orchestrator.linker.link_when_settled(created.batch_id)
                typer.echo(f"Batch {created.batch_id} linked to corpus {corpus_id}")
            else:
                batch = await wait_for_batch_completion(
                    orchestrator.client,
                    created.batch_id,
                    interval=settings.batch_wait_interval_seconds,
                    timeout=settings.batch_wait_timeout_seconds,
                )
                typer.echo(_format_batch(batch))

    _run(_submit())


@app.command()
def batches(
    watch: bool = typer.Option(False, help="Keep refreshing until every batch has settled"),
) -> None:
    """List mass-scrape batches."""

    settings = _prepare()

    async def _batches() -> None:
        async with build_orchestrator(settings) as orchestrator:
            coordinator = orchestrator.batches
            await coordinator.refresh()
            for batch in coordinator.visible_batches():
                typer.echo(_format_batch(batch))
            if not watch:
                return
            while not all(batch.is_finished for batch in coordinator.batches):
                await asyncio.sleep(coordinator.interval)
                try:
                    await coordinator.refresh()
                except OrchestratorError as exc:
                    logger.warning("Batch refresh failed: %s", exc)
                    continue
                typer.echo("---")
                for batch in coordinator.visible_batches():
                    typer.echo(_format_batch(batch))

    _run(_batches())


@app.command()
def cancel_batch(batch_id: str) -> None:
    """Cancel the remaining jobs of a batch."""

    settings = _prepare()

    async def _cancel() -> None:
        async with build_orchestrator(settings) as orchestrator:
            await orchestrator.batches.cancel(batch_id)

    _run(_cancel())
    typer.echo(f"Cancelled batch {batch_id}")


@app.command()
def delete_batch(batch_id: str) -> None:
    """Delete a batch."""

    settings = _prepare()

    async def _delete() -> None:
        async with build_orchestrator(settings) as orchestrator:
            await orchestrator.batches.delete(batch_id)

    _run(_delete())
    typer.echo(f"Deleted batch {batch_id}")


@app.command()
def link(
    batch_id: str,
    corpus_name: Optional[str] = typer.Option(None, help="Corpus name"),
    corpus_description: Optional[str] = typer.Option(None, help="Corpus description"),
    tag: Optional[List[str]] = typer.Option(None, help="Corpus tag (repeatable)"),
) -> None:
    """Wait for a batch to settle and link it to a corpus."""

    settings = _prepare()
    request = CorpusLinkRequest(
        corpus_name=corpus_name,
        corpus_description=corpus_description,
        corpus_tags=list(tag or []) or list(settings.default_tags) or None,
    )

    async def _link() -> Optional[str]:
        async with build_orchestrator(settings) as orchestrator:
            return await orchestrator.linker.link_when_settled(batch_id, request)

    corpus_id = _run(_link())
    if corpus_id:
        typer.echo(f"Batch {batch_id} linked to corpus {corpus_id}")
    else:
        typer.echo(f"Batch {batch_id} was already linked")


if __name__ == "__main__":
    app()
