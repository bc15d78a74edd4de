#!/usr/bin/env python3
"""
Main CLI for NestNotes - journal client.

Usage:
    nest upload photo.jpg       - Upload media to the journal
    nest search "query"         - Semantic search over entries
    nest ask "question"         - Ask a question about your journal
    nest history                - Show recent searches
    nest voice memo.wav         - Transcribe and store a voice note
    nest config init            - Write a default config file
"""

import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence, Tuple

import aiofiles
import click
from loguru import logger
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from ..journal.api import JournalAPI
from ..journal.bus import Event, EventBus
from ..journal.config import Config
from ..journal.errors import JournalError
from ..journal.filters import DateRange, FeedFilter, PrivacyFilter, TagFilter
from ..journal.history import JsonFileStore, SearchHistory
from ..journal.logs import configure_logging
from ..journal.media import classify, describe
from ..journal.models import Privacy, SearchOutcome, SearchStatus, UploadBatchResult, UploadFile, UploadStatus
from ..journal.search import SearchOrchestrator
from ..journal.uploader import UploadOrchestrator
from ..journal.voice import VoiceNoteService

console = Console()

HISTORY_FILE = "history.json"


def build_api(config: Config) -> JournalAPI:
    return JournalAPI(config.api)


def open_history(config: Config) -> SearchHistory:
    store = JsonFileStore(config.data_dir / HISTORY_FILE)
    return SearchHistory(store, max_items=config.search.history_size)


@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx, config_path: Optional[Path], verbose: bool):
    """NestNotes - journal client CLI."""
    try:
        config = Config.load(config_path) if config_path else Config.load_or_default()
    except FileNotFoundError:
        raise click.BadParameter(f"{config_path} does not exist", param_hint="--config")
    except ValueError as e:
        raise click.ClickException(f"Invalid config: {e}")

    configure_logging(config.logging, "DEBUG" if verbose else None)
    ctx.obj = config


@cli.command()
@click.argument("files", nargs=-1, required=True,
                type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--max-files", type=int, help="Maximum number of files in this batch")
@click.option("--max-size", type=int, help="Maximum file size in MB")
@click.option("--accept", multiple=True, help="Accepted MIME pattern, e.g. image/* (repeatable)")
@click.pass_obj
def upload(config: Config, files: Tuple[Path, ...], max_files: Optional[int],
           max_size: Optional[int], accept: Tuple[str, ...]):
    """Upload photos or videos to the journal."""
    result = asyncio.run(upload_files(
        config,
        files,
        max_files=max_files,
        max_file_size=max_size * 1024 * 1024 if max_size else None,
        accepted_types=list(accept) or None,
    ))
    if not result.all_succeeded:
        sys.exit(1)


async def upload_files(
    config: Config,
    paths: Sequence[Path],
    max_files: Optional[int] = None,
    max_file_size: Optional[int] = None,
    accepted_types: Optional[Sequence[str]] = None,
) -> UploadBatchResult:
    """Run one upload batch with a progress bar per file."""
    files = [UploadFile.from_path(p) for p in paths]
    bus = EventBus()

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        bars = {}
        names = {}

        def on_started(event: Event):
            names[event.data["index"]] = event.data["name"]
            bars[event.data["index"]] = progress.add_task(event.data["name"], total=100)

        def on_progress(event: Event):
            bar = bars.get(event.data["index"])
            if bar is not None:
                progress.update(bar, completed=event.data["progress"])

        def on_failed(event: Event):
            bar = bars.get(event.data["index"])
            if bar is not None:
                progress.update(bar, description=f"[red]{names[event.data['index']]}[/red]")

        bus.subscribe("upload.started", on_started)
        bus.subscribe("upload.progress", on_progress)
        bus.subscribe("upload.failed", on_failed)

        async with build_api(config) as api:
            uploader = UploadOrchestrator(api, config.upload, bus)
            result = await uploader.upload(files, max_files, max_file_size, accepted_types)

    display_upload_result(result)
    return result


def display_upload_result(result: UploadBatchResult):
    for rejection in result.rejected:
        console.print(f"[red]✗[/red] {rejection.message}")

    if not result.tasks:
        console.print("[yellow]Nothing uploaded[/yellow]")
        return

    table = Table(title="Upload Results")
    table.add_column("File", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Status")
    table.add_column("Path", no_wrap=False)

    for task in result.tasks:
        if task.status is UploadStatus.ERROR:
            status = f"[red]failed ({task.stage.value})[/red]"
        elif not task.finalized:
            status = "[yellow]stored, not finalized[/yellow]"
        else:
            status = "[green]uploaded[/green]"
        kind = describe(classify(task.mime_type, task.path))
        table.add_row(task.file.name, kind, status, task.path or task.error or "")

    console.print(table)


@cli.command()
@click.argument("query")
@click.option("--mode", "-m", type=click.Choice(["hybrid", "vector", "conversational"]),
              help="Search mode")
@click.option("--limit", "-l", type=click.IntRange(1, 50), help="Max results")
@click.option("--tag", "-t", "tags", multiple=True, help="Only entries with this tag")
@click.option("--person", "-p", "people", multiple=True, help="Only entries tagging this person")
@click.option("--from", "date_from", type=click.DateTime(formats=["%Y-%m-%d"]), help="Start date")
@click.option("--to", "date_to", type=click.DateTime(formats=["%Y-%m-%d"]), help="End date")
@click.option("--privacy", multiple=True, type=click.Choice([p.value for p in Privacy]),
              help="Only entries with this privacy level")
@click.pass_obj
def search(config: Config, query: str, mode: Optional[str], limit: Optional[int],
           tags: Tuple[str, ...], people: Tuple[str, ...], date_from: Optional[datetime],
           date_to: Optional[datetime], privacy: Tuple[str, ...]):
    """Search journal entries."""
    try:
        search_filter = build_filter(tags, people, date_from, date_to, privacy)
    except ValueError as e:
        raise click.BadParameter(str(e))

    if mode:
        config.search.mode = mode
    if limit:
        config.search.limit = limit

    outcome = asyncio.run(run_search(config, query, search_filter))
    display_search_outcome(outcome)
    if outcome.status is SearchStatus.FAILED:
        sys.exit(1)


def build_filter(tags, people, date_from, date_to, privacy):
    """Map search options onto a single filter, refusing combinations no filter kind carries."""
    if privacy and (tags or people or date_from or date_to):
        raise click.BadParameter("cannot be combined with --tag, --person, --from or --to",
                                 param_hint="--privacy")
    if tags and people:
        raise click.BadParameter("cannot be combined with --person", param_hint="--tag")

    date_range = None
    if date_from or date_to:
        date_range = DateRange(
            start=date_from.date() if date_from else None,
            end=date_to.date() if date_to else None,
        )
    if privacy:
        return PrivacyFilter(levels=tuple(Privacy(p) for p in privacy))
    if tags:
        return TagFilter(tags=tags, date_range=date_range)
    return FeedFilter(people=people, date_range=date_range)


async def run_search(config: Config, query: str, search_filter=None, ask: bool = False) -> SearchOutcome:
    async with build_api(config) as api:
        orchestrator = SearchOrchestrator(api, config.search, history=open_history(config))
        if search_filter is not None:
            orchestrator.filter = search_filter
        with console.status("Searching..."):
            if ask:
                return await orchestrator.ask(query)
            return await orchestrator.submit(query)


def display_search_outcome(outcome: SearchOutcome):
    """Display search results in a nice table."""
    if outcome.status is SearchStatus.FAILED:
        console.print(f"[red]Search failed:[/red] {outcome.error}")
        if outcome.results:
            console.print(f"[dim]{len(outcome.results)} matches could not be loaded[/dim]")
        return

    if outcome.status is SearchStatus.EMPTY:
        console.print("[yellow]No results found[/yellow]")
        return

    scores = {r.entry_id: r for r in outcome.results}
    table = Table(title=f"Search Results ({outcome.execution_ms or 0:.1f}ms)")
    table.add_column("Title", style="cyan", no_wrap=False)
    table.add_column("Date", style="magenta")
    table.add_column("Score", justify="right")
    table.add_column("Snippet", no_wrap=False)

    for entry in outcome.entries:
        hit = scores.get(entry.id)
        table.add_row(
            entry.display_title,
            entry.created_at.strftime("%Y-%m-%d") if entry.created_at else "",
            f"{hit.similarity:.2f}" if hit else "",
            (hit.snippet if hit and hit.snippet else entry.content)[:100],
        )

    console.print(table)


@cli.command()
@click.argument("question")
@click.pass_obj
def ask(config: Config, question: str):
    """Ask a question and get an answer grounded in your entries."""
    outcome = asyncio.run(run_search(config, question, ask=True))

    if outcome.status is SearchStatus.FAILED:
        console.print(f"[red]Search failed:[/red] {outcome.error}")
        sys.exit(1)

    if not outcome.answer:
        console.print("[yellow]No answer found[/yellow]")
        return

    console.print(f"\n{outcome.answer}\n")
    if outcome.confidence is not None:
        console.print(f"[dim]Confidence: {outcome.confidence:.0%}[/dim]")

    if outcome.citations:
        console.print("\n[bold]Based on:[/bold]")
        for i, citation in enumerate(outcome.citations, 1):
            title = citation.entry.display_title if citation.entry else citation.entry_id
            console.print(f"  {i}. {title} [dim]({citation.similarity:.2f})[/dim]")


@cli.command()
@click.option("--clear", is_flag=True, help="Forget all recent searches")
@click.pass_obj
def history(config: Config, clear: bool):
    """Show recent searches."""
    recent = open_history(config)
    if clear:
        recent.clear()
        console.print("[green]Search history cleared[/green]")
        return

    items = recent.items()
    if not items:
        console.print("[dim]No recent searches[/dim]")
        return

    console.print("[bold]Recent searches:[/bold]")
    for i, query in enumerate(items, 1):
        console.print(f"  {i}. {query}")


@cli.command()
@click.argument("audio_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def voice(config: Config, audio_file: Path):
    """Transcribe a recording and store the audio privately."""
    result = asyncio.run(process_voice(config, audio_file))

    if result.transcribed:
        console.print(f"[green]✓[/green] {result.transcript}")
    else:
        console.print(f"[yellow]{result.transcript}[/yellow]")

    if result.audio_stored:
        console.print(f"[dim]Audio stored at {result.audio_path}[/dim]")
    else:
        console.print("[red]Audio could not be stored[/red]")

    if not (result.transcribed and result.audio_stored):
        sys.exit(1)


async def process_voice(config: Config, audio_file: Path):
    async with aiofiles.open(audio_file, 'rb') as f:
        audio = await f.read()
    upload = UploadFile.from_bytes(audio, audio_file.name)
    async with build_api(config) as api:
        service = VoiceNoteService(api, chunk_size=config.upload.chunk_size)
        with console.status("Transcribing..."):
            return await service.process(audio, audio_file.name, upload.mime_type)


@cli.group(name="config")
def config_group():
    """Manage configuration."""
    pass


@config_group.command()
@click.argument("path", required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init(path: Optional[Path], force: bool):
    """Write a default config file."""
    path = path or Config.default_locations()[1]
    if path.exists() and not force:
        console.print(f"[red]{path} already exists[/red] (use --force to overwrite)")
        sys.exit(1)

    Config().save(path)
    console.print(f"[green]✓[/green] Wrote default config to {path}")


def main():
    """Entry point for the CLI."""
    try:
        cli()
    except JournalError as e:
        console.print(f"[red]Error:[/red] {e}")
        logger.opt(exception=e).debug("Command failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
