"""
CLI Interface
=============
Command-line interface for the question content renderer.

Usage:
    python -m renderer render <json_path> [options]
    python -m renderer batch <directory> [options]
    python -m renderer transcript <json_path> [--json]
    python -m renderer info <json_path>
    python -m renderer serve [--host --port --debug]
"""

from __future__ import annotations

import json
import os
import sys
from collections import Counter
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from . import __version__
from .engine import RenderEngine, RendererConfig
from .models import BlockType, block_type_of

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="question-renderer")
def cli():
    """Question Content Renderer: visual and spoken renditions of quiz questions."""
    pass


@cli.command()
@click.argument("json_path", type=click.Path(exists=True))
@click.option(
    "--output", "-o",
    default="output",
    help="Output directory for rendered files",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option(
    "--log-file",
    default=None,
    help="Path to log file",
)
@click.option(
    "--no-html",
    is_flag=True,
    default=False,
    help="Skip saving the .html rendition",
)
@click.option(
    "--no-transcript",
    is_flag=True,
    default=False,
    help="Skip saving the .txt transcript",
)
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only JSON results to stdout (for programmatic use)",
)
def render(
    json_path: str,
    output: str,
    log_level: str,
    log_file: str,
    no_html: bool,
    no_transcript: bool,
    json_output: bool,
):
    """Render a question document to HTML and a transcript."""

    if json_output:
        log_level = "ERROR"

    config = RendererConfig.from_env(
        output_dir=output,
        log_level=log_level,
        log_file=log_file,
        save_html=not no_html,
        save_transcript=not no_transcript,
    )

    if not json_output:
        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]Question Renderer v{__version__}[/]\n"
                f"[dim]Rendering: {os.path.basename(json_path)}[/]",
                border_style="cyan",
            )
        )
        console.print()

    try:
        engine = RenderEngine(config)

        if json_output:
            results = engine.render_file(json_path, save=False)
            print(json.dumps(
                [r.model_dump() for r in results],
                indent=2,
                ensure_ascii=False,
                default=str,
            ))
            return

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Rendering...", total=1)
            results = engine.render_file(json_path)
            progress.update(task, completed=1)

        _display_results(results)

    except FileNotFoundError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/] {e}")
        if log_level == "DEBUG":
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--output", "-o", default="output", help="Output directory")
@click.option("--log-level", default="WARNING", help="Logging level")
def batch(directory: str, output: str, log_level: str):
    """Render every .json question document in a directory."""

    json_files = sorted(Path(directory).glob("*.json"))
    if not json_files:
        console.print(f"[yellow]No JSON files found in: {directory}[/]")
        return

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Batch Question Renderer[/]\n"
            f"[dim]Found {len(json_files)} documents in: {directory}[/]",
            border_style="cyan",
        )
    )
    console.print()

    engine = RenderEngine(RendererConfig.from_env(output_dir=output, log_level=log_level))
    rendered = []
    errors = []

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Rendering...", total=len(json_files))
        for json_file in json_files:
            progress.update(task, description=f"Rendering: {json_file.name}")
            try:
                rendered.extend(engine.render_file(str(json_file)))
            except (FileNotFoundError, ValueError) as e:
                errors.append((json_file.name, str(e)))
            progress.advance(task)

    _display_results(rendered)

    if errors:
        table = Table(title="Errors", border_style="red")
        table.add_column("File", style="bold")
        table.add_column("Error")
        for name, error in errors:
            table.add_row(name, error)
        console.print(table)
        console.print()


@cli.command()
@click.argument("json_path", type=click.Path(exists=True))
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit JSON")
def transcript(json_path: str, as_json: bool):
    """Print the read-aloud transcript of a question document."""

    try:
        engine = RenderEngine(RendererConfig.from_env(log_level="ERROR"))
        documents = engine.load_file(json_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    if as_json:
        print(json.dumps(
            [{"id": doc.id, "transcript": engine.transcript(doc)} for doc in documents],
            indent=2,
            ensure_ascii=False,
        ))
        return

    for doc in documents:
        if len(documents) > 1:
            console.print(f"[bold cyan]{doc.id}[/]")
        console.print(engine.transcript(doc), markup=False, highlight=False)


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
def serve(host: str, port: int, debug: bool):
    """Start the HTTP rendering service."""
    from .server import run_server

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Question Renderer Service[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug)


@cli.command()
@click.argument("json_path", type=click.Path(exists=True))
def info(json_path: str):
    """Display a breakdown of the blocks in a question document."""

    try:
        engine = RenderEngine(RendererConfig.from_env(log_level="ERROR"))
        documents = engine.load_file(json_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    counts: Counter = Counter()
    images = 0
    options = 0
    for doc in documents:
        for block in doc.content:
            counts[block_type_of(block)] += 1
        images += len(doc.image_refs)
        options += len(doc.options or [])

    console.print()
    table = Table(title="Document Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("File", os.path.basename(json_path))
    table.add_row("Questions", str(len(documents)))
    table.add_row("Blocks", str(sum(counts.values())))
    for block_type in BlockType:
        if counts[block_type]:
            table.add_row(f"  {block_type.value}", str(counts[block_type]))
    table.add_row("Stored Images", str(images))
    table.add_row("Options", str(options))
    table.add_row(
        "Audio",
        str(sum(1 for doc in documents if doc.audio_path)),
    )

    console.print(table)
    console.print()


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_results(results):
    """Display render results in a formatted table."""
    console.print()

    table = Table(title="Render Results", border_style="green")
    table.add_column("Question", style="bold")
    table.add_column("Blocks", justify="right")
    table.add_column("Options", justify="right")
    table.add_column("Images Unavailable", justify="right")
    table.add_column("Transcript")

    for result in results:
        unavailable = len(result.unavailable_images)
        preview = result.transcript
        if len(preview) > 60:
            preview = preview[:57] + "..."
        table.add_row(
            result.document_id or "(unnamed)",
            str(result.block_count),
            str(result.option_count),
            f"[red]{unavailable}[/]" if unavailable else "[green]0[/]",
            preview,
        )

    console.print(table)
    console.print()


if __name__ == "__main__":
    cli()
