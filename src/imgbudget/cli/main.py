"""Command-line interface for imgbudget."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click
import httpx
from click import Context
from loguru import logger
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from imgbudget.cli.console import get_console, get_stderr_console
from imgbudget.cli.logging_config import print_version, setup_logging
from imgbudget.config import ConfigManager, ImgBudgetConfig
from imgbudget.constants import OPTIMIZED_MARKER
from imgbudget.errors import ImgBudgetError
from imgbudget.image import decode_image, describe_result
from imgbudget.loader import ImageLoader
from imgbudget.manifest import ManifestHost
from imgbudget.session import OptimizerSession, build_search, sort_descriptors
from imgbudget.types import AssetDescriptor, AssetState, Provenance
from imgbudget.utils.executor import run_in_image_thread, shutdown_image_executor
from imgbudget.utils.format import format_file_size, parse_byte_size, sanitize_filename

console = get_console()
stderr_console = get_stderr_console()


class ByteSizeParamType(click.ParamType):
    """Click parameter accepting ``500000`` or ``500KB`` style sizes."""

    name = "size"

    def convert(self, value: Any, param: Any, ctx: Context | None) -> int:
        if isinstance(value, int):
            return value
        try:
            size = parse_byte_size(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)
        if size <= 0:
            self.fail("size must be positive", param, ctx)
        return size


BYTE_SIZE = ByteSizeParamType()


def _run(coro_factory: Callable[[], Any]) -> Any:
    """Run a coroutine to completion and release the image thread pool."""
    try:
        return asyncio.run(coro_factory())
    finally:
        shutdown_image_executor()


def _get_config(ctx: Context) -> ImgBudgetConfig:
    return ctx.obj["config"]


def _resolve_budget(ctx: Context, budget: int | None) -> int:
    return budget if budget is not None else _get_config(ctx).compression.budget


def _default_output(source: str, extension: str) -> Path:
    stem = Path(source.split("?", 1)[0]).stem if not source.startswith("data:") else ""
    return Path(sanitize_filename(f"{OPTIMIZED_MARKER}{stem or 'image'}.{extension}"))


def _status_text(descriptor: AssetDescriptor, budget: int) -> str:
    state = descriptor.state
    if state is AssetState.APPLIED:
        return "[green]applied[/green]"
    if state is AssetState.OPTIMIZED_PENDING:
        artifact = descriptor.optimized_artifact
        assert artifact is not None
        style = "green" if artifact.byte_size <= budget else "yellow"
        return f"[{style}]optimized {format_file_size(artifact.byte_size)}[/{style}]"
    if descriptor.already_optimized:
        return "[dim]already optimized[/dim]"
    if descriptor.exceeds(budget):
        return "[red]over budget[/red]"
    return "[green]ok[/green]"


def _descriptor_table(
    descriptors: list[AssetDescriptor], budget: int, title: str
) -> Table:
    table = Table(title=title, show_header=True)
    table.add_column("Image", style="cyan")
    table.add_column("Source")
    table.add_column("Size", justify="right")
    table.add_column("Status")
    for descriptor in sort_descriptors(descriptors, by="size"):
        table.add_row(
            descriptor.display_label,
            "canvas" if descriptor.is_canvas else "CMS",
            format_file_size(descriptor.original_byte_size),
            _status_text(descriptor, budget),
        )
    return table


async def _scan_with_progress(session: OptimizerSession) -> list[AssetDescriptor]:
    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=stderr_console,
        transient=True,
    ) as progress:
        task = progress.add_task("Scanning", total=100)

        def on_progress(value: int) -> None:
            if value:
                progress.update(task, completed=value)

        session.progress.subscribe(on_progress)
        return await session.run_scan()


# =============================================================================
# Main CLI app
# =============================================================================


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to configuration file.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option(
    "--version",
    "-V",
    is_flag=True,
    callback=print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
@click.pass_context
def app(ctx: Context, config_path: Path | None, verbose: bool) -> None:
    """Find oversized images and shrink them to a byte budget."""
    manager = ConfigManager()
    try:
        cfg = manager.load(config_path)
    except ImgBudgetError as e:
        stderr_console.print(f"[red]{e}[/red]")
        ctx.exit(1)

    setup_logging(
        verbose,
        log_dir=cfg.log.dir,
        log_level=cfg.log.level,
        rotation=cfg.log.rotation,
        retention=cfg.log.retention,
    )
    if manager.config_path:
        logger.debug(f"Loaded config from {manager.config_path}")
    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg


@app.command()
@click.argument("source")
@click.option("--budget", "-b", type=BYTE_SIZE, default=None, help="Byte budget.")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output file (default: optimized_<name>.<format>).",
)
@click.pass_context
def compress(ctx: Context, source: str, budget: int | None, output: Path | None) -> None:
    """Compress one image (path, URL or data URI) to fit a byte budget."""
    cfg = _get_config(ctx)
    limit = _resolve_budget(ctx, budget)
    target = output or _default_output(source, cfg.compression.format)
    search = build_search(cfg.compression)

    async def run() -> None:
        async with ImageLoader(
            timeout=cfg.network.timeout, user_agent=cfg.network.user_agent
        ) as loader:
            data = await loader.load(source)
        image = await run_in_image_thread(decode_image, data)
        result = await run_in_image_thread(search.compress, image, limit)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(result.data)
        style = "green" if result.within_budget else "yellow"
        console.print(
            f"[{style}]✓[/{style}] {target}: "
            f"{describe_result(result, len(data), image.size)}"
        )
        if result.used_emergency and not result.within_budget:
            console.print(
                f"[yellow]Could not reach {format_file_size(limit)}; "
                f"wrote best effort result[/yellow]"
            )

    try:
        _run(run)
    except httpx.HTTPError as e:
        stderr_console.print(f"[red]Error fetching {source}:[/red] {e}")
        ctx.exit(1)
    except (ImgBudgetError, OSError, ValueError) as e:
        stderr_console.print(f"[red]Error:[/red] {e}")
        ctx.exit(1)


@app.command()
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--budget", "-b", type=BYTE_SIZE, default=None, help="Byte budget.")
@click.pass_context
def scan(ctx: Context, manifest: Path, budget: int | None) -> None:
    """Scan a JSON manifest and list its images."""
    cfg = _get_config(ctx)
    limit = _resolve_budget(ctx, budget)

    async def run() -> list[AssetDescriptor]:
        host = ManifestHost.load(manifest)
        async with OptimizerSession(host, host, config=cfg) as session:
            return await _scan_with_progress(session)

    try:
        descriptors = _run(run)
    except ImgBudgetError as e:
        stderr_console.print(f"[red]{e}[/red]")
        ctx.exit(1)

    if not descriptors:
        console.print("[dim]No images found.[/dim]")
        return
    console.print(
        _descriptor_table(descriptors, limit, f"Images (budget {format_file_size(limit)})")
    )
    over = sum(
        1 for d in descriptors if d.exceeds(limit) and not d.already_optimized
    )
    console.print(f"{over} of {len(descriptors)} image(s) over budget")


@app.command()
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--budget", "-b", type=BYTE_SIZE, default=None, help="Byte budget.")
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("./optimized"),
    help="Directory for optimized images.",
)
@click.option(
    "--apply",
    "apply_changes",
    is_flag=True,
    help="Apply canvas optimizations and rewrite the manifest.",
)
@click.pass_context
def optimize(
    ctx: Context,
    manifest: Path,
    budget: int | None,
    output_dir: Path,
    apply_changes: bool,
) -> None:
    """Scan a manifest and optimize every image over budget."""
    cfg = _get_config(ctx)
    limit = _resolve_budget(ctx, budget)

    async def run() -> tuple[list[AssetDescriptor], int, list[Path]]:
        host = ManifestHost.load(manifest, upload_dir=output_dir)
        async with OptimizerSession(host, host, config=cfg) as session:
            descriptors = await _scan_with_progress(session)
            await session.optimize_all(limit)

            saved: list[Path] = []
            for descriptor in descriptors:
                if (
                    descriptor.provenance is Provenance.CONTENT
                    and descriptor.optimized_artifact is not None
                ):
                    saved.append(session.save_artifact(descriptor, output_dir))

            applied = 0
            if apply_changes:
                applied = await session.apply_all()
                if applied:
                    host.save()
            return descriptors, applied, saved

    try:
        descriptors, applied, saved = _run(run)
    except ImgBudgetError as e:
        stderr_console.print(f"[red]{e}[/red]")
        ctx.exit(1)

    if not descriptors:
        console.print("[dim]No images found.[/dim]")
        return
    console.print(_descriptor_table(descriptors, limit, "Optimization results"))
    for path in saved:
        console.print(f"[green]Saved[/green] {path}")
    if apply_changes:
        suffix = f"; manifest updated: {manifest}" if applied else ""
        console.print(f"Applied {applied} canvas image(s){suffix}")
