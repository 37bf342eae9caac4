"""CLI interface for unmangle."""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from tqdm import tqdm

from unmangle import __version__
from unmangle.cache import SuggestionCache
from unmangle.config import DEFAULT_MODELS, Config, LLMProvider, api_key_env_var
from unmangle.core.generator import save_output
from unmangle.core.pipeline import RenamePipeline
from unmangle.errors import UnmangleError, is_fatal
from unmangle.events import EventType, ProgressEvent
from unmangle.llm import ProviderRegistry, supported_providers
from unmangle.models import JobResult
from unmangle.plugins import BeautifyPlugin, PluginChain, PluginContext

console = Console()

# Debug logger
debug_logger = None
debug_log_file = None


def setup_debug_logger(log_path: Optional[Path] = None) -> logging.Logger:
    """Setup debug logger for detailed logging.

    The file handler is attached to the ``unmangle`` package logger, so module
    loggers write to the same file as ``debug_log``.
    """
    global debug_logger, debug_log_file

    if log_path is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = Path(f"unmangle_debug_{timestamp}.log")

    debug_log_file = log_path

    logger = logging.getLogger("unmangle")
    logger.setLevel(logging.DEBUG)

    # Clear existing handlers
    logger.handlers = []

    # File handler
    fh = logging.FileHandler(log_path, encoding='utf-8')
    fh.setLevel(logging.DEBUG)

    # Detailed format
    formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    fh.setFormatter(formatter)
    logger.addHandler(fh)

    debug_logger = logger
    return logger


def debug_log(level: str, message: str, data: dict = None):
    """Log debug message with optional structured data."""
    global debug_logger
    if debug_logger is None:
        return

    log_func = getattr(debug_logger, level.lower(), debug_logger.info)

    if data:
        data_str = json.dumps(data, ensure_ascii=False, indent=2, default=str)
        log_func(f"{message}\n{data_str}")
    else:
        log_func(message)


def default_output_path(input_path: Path, config: Config) -> Path:
    if config.output_dir:
        return config.output_dir / input_path.name
    return input_path.with_suffix(".renamed.js")


class ProgressBar:
    """Drives a tqdm bar from pipeline progress events."""

    def __init__(self, total: int = 100):
        self.bar = tqdm(total=total, desc="Renaming", unit="%", bar_format="{l_bar}{bar}| {n:.0f}/{total}%")

    def __call__(self, event: ProgressEvent) -> None:
        debug_log("debug", "Progress event", event.to_dict())
        self.bar.set_description(event.current_step)
        if event.message:
            self.bar.set_postfix_str(event.message)
        delta = event.percentage - self.bar.n
        if delta > 0:
            self.bar.update(delta)
        if event.type in (EventType.COMPLETE, EventType.ERROR):
            self.close()

    def close(self) -> None:
        self.bar.close()


async def format_code(result: JobResult, config: Config, file_path: Optional[Path] = None) -> PluginContext:
    """Run the post-rename plugin chain over a job's renamed code."""
    chain = PluginChain()
    if config.prettier_format:
        chain.add_plugin(BeautifyPlugin(config.format_options()))
    context = PluginContext(source_code=result.code, file_path=file_path, rename_map=dict(result.rename_map))
    return await chain.run(context)


async def rename_file(
    input_path: Path,
    config: Config,
    output_path: Optional[Path] = None,
    show_progress: bool = True,
    registry: Optional[ProviderRegistry] = None,
) -> tuple[JobResult, Path]:
    """Rename identifiers in one JavaScript file and save the result.

    Args:
        input_path: Path to JavaScript file
        config: Configuration
        output_path: Optional output path
        show_progress: Whether to draw a progress bar
        registry: Shared client registry; the caller closes it. Without one
            the job opens and closes its own clients.

    Returns:
        The job result and the path the output was written to
    """
    debug_log("info", "=" * 80)
    debug_log("info", f"Starting processing file: {input_path}")

    source_code = input_path.read_text(encoding="utf-8")
    cache = SuggestionCache(config.cache_dir, config.cache_ttl_seconds) if config.cache_enabled else None
    progress = ProgressBar() if show_progress else None
    pipeline = RenamePipeline(config, registry=registry, cache=cache, on_progress=progress)

    try:
        result = await pipeline.run(source_code)
    finally:
        if progress is not None:
            progress.close()
        if registry is None:
            await pipeline.close()
            debug_log("info", "LLM clients closed")

    formatted = await format_code(result, config, input_path)
    result.code = formatted.source_code
    result.warnings.extend(formatted.warnings)

    output_path = output_path or default_output_path(input_path, config)
    save_output(result.code, output_path)

    debug_log("info", "Processing complete", {
        "rename_map": result.rename_map,
        "warnings": result.warnings,
        "stats": result.stats,
    })
    return result, output_path


def collect_js_files(dir_path: Path) -> list[Path]:
    """JavaScript files under dir_path, skipping dependencies and earlier output."""
    js_files = []
    for js_file in sorted(dir_path.rglob("*.js")):
        # Skip node_modules, minified libraries and files this tool wrote
        if "node_modules" in js_file.relative_to(dir_path).parts:
            continue
        if ".min." in js_file.name or js_file.name.endswith(".renamed.js"):
            continue
        js_files.append(js_file)
    return js_files


@dataclass
class FileReport:
    """Outcome of one file in a directory run."""
    input_path: Path
    output_path: Optional[Path] = None
    result: Optional[JobResult] = None
    error: Optional[UnmangleError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def rename_directory(
    dir_path: Path,
    config: Config,
    output_dir: Optional[Path] = None,
    show_progress: bool = True,
) -> list[FileReport]:
    """Rename every JavaScript file in a directory, one job per file.

    All jobs share one client registry. A file that fails on its own (for
    example with a ParseError) is reported and the run moves on; fatal
    configuration and authentication errors stop the run.

    Args:
        dir_path: Path to directory
        config: Configuration
        output_dir: Where to write output, keeping paths relative to dir_path;
            falls back to config.output_dir, then to a file next to each input
        show_progress: Whether to draw a progress bar per file

    Returns:
        One report per file, in path order
    """
    js_files = collect_js_files(dir_path)
    console.print(f"[blue]Found {len(js_files)} JavaScript files in {dir_path}[/blue]")
    debug_log("info", f"Processing directory: {dir_path}", {
        "js_files_count": len(js_files),
        "js_files": [str(f) for f in js_files[:10]],
    })

    output_dir = output_dir or config.output_dir
    registry = ProviderRegistry()
    reports = []
    try:
        for js_file in js_files:
            rel_path = js_file.relative_to(dir_path)
            out_path = output_dir / rel_path if output_dir else None
            try:
                result, saved_to = await rename_file(js_file, config, out_path, show_progress, registry)
            except UnmangleError as e:
                if is_fatal(e):
                    raise
                debug_log("error", f"Error processing {js_file}", e.to_dict())
                console.print(f"[red]Error processing {js_file}:[/red]")
                console.print(f"[red]{e.describe()}[/red]")
                reports.append(FileReport(js_file, error=e))
                continue
            reports.append(FileReport(js_file, output_path=saved_to, result=result))
    finally:
        await registry.close_all()
        debug_log("info", "LLM clients closed")

    return reports


def print_summary(reports: list[FileReport]) -> None:
    table = Table(title="Processing Summary")
    table.add_column("File")
    table.add_column("Chunks")
    table.add_column("Failed")
    table.add_column("Cached")
    table.add_column("Renamed")
    table.add_column("Tokens")
    table.add_column("Status")

    for report in reports:
        if not report.ok:
            table.add_row(str(report.input_path), "-", "-", "-", "-", "-", "✗")
            continue
        stats = report.result.stats
        table.add_row(
            str(report.input_path),
            str(stats.get("chunks", 0)),
            str(stats.get("failed_chunks", 0)),
            str(stats.get("cached_chunks", 0)),
            str(stats.get("renames", 0)),
            str(stats.get("tokens_used", 0)),
            "✓" if not report.result.warnings else "!",
        )
    console.print(table)

    for report in reports:
        if not report.ok:
            console.print(f"[red]Failed: {report.input_path}: {report.error.message}[/red]")
            continue
        for warning in report.result.warnings:
            console.print(f"[yellow]Warning: {report.input_path.name}: {warning}[/yellow]")
        console.print(f"[green]Saved to: {report.output_path}[/green]")


def build_config(**overrides) -> Config:
    """Create a Config, letting .env values stand for options not given."""
    return Config(**{key: value for key, value in overrides.items() if value is not None})


def fail(error: UnmangleError) -> None:
    debug_log("error", "Job failed", error.to_dict())
    console.print(f"[red]Error: {error.describe()}[/red]")
    raise SystemExit(1)


@click.group()
@click.version_option(version=__version__)
def main():
    """Unmangle - rename obfuscated JavaScript identifiers using LLMs."""
    pass


@main.command()
@click.argument("input_path", type=click.Path(exists=True, path_type=Path))
@click.option("-o", "--output", "output_path", type=click.Path(path_type=Path), help="Output file or directory path")
@click.option("--provider", type=click.Choice(supported_providers()), help="LLM provider")
@click.option("--model", help="LLM model name")
@click.option("--api-key", help="API key (or set UNMANGLE_LLM_API_KEY env)")
@click.option("--base-url", help="Custom API base URL")
@click.option("--concurrency", type=click.IntRange(1, 64), help="Max concurrent chunk requests")
@click.option("--timeout", type=float, help="Job timeout in seconds; unfinished chunks are reported")
@click.option("--chunk-timeout", type=float, help="Time limit per chunk, retries included")
@click.option("--no-cache", is_flag=True, help="Disable the suggestion cache")
@click.option("--no-prettier", is_flag=True, help="Disable prettier formatting")
@click.option("--all-or-nothing", is_flag=True, help="Fail instead of keeping partial results on timeout")
@click.option("--debug", is_flag=True, help="Enable debug logging to file")
@click.option("--debug-file", type=click.Path(path_type=Path), help="Debug log file path (default: unmangle_debug_TIMESTAMP.log)")
def rename(
    input_path: Path,
    output_path: Optional[Path],
    provider: Optional[str],
    model: Optional[str],
    api_key: Optional[str],
    base_url: Optional[str],
    concurrency: Optional[int],
    timeout: Optional[float],
    chunk_timeout: Optional[float],
    no_cache: bool,
    no_prettier: bool,
    all_or_nothing: bool,
    debug: bool,
    debug_file: Optional[Path],
):
    """Rename identifiers in JavaScript using an LLM.

    INPUT_PATH can be a JavaScript file or a directory of JS files; for a
    directory, -o names the output directory and relative paths are kept.

    Suggestions are cached in .unmangle_cache/ so that re-running on the same
    input does not repeat requests. Use --no-cache to always ask the provider.
    """
    if debug:
        setup_debug_logger(debug_file)
        console.print(f"[yellow]Debug logging enabled: {debug_log_file}[/yellow]")

    try:
        config = build_config(
            llm_provider=LLMProvider(provider) if provider else None,
            llm_model=model,
            llm_api_key=api_key,
            llm_base_url=base_url,
            llm_concurrency=concurrency,
            job_timeout_seconds=timeout,
            chunk_timeout_seconds=chunk_timeout,
            cache_enabled=False if no_cache else None,
            prettier_format=False if no_prettier else None,
            all_or_nothing=True if all_or_nothing else None,
        )
    except ValueError as e:
        console.print(f"[red]Error: invalid configuration: {e}[/red]")
        raise SystemExit(1)

    debug_log("info", "Configuration loaded", {
        "llm_provider": config.llm_provider.value,
        "llm_model": config.llm_model,
        "llm_base_url": config.llm_base_url,
        "llm_concurrency": config.llm_concurrency,
        "job_timeout_seconds": config.job_timeout_seconds,
        "chunk_timeout_seconds": config.chunk_timeout_seconds,
        "cache_enabled": config.cache_enabled,
        "prettier_format": config.prettier_format,
        "all_or_nothing": config.all_or_nothing,
    })

    try:
        if input_path.is_dir():
            reports = asyncio.run(rename_directory(input_path, config, output_path))
        else:
            result, saved_to = asyncio.run(rename_file(input_path, config, output_path))
            reports = [FileReport(input_path, output_path=saved_to, result=result)]
    except UnmangleError as e:
        fail(e)

    print_summary(reports)
    if debug:
        console.print(f"\n[yellow]Debug log saved to: {debug_log_file}[/yellow]")
    if not all(report.ok for report in reports):
        raise SystemExit(1)


@main.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--context-tokens", type=int, help="Model context size in tokens")
def chunks(input_path: Path, context_tokens: Optional[int]):
    """Show how a JavaScript file would be split into chunks."""
    config = build_config(context_window_tokens=context_tokens)
    pipeline = RenamePipeline(config)
    source_code = input_path.read_text(encoding="utf-8")
    plan = pipeline.plan_chunks(source_code)
    limits = config.chunk_limits()

    console.print(f"[blue]File:[/blue] {input_path}")
    console.print(f"[blue]Token limits:[/blue] soft {limits.soft}, hard {limits.hard}")

    table = Table(title=f"{len(plan)} chunks")
    table.add_column("#")
    table.add_column("Range")
    table.add_column("Chars")
    table.add_column("Tokens")
    for chunk in plan:
        table.add_row(
            str(chunk.index + 1),
            chunk.describe(),
            str(len(chunk)),
            str(pipeline.count_tokens(chunk.text)),
        )
    console.print(table)


@main.command()
def providers():
    """List supported LLM providers."""
    table = Table(title="Providers")
    table.add_column("Provider")
    table.add_column("Default model")
    table.add_column("API key")
    for name in supported_providers():
        provider = LLMProvider(name)
        table.add_row(name, DEFAULT_MODELS[provider], api_key_env_var(provider) or "not required")
    console.print(table)


if __name__ == "__main__":
    main()
