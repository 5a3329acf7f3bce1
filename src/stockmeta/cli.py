"""
Command-line interface for stockmeta package.

This module provides the main CLI application using Typer, with rich UI
components for progress indication and user feedback. It hosts the batch
engine the way a front-end would: it owns the items, renders notifications
and progress, and writes the CSV export at the end.
"""

import asyncio
import functools
import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.status import Status
from rich.table import Table

from .api import validate_api_key
from .config import CONFIG_FILENAME, Settings, load_config
from .core.batch import BatchOrchestrator
from .core.credentials import CredentialPool, CredentialRotator, InvalidCredentialError
from .core.export import ExportError, write_platform_csv
from .core.generation import MetadataGenerator
from .core.io_utils import load_generation_items
from .core.state import KeyStateError, apply_key_state, load_key_state, save_key_state
from .models import BatchSummary, Credential, GenerationConfig, Platform

# Create the main Typer application
app = typer.Typer(
    name="stockmeta",
    help="Generate microstock metadata for images with rotating Gemini API keys.",
    no_args_is_help=True,
)

# Create console for rich output
console = Console()

logger = logging.getLogger(__name__)

_NOTIFY_STYLES = {
    "success": "green",
    "error": "red",
    "info": "blue",
    "warning": "yellow",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _notify(kind: str, message: str) -> None:
    style = _NOTIFY_STYLES.get(kind, "white")
    console.print(f"[{style}]{escape(message)}[/{style}]")


async def _build_pool(config: Settings) -> CredentialPool:
    """Admit every configured key that passes the probe and restore its health."""
    probe = functools.partial(validate_api_key, base_url=config.defaults.base_url)
    pool = CredentialPool(probe=probe)
    for secret in config.auth.api_keys:
        try:
            await pool.add(secret)
        except InvalidCredentialError as e:
            _notify("warning", f"Skipping API key: {e}")

    try:
        state = await load_key_state(config.defaults.state_file)
    except KeyStateError as e:
        _notify("warning", f"Ignoring key state: {e}")
        return pool

    restored = apply_key_state(pool, state)
    if restored:
        logger.debug(f"Restored health of {restored} API keys")
    return pool


@app.command("generate")
def generate_command(
    images: List[Path] = typer.Argument(..., help="JPG or PNG images to describe"),
    platform: Optional[str] = typer.Option(
        None,
        "--platform",
        "-p",
        help="Target marketplace (AdobeStock, Freepik, Shutterstock)",
    ),
    output_dir: Optional[Path] = typer.Option(
        None, "--output-dir", "-o", help="Directory for the CSV export"
    ),
    model: Optional[str] = typer.Option(
        None, "--model", "-m", help="AI model to use for generation"
    ),
    title_prefix: Optional[str] = typer.Option(
        None, "--title-prefix", help="Text prepended to every title"
    ),
    keyword_suffix: Optional[str] = typer.Option(
        None, "--keyword-suffix", help="Comma-separated keywords added to every result"
    ),
    file_extension: Optional[str] = typer.Option(
        None,
        "--file-extension",
        help="Extension used for filenames in the CSV (default: original)",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose output"
    ),
) -> None:
    """
    Generate metadata for a batch of images and export it as CSV.

    Examples:
        stockmeta generate photos/*.jpg
        stockmeta generate a.png b.jpg --platform Freepik --title-prefix "Stock"
    """
    _configure_logging(verbose)

    async def _async_generate() -> None:
        try:
            with Status("Loading configuration...", console=console):
                config = await load_config()

            target = Platform(platform or config.defaults.platform)
            overrides = {
                name: value
                for name, value in (
                    ("title_prefix", title_prefix),
                    ("keyword_suffix", keyword_suffix),
                    ("file_extension", file_extension),
                )
                if value is not None
            }
            metadata_config = GenerationConfig(
                **{**config.metadata.model_dump(), **overrides}
            )

            items = await load_generation_items(images)

            with Status("Validating API keys...", console=console):
                pool = await _build_pool(config)

            if len(pool) == 0:
                console.print("[red]Error: No valid API key available[/red]")
                sys.exit(1)

            rotator = CredentialRotator(pool)
            generator = MetadataGenerator(
                rotator,
                model=model or config.defaults.model,
                base_url=config.defaults.base_url,
            )

            with Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                console=console,
            ) as progress:
                task = progress.add_task(f"{target.value}", total=len(items))
                orchestrator = BatchOrchestrator(
                    generator,
                    rotator,
                    on_progress=lambda done, total: progress.update(
                        task, completed=done, total=total
                    ),
                    notify=_notify,
                )
                summary = await orchestrator.run(items, target, metadata_config)

            await save_key_state(pool, config.defaults.state_file)

            _display_summary(summary, pool, verbose)

            if summary.succeeded == 0:
                sys.exit(1)

            csv_path = await write_platform_csv(
                items,
                target,
                output_dir or config.defaults.output_path,
                metadata_config.file_extension,
            )
            console.print(f"[blue]Saved to:[/blue] {csv_path}")

        except (ExportError, KeyStateError, ValueError, FileNotFoundError) as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            sys.exit(1)
        except Exception as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            if verbose:
                console.print_exception()
            sys.exit(1)

    asyncio.run(_async_generate())


def _display_summary(
    summary: BatchSummary, pool: CredentialPool, verbose: bool = False
) -> None:
    """Display the outcome of a batch run."""
    table = Table(title="Generation Summary", show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Status", summary.state.value)
    table.add_row("Succeeded", f"{summary.succeeded}/{summary.total}")
    table.add_row("Failed", str(summary.failed))
    table.add_row("Success Rate", f"{summary.success_rate:.1f}%")
    if summary.forced_rotations:
        table.add_row("Forced Rotations", str(summary.forced_rotations))

    console.print(table)

    if verbose:
        _display_keys(pool.credentials)


def _display_keys(credentials: "tuple[Credential, ...]") -> None:
    table = Table(title="API Keys")
    table.add_column("Key", style="cyan")
    table.add_column("Active")
    table.add_column("Valid")
    table.add_column("Failures", justify="right")

    for credential in credentials:
        table.add_row(
            credential.masked_display,
            "yes" if credential.is_active else "",
            "yes" if credential.is_valid else "no",
            str(credential.failure_count),
        )
    console.print(table)


@app.command("keys")
def keys_command(
    reset: bool = typer.Option(
        False, "--reset", help="Clear the recorded failure counts of every API key"
    ),
) -> None:
    """Probe every configured API key and show which ones are usable."""

    async def _async_keys() -> None:
        try:
            config = await load_config()
        except Exception as e:
            console.print(
                f"[red]Error loading configuration: {escape(str(e))}[/red]"
            )
            sys.exit(1)

        with Status("Validating API keys...", console=console):
            pool = await _build_pool(config)

        if reset:
            pool.reset_all_failures()
            try:
                state_path = await save_key_state(pool, config.defaults.state_file)
            except KeyStateError as e:
                console.print(f"[red]Error: {escape(str(e))}[/red]")
                sys.exit(1)
            console.print(
                f"[green]Reset failure counts for {len(pool)} API keys[/green] "
                f"({state_path})"
            )

        table = Table(title="Configured API Keys")
        table.add_column("Key", style="cyan")
        table.add_column("Status")
        table.add_column("Failures", justify="right")

        admitted = {c.secret: c for c in pool}
        for secret in config.auth.api_keys:
            credential = admitted.get(secret)
            if credential is None:
                table.add_row(Credential.mask(secret), "[red]invalid[/red]", "-")
            elif credential.is_valid:
                table.add_row(
                    credential.masked_display,
                    "[green]valid[/green]",
                    str(credential.failure_count),
                )
            else:
                table.add_row(
                    credential.masked_display,
                    "[yellow]exhausted[/yellow]",
                    str(credential.failure_count),
                )

        console.print(table)
        console.print(f"{len(pool)} of {len(config.auth.api_keys)} keys are valid")
        if len(pool) == 0:
            sys.exit(1)

    asyncio.run(_async_keys())


@app.command("version")
def version_command() -> None:
    """Display version information."""
    from . import __version__

    console.print(f"stockmeta version {__version__}")


@app.command("config")
def config_command(
    show_path: bool = typer.Option(
        False, "--show-path", help="Show the configuration file path"
    ),
) -> None:
    """Display current configuration."""

    async def _async_config() -> None:
        try:
            config = await load_config()

            if show_path:
                config_paths = [
                    Path.cwd() / CONFIG_FILENAME,
                    Path.home() / f".{CONFIG_FILENAME}",
                ]

                config_file = None
                for path in config_paths:
                    if path.exists():
                        config_file = path
                        break

                if config_file:
                    console.print(f"Configuration file: {config_file}")
                else:
                    console.print("Configuration from environment variables")
                console.print()

            # Display configuration (without sensitive data)
            table = Table(title="Current Configuration")
            table.add_column("Setting", style="cyan")
            table.add_column("Value", style="white")

            table.add_row("Model", config.defaults.model)
            table.add_row("Platform", config.defaults.platform.value)
            table.add_row("Output Path", str(config.defaults.output_path))
            table.add_row(
                "API Keys",
                ", ".join(Credential.mask(k) for k in config.auth.api_keys),
            )
            metadata = config.metadata
            table.add_row(
                "Title Words",
                f"{metadata.min_title_words}-{metadata.max_title_words}",
            )
            table.add_row(
                "Keywords", f"{metadata.min_keywords}-{metadata.max_keywords}"
            )
            table.add_row(
                "Description Words",
                f"{metadata.min_description_words}-{metadata.max_description_words}",
            )

            console.print(table)

        except Exception as e:
            console.print(
                f"[red]Error loading configuration: {escape(str(e))}[/red]"
            )
            sys.exit(1)

    asyncio.run(_async_config())


def main() -> None:
    """Main entry point for the CLI application."""
    app()


if __name__ == "__main__":
    main()
