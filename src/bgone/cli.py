"""Command-line interface for bgone."""

import logging
import re
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import click
import rich.traceback
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .core.pipeline import BackgroundRemover, RemovalResult
from .image.background import border_coverage, estimate_background
from .image.processor import ImageProcessor, default_output_path
from .utils.config import ConfigManager, UnmixConfig
from .utils.errors import BgoneError, ConfigurationError
from .utils.logging import get_logger, log_system_info, setup_logging

# Rich console setup
console = Console()
rich.traceback.install(console=console)

logger = get_logger(__name__)

PROFILES = ["fast", "balanced", "precise"]


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--quiet", "-q", is_flag=True, help="Suppress output")
@click.option(
    "--config", type=click.Path(exists=True), help="Path to configuration file"
)
@click.option("--log-file", type=click.Path(), help="Also write debug logs to a file")
@click.pass_context
def cli(ctx, verbose: bool, quiet: bool, config, log_file):
    """bgone: remove solid backgrounds by unmixing colors."""
    ctx.ensure_object(dict)

    # Setup logging
    log_level = logging.INFO
    if quiet:
        log_level = logging.ERROR
    elif verbose:
        log_level = logging.DEBUG
    setup_logging(level=log_level, log_file=log_file)
    if verbose:
        log_system_info()

    # Load configuration (environment variables override the file)
    try:
        ctx.obj["config_manager"] = ConfigManager.from_env(config)
    except BgoneError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet


def _split_literals(values: Sequence[str]) -> List[str]:
    """Split ``--fg`` values on commas and whitespace."""
    return [token for value in values for token in re.split(r"[,\s]+", value.strip()) if token]


def _build_unmix_config(
    ctx,
    foregrounds: Sequence[str] = (),
    background: Optional[str] = None,
    strict: bool = False,
    threshold: Optional[float] = None,
    jobs: Optional[int] = None,
    border_width: Optional[int] = None,
    profile: Optional[str] = None,
) -> UnmixConfig:
    """Merge command-line flags over the loaded configuration."""
    config_manager: ConfigManager = ctx.obj["config_manager"]
    if profile:
        config_manager.apply_profile(profile)

    is_valid, errors = config_manager.validate_config()
    if not is_valid:
        raise ConfigurationError("; ".join(errors))

    return config_manager.get_unmix_config(
        foregrounds=_split_literals(foregrounds) or None,
        background=background,
        strict=strict or None,
        threshold=threshold,
        n_jobs=jobs,
        border_width=border_width,
    )


def _result_table(result: RemovalResult, config: UnmixConfig, output_path: Path) -> Table:
    table = Table(title="Background removal", show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    detected = " (detected)" if config.background is None else ""
    table.add_row("Output", str(output_path))
    table.add_row("Background", f"{result.background}{detected}")
    table.add_row("Mode", "strict" if config.strict else "non-strict")
    if result.foregrounds:
        table.add_row("Foregrounds", " ".join(str(c) for c in result.foregrounds))
    if result.deduced:
        table.add_row("Deduced", " ".join(str(c) for c in result.deduced))

    stats = result.stats
    table.add_row("Mean alpha", f"{stats['mean_alpha']:.3f}")
    table.add_row("Mean residual", f"{stats['mean_residual']:.5f}")
    table.add_row(
        "Inexact pixels",
        f"{stats['inexact_pixels']} ({stats['inexact_fraction'] * 100:.2f}%)",
    )
    return table


@cli.command()
@click.argument("input_image", type=click.Path(exists=True, dir_okay=False))
@click.argument("output_image", type=click.Path(dir_okay=False), required=False)
@click.option(
    "--fg",
    "foregrounds",
    multiple=True,
    help="Foreground color(s) as hex or 'auto' to deduce; comma-separated or repeated",
)
@click.option("--bg", "background", help="Background color (detected from the edges if omitted)")
@click.option("--strict", is_flag=True, help="Restrict output colors to the foreground colors")
@click.option(
    "--threshold",
    "-t",
    type=float,
    help="Color match radius (0 to 1). Non-strict matches must still be exact to one 8-bit step",
)
@click.option("--jobs", "-j", type=int, help="Parallel workers (-1 for all cores)")
@click.option("--border-width", type=int, help="Edge ring width used to detect the background")
@click.option("--profile", type=click.Choice(PROFILES), help="Performance profile")
@click.pass_context
def remove(
    ctx,
    input_image,
    output_image,
    foregrounds,
    background,
    strict,
    threshold,
    jobs,
    border_width,
    profile,
):
    """Remove the background from INPUT_IMAGE and write a transparent PNG."""
    quiet = ctx.obj["quiet"]
    try:
        config = _build_unmix_config(
            ctx, foregrounds, background, strict, threshold, jobs, border_width, profile
        )

        processor = ImageProcessor()
        pixels = processor.load_image(input_image)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
            disable=quiet,
        ) as progress:
            progress.add_task("Removing background...", total=None)
            result = BackgroundRemover(config).remove(pixels)

        suffix = ctx.obj["config_manager"].get("output.suffix", "-bgone")
        output_path = Path(output_image) if output_image else default_output_path(input_image, suffix)
        written = processor.save_image(result.pixels, output_path)

        if not quiet:
            console.print(_result_table(result, config, written))
        logger.info(f"Successfully processed {input_image}")

    except BgoneError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        logger.error(f"An error occurred: {e}", exc_info=True)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command("detect-background")
@click.argument("input_image", type=click.Path(exists=True, dir_okay=False))
@click.option("--border-width", type=int, help="Edge ring width to sample")
@click.pass_context
def detect_background(ctx, input_image, border_width):
    """Print the background color detected along the image edges."""
    config_manager: ConfigManager = ctx.obj["config_manager"]
    try:
        width = border_width or config_manager.get("background.border_width", 1)
        pixels = ImageProcessor().load_image(input_image)
        color = estimate_background(
            pixels,
            border_width=width,
            sample_interval=config_manager.get("background.edge_sample_interval", 1),
        )

        if ctx.obj["quiet"]:
            click.echo(str(color))
            return

        matching, total = border_coverage(pixels, color, border_width=width)
        console.print(
            Panel(
                f"[bold]{color}[/bold]  rgb{color.to_rgb8()}\n"
                f"Matches {matching} of {total} edge pixels",
                title="Background color",
            )
        )

    except BgoneError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        logger.error(f"An error occurred: {e}", exc_info=True)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("input_image", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--fg",
    "foregrounds",
    multiple=True,
    help="Foreground color(s); use 'auto' for each color to deduce",
)
@click.option("--bg", "background", help="Background color (detected from the edges if omitted)")
@click.option("--strict", is_flag=True, help="Score candidates in strict mode")
@click.option(
    "--threshold",
    "-t",
    type=float,
    help="Color match radius (0 to 1). Non-strict matches must still be exact to one 8-bit step",
)
@click.option("--jobs", "-j", type=int, help="Parallel workers (-1 for all cores)")
@click.pass_context
def deduce(ctx, input_image, foregrounds, background, strict, threshold, jobs):
    """Deduce the 'auto' foreground colors of INPUT_IMAGE without writing output."""
    try:
        config = _build_unmix_config(
            ctx, foregrounds, background, strict, threshold, jobs
        )
        if not config.has_unknowns:
            raise ConfigurationError(
                "nothing to deduce: pass at least one --fg auto"
            )

        pixels = ImageProcessor().load_image(input_image)
        background_color, deduced = BackgroundRemover(config).deduce_colors(pixels)

        if ctx.obj["quiet"]:
            click.echo(" ".join(str(c) for c in deduced))
            return

        table = Table(title=f"Deduced colors (background {background_color})")
        table.add_column("Slot", justify="right")
        table.add_column("Color")
        table.add_column("RGB")
        remaining = iter(deduced)
        for i, slot in enumerate(config.foregrounds, 1):
            if slot.is_unknown:
                color = next(remaining)
                table.add_row(str(i), f"[bold]{color}[/bold]", str(color.to_rgb8()))
            else:
                table.add_row(str(i), f"{slot.color} (given)", str(slot.color.to_rgb8()))
        console.print(table)

    except BgoneError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        logger.error(f"An error occurred: {e}", exc_info=True)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command("init-config")
@click.argument("output", type=click.Path(dir_okay=False))
@click.option("--profile", type=click.Choice(PROFILES), help="Start from a profile")
def init_config(output, profile):
    """Write a configuration file (YAML or JSON by extension)."""
    try:
        config_manager = ConfigManager()
        if profile:
            config_manager.apply_profile(profile)
        config_manager.save_config(output)

        click.echo(f"Configuration created at: {output}")
        logger.info(f"Initialized config file at {output} (profile={profile})")

    except Exception as e:
        logger.error(f"Error initializing config: {e}", exc_info=True)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
def version():
    """Display bgone version."""
    click.echo(f"bgone version: {__version__}")


def main():
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
