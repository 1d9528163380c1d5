"""
Rich console configuration for the LUT video transformer.

Provides terminal output with an export progress bar, panels, and styled logging.
"""

import logging
import os
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme
from rich.panel import Panel
from rich.table import Table
from rich.progress import (
    Progress,
    SpinnerColumn,
    TextColumn,
    BarColumn,
    TaskProgressColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from config import LutOptions, TransformRequest

TRANSFORM_THEME = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "bold red",
    "success": "bold green",
    "highlight": "bold magenta",
    "muted": "dim",
    "lut": "bold blue",
    "code": "bold yellow",
})

# Global console instance
console = Console(theme=TRANSFORM_THEME)


def setup_rich_logging(verbose: bool = False) -> None:
    """
    Configure logging to use the Rich handler.

    Args:
        verbose: Enable DEBUG level logging with full details
    """
    level = logging.DEBUG if verbose else logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console,
                show_time=verbose,
                show_path=verbose,
                rich_tracebacks=True,
                tracebacks_show_locals=verbose,
                markup=False,
            )
        ],
        force=True,  # Override any existing configuration
    )


def create_progress() -> Progress:
    """
    Create a progress bar for a single export.

    Tasks are created with total=1.0 and updated with the fractional progress
    reported by the transformer.
    """
    return Progress(
        SpinnerColumn("dots"),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(bar_width=40, style="cyan", complete_style="green"),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
        console=console,
        transient=False,
    )


def print_banner(version: str = "1.0.0") -> None:
    """Print a styled startup banner."""
    console.print("\n[bold cyan]LUT Video Transformer[/]")
    console.print("[dim]Square crop, mirror and .cube color grading[/]")
    console.print(f"[muted]Version {version}[/]\n")


def print_config_summary(request: TransformRequest, options: LutOptions) -> None:
    """
    Print a styled configuration summary panel.

    Args:
        request: The export about to run
        options: LUT intensity/packing configuration
    """
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="dim")
    table.add_column("Value", style="bold")

    table.add_row("Input", request.input_path)
    if request.lut_asset:
        table.add_row("LUT", f"[lut]{os.path.basename(request.lut_asset)}[/]")
    else:
        table.add_row("LUT", "[dim]none[/]")

    if not options.intensity_enabled:
        table.add_row("Intensity", "[dim]disabled[/]")
    elif request.intensity is not None:
        table.add_row("Intensity", f"[highlight]{request.intensity:.0%}[/]")
    else:
        table.add_row("Intensity", "100%")

    table.add_row("Packing", options.packing_mode.value)
    table.add_row("Crop", f"{request.crop_square_size}px square" if request.crop_square_size
                  else "largest centered square")
    table.add_row("Mirror", "horizontal" if request.flip_horizontally else "[dim]off[/]")
    if request.output_path:
        table.add_row("Output", f"[green]{request.output_path}[/]")

    panel = Panel(
        table,
        title="[bold]Configuration[/]",
        border_style="cyan",
        padding=(1, 2),
    )
    console.print(panel)
    console.print()


def print_phase(phase_num: int, total_phases: int, description: str) -> None:
    """
    Print a phase header for multi-step processing.

    Args:
        phase_num: Current phase number (1-indexed)
        total_phases: Total number of phases
        description: Description of this phase
    """
    console.print(
        f"\n[bold cyan]Step {phase_num}/{total_phases}:[/] [bold]{description}[/]"
    )


def print_completion_summary(output_file: str, elapsed: Optional[float] = None) -> None:
    """
    Print a styled completion summary.

    Args:
        output_file: Path to output file
        elapsed: Wall-clock export time in seconds (optional)
    """
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold green")

    if elapsed is not None:
        table.add_row("Elapsed", f"{elapsed:.1f}s")
    table.add_row("Output", output_file)

    panel = Panel(
        table,
        title="[bold green]Complete[/]",
        border_style="green",
        padding=(1, 2),
    )
    console.print()
    console.print(panel)


def print_error(message: str, hint: Optional[str] = None, code: Optional[str] = None) -> None:
    """
    Print a styled error message.

    Args:
        message: Error message
        hint: Optional hint for resolution
        code: Optional error code shown before the message
    """
    prefix = f"[code]{code}[/] " if code else ""
    console.print(f"\n[error]Error:[/] {prefix}{message}", highlight=False)
    if hint:
        console.print(f"[muted]Hint: {hint}[/]")
