"""
CLI utilities and helper functions.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from ..core.detection_pipeline import RunSummary

console = Console()


def setup_logging(
    verbose: bool = False, log_file: Optional[str] = None, quiet: bool = False
):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers: List[logging.Handler] = []
    if not quiet:
        handlers.append(logging.StreamHandler(sys.stdout))
    if isinstance(log_file, str):
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )


def parse_floats(value: Optional[str], name: str, count: int) -> Optional[List[float]]:
    """Parse a comma separated list of ``count`` numbers."""
    if value is None:
        return None
    try:
        values = [float(v) for v in value.split(",")]
    except ValueError:
        raise typer.BadParameter(f"{name} must be comma separated numbers: {value}")
    if len(values) != count:
        raise typer.BadParameter(f"{name} must have {count} values: {value}")
    return values


def parse_size(value: Optional[str], name: str) -> Optional[List[int]]:
    """Parse ``W`` or ``W,H`` into a list of integers."""
    if value is None:
        return None
    try:
        values = [int(v) for v in value.split(",")]
    except ValueError:
        raise typer.BadParameter(f"{name} must be one or two integers: {value}")
    if len(values) not in (1, 2):
        raise typer.BadParameter(f"{name} must be one or two integers: {value}")
    return values


def display_results(summary: RunSummary):
    """Display the summary of a run."""
    table = Table(title="Detection Results")
    table.add_column("Label", style="cyan")
    table.add_column("Features", style="green")

    for label, count in sorted(
        summary.label_counts.items(), key=lambda x: x[1], reverse=True
    ):
        table.add_row(label, str(count))

    if summary.label_counts:
        console.print(table)
    else:
        console.print("[yellow]No detections above the confidence threshold[/yellow]")

    console.print(f"\n[bold green]Summary:[/bold green]")
    console.print(f"  Windows classified: {summary.windows}")
    console.print(f"  Detections: {summary.detections}")
    console.print(f"  Features written: {summary.accepted}")
    console.print(f"  Elapsed: {summary.elapsed:.1f}s")
    console.print(f"  Output: {summary.output_path}")


def display_model_info(info: Dict[str, Any]):
    """Display classifier information."""
    table = Table(title="Model Information")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Type", str(info.get("type")))
    table.add_row("Device", str(info.get("device")))
    table.add_row("Window size", "x".join(str(v) for v in info.get("window_size", [])))
    table.add_row("Labels", ", ".join(info.get("labels", [])))
    for key, value in info.get("metadata", {}).items():
        if key not in ("labels", "window_size"):
            table.add_row(f"metadata.{key}", str(value))

    console.print(table)
