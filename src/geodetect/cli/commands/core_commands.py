"""
Core CLI commands for the geodetect application.
"""

import logging
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

import typer
from rich.console import Console

from ...core.classifiers import load_classifier
from ...core.config import ROOT, DispatchModes, ModelConfig, RunModes, SourceTypes
from ...core.config_loader import load_config_with_pydantic
from ...core.detection_pipeline import DetectionPipeline
from ...core.exceptions import GeoDetectError
from ..utils import (
    display_model_info,
    display_results,
    parse_floats,
    parse_size,
    setup_logging,
)

console = Console()


def _run(
    command_type: str,
    config: Optional[str],
    overrides: Dict[str, Any],
    verbose: bool,
    quiet: bool,
    log_file: Optional[str],
):
    """Load the configuration, run the pipeline and report the outcome."""
    if log_file is None:
        log_file = str(
            ROOT
            / "logs"
            / command_type
            / f"{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        )
    setup_logging(verbose, log_file, quiet)
    logger = logging.getLogger(__name__)

    try:
        loaded_config = load_config_with_pydantic(command_type, config, overrides)
        if loaded_config.logging.verbose and not verbose:
            setup_logging(True, loaded_config.logging.log_file or log_file, quiet)

        run_config = loaded_config.to_run_config()
        if verbose:
            console.print(f"Run config: {run_config.to_dict()}")

        pipeline = DetectionPipeline(run_config, show_progress=not quiet)
        summary = pipeline.process()
    except GeoDetectError as e:
        logger.debug(traceback.format_exc())
        console.print(f"[red]Error ({e.error_code}): {e.message}[/red]")
        raise typer.Exit(1)

    display_results(summary)
    console.print("[bold green]Detection completed successfully![/bold green]")
    return summary


def _source_overrides(
    image: Optional[str],
    url: Optional[str],
    bbox: Optional[str],
    zoom: Optional[int],
    max_downloads: Optional[int],
) -> Dict[str, Any]:
    source: Dict[str, Any] = {
        "image_path": image,
        "url_template": url,
        "bbox": parse_floats(bbox, "bbox", 4),
        "zoom": zoom,
        "max_downloads": max_downloads,
    }
    if url is not None:
        source["source_type"] = SourceTypes.SERVICE.value
    elif image is not None:
        source["source_type"] = SourceTypes.LOCAL.value
    return source


def detect(
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to YAML configuration file"
    ),
    image: Optional[str] = typer.Option(None, "--image", "-i", help="Raster to scan"),
    url: Optional[str] = typer.Option(
        None, "--url", help="Map service URL template with {z}, {x}, {y}"
    ),
    bbox: Optional[str] = typer.Option(
        None, "--bbox", help="Region of interest as west,south,east,north (WGS84)"
    ),
    zoom: Optional[int] = typer.Option(None, "--zoom", help="Map service zoom level"),
    max_downloads: Optional[int] = typer.Option(
        None, "--max-downloads", help="Concurrent tile downloads"
    ),
    model: Optional[str] = typer.Option(
        None, "--model", "-m", help="TorchScript model path"
    ),
    window_size: Optional[str] = typer.Option(
        None, "--window-size", help="Window size as W or W,H"
    ),
    step_size: Optional[str] = typer.Option(
        None, "--step-size", help="Step size as S or SX,SY"
    ),
    confidence: Optional[float] = typer.Option(
        None, "--confidence", help="Confidence threshold"
    ),
    pyramid: Optional[bool] = typer.Option(
        None, "--pyramid/--no-pyramid", help="Also scan with doubled window sizes"
    ),
    nms: Optional[bool] = typer.Option(
        None, "--nms/--no-nms", help="Non-maximum suppression"
    ),
    overlap: Optional[float] = typer.Option(
        None, "--overlap", help="NMS overlap fraction"
    ),
    geometry: Optional[str] = typer.Option(
        None, "--geometry", help="Output geometry: point or polygon"
    ),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output file"),
    output_format: Optional[str] = typer.Option(
        None, "--format", help="Output format: shp, geojson, gpkg or csv"
    ),
    layer: Optional[str] = typer.Option(None, "--layer", help="Output layer name"),
    producer_info: Optional[bool] = typer.Option(
        None, "--producer-info/--no-producer-info", help="Add producer fields"
    ),
    serial: bool = typer.Option(False, "--serial", help="Classify windows serially"),
    device: Optional[str] = typer.Option(
        None, "--device", help="auto, cpu or cuda"
    ),
    max_utilization: Optional[float] = typer.Option(
        None, "--max-utilization", help="GPU memory cap in percent"
    ),
    workers: Optional[int] = typer.Option(
        None, "--workers", help="Concurrent classification calls"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="No console logging"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Log file path"),
):
    """Detect features in a raster with a sliding window classifier."""
    overrides = {
        "source": _source_overrides(image, url, bbox, zoom, max_downloads),
        "model": {
            "path": model,
            "window_size": parse_size(window_size, "window_size"),
            "device": device,
            "max_utilization": max_utilization,
        },
        "detection": {
            "confidence_threshold": confidence,
            "step_size": parse_size(step_size, "step_size"),
            "pyramid": pyramid,
            "nms": nms,
            "overlap": overlap,
        },
        "dispatch": {
            "mode": DispatchModes.SERIAL.value if serial else None,
            "num_workers": workers,
        },
        "output": {
            "path": output,
            "format": output_format,
            "layer_name": layer,
            "geometry_type": geometry,
            "producer_info": producer_info,
        },
    }
    _run("detect", config, overrides, verbose, quiet, log_file)


def landcover(
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to YAML configuration file"
    ),
    image: Optional[str] = typer.Option(None, "--image", "-i", help="Raster to scan"),
    url: Optional[str] = typer.Option(
        None, "--url", help="Map service URL template with {z}, {x}, {y}"
    ),
    bbox: Optional[str] = typer.Option(
        None, "--bbox", help="Region of interest as west,south,east,north (WGS84)"
    ),
    zoom: Optional[int] = typer.Option(None, "--zoom", help="Map service zoom level"),
    model: Optional[str] = typer.Option(
        None, "--model", "-m", help="TorchScript model path"
    ),
    window_size: Optional[str] = typer.Option(
        None, "--window-size", help="Window size as W or W,H"
    ),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output file"),
    output_format: Optional[str] = typer.Option(
        None, "--format", help="Output format: shp, geojson, gpkg or csv"
    ),
    serial: bool = typer.Option(False, "--serial", help="Classify windows serially"),
    device: Optional[str] = typer.Option(
        None, "--device", help="auto, cpu or cuda"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="No console logging"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Log file path"),
):
    """Classify every window of a raster into a landcover polygon layer."""
    overrides = {
        "source": _source_overrides(image, url, bbox, zoom, None),
        "model": {
            "path": model,
            "window_size": parse_size(window_size, "window_size"),
            "device": device,
        },
        "detection": {"mode": RunModes.LANDCOVER.value},
        "dispatch": {"mode": DispatchModes.SERIAL.value if serial else None},
        "output": {"path": output, "format": output_format},
    }
    _run("landcover", config, overrides, verbose, quiet, log_file)


def info(
    model: str = typer.Option(..., "--model", "-m", help="TorchScript model path"),
    device: str = typer.Option("cpu", "--device", help="auto, cpu or cuda"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
):
    """Show the window size, labels and metadata of a model."""
    setup_logging(verbose)
    try:
        classifier = load_classifier(ModelConfig(model_path=model, device=device))
    except GeoDetectError as e:
        console.print(f"[red]Error ({e.error_code}): {e.message}[/red]")
        raise typer.Exit(1)
    display_model_info(classifier.get_model_info())
