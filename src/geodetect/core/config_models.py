"""
Pydantic configuration models for GeoDetect.

These models validate the merged YAML/CLI configuration and convert it to the
dataclasses of config.py consumed by the pipeline.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from .config import (
    DetectionConfig,
    DispatchConfig,
    DispatchModes,
    GeometryTypes,
    ModelConfig,
    OutputConfig,
    OutputFormats,
    RunConfig,
    RunModes,
    SourceConfig,
    SourceTypes,
)
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

Size = Optional[Union[int, List[int]]]


class SourceConfigModel(BaseModel):
    """Raster source configuration model."""

    source_type: SourceTypes = Field(
        default=SourceTypes.LOCAL, description="Local raster or map service"
    )
    image_path: Optional[str] = Field(default=None, description="Raster file path")
    url_template: Optional[str] = Field(
        default=None, description="Tile URL with {z}, {x}, {y} and optional {token}"
    )
    token: Optional[str] = Field(default=None, description="Map service token")
    credentials: Optional[str] = Field(
        default=None, description="Map service credentials as user:password"
    )
    zoom: int = Field(default=18, ge=0, le=23, description="Tile zoom level")
    max_downloads: int = Field(
        default=10, ge=1, description="Maximum concurrent tile downloads"
    )
    tile_size: int = Field(default=256, gt=0, description="Tile size in pixels")
    max_retries: int = Field(default=3, ge=0, description="Retries per tile request")
    timeout: int = Field(default=60, gt=0, description="Tile request timeout")
    bbox: Optional[List[float]] = Field(
        default=None, description="west, south, east, north in WGS84"
    )

    @field_validator("bbox")
    @classmethod
    def validate_bbox(cls, v: Optional[List[float]]) -> Optional[List[float]]:
        if v is None:
            return v
        if len(v) != 4:
            raise ValueError("bbox must be [west, south, east, north]")
        if v[0] >= v[2] or v[1] >= v[3]:
            raise ValueError(f"Invalid bounding box: {v}")
        return v


class ModelConfigModel(BaseModel):
    """Model configuration model."""

    path: Optional[str] = Field(default=None, description="TorchScript model path")
    labels: Optional[List[str]] = Field(
        default=None, description="Class labels, overrides the model metadata"
    )
    window_size: Size = Field(
        default=None, description="Window size, overrides the model's"
    )
    device: str = Field(default="auto", description="auto, cpu or cuda")
    max_utilization: float = Field(
        default=95, ge=5, le=100, description="GPU memory cap in percent"
    )


class DetectionConfigModel(BaseModel):
    """Sliding window and post-processing configuration model."""

    mode: RunModes = Field(default=RunModes.DETECT, description="detect or landcover")
    confidence_threshold: float = Field(
        default=0.95, ge=0.0, le=1.0, description="Minimum confidence kept"
    )
    step_size: Size = Field(default=None, description="Step between windows")
    pyramid: bool = Field(default=False, description="Sweep doubled window sizes")
    nms: bool = Field(default=False, description="Non-maximum suppression")
    overlap: float = Field(
        default=0.5, gt=0.0, le=1.0, description="NMS overlap fraction"
    )
    point_nms_radius: Optional[float] = Field(
        default=None, gt=0.0, description="NMS radius for point output"
    )


class DispatchConfigModel(BaseModel):
    """Dispatcher configuration model."""

    mode: DispatchModes = Field(
        default=DispatchModes.CONCURRENT, description="serial or concurrent"
    )
    num_workers: Optional[int] = Field(
        default=None, ge=1, description="Concurrent classification calls"
    )
    queue_size: int = Field(default=24, gt=0, description="Batches waiting for a worker")
    batch_size: Optional[int] = Field(
        default=None, gt=0, description="Windows per classification call"
    )


class OutputConfigModel(BaseModel):
    """Output configuration model."""

    path: Optional[str] = Field(default=None, description="Output file path")
    format: OutputFormats = Field(default=OutputFormats.SHP, description="Vector format")
    layer_name: Optional[str] = Field(default=None, description="Output layer name")
    geometry_type: GeometryTypes = Field(
        default=GeometryTypes.POLYGON, description="point or polygon"
    )
    producer_info: bool = Field(default=False, description="Add producer fields")


class LoggingConfigModel(BaseModel):
    """Logging configuration model."""

    verbose: bool = Field(default=False, description="Verbose logging")
    log_file: Optional[str] = Field(default=None, description="Log file path")


class DetectConfigModel(BaseModel):
    """Configuration model for the detect and landcover commands."""

    source: SourceConfigModel = Field(default_factory=SourceConfigModel)
    model: ModelConfigModel = Field(default_factory=ModelConfigModel)
    detection: DetectionConfigModel = Field(default_factory=DetectionConfigModel)
    dispatch: DispatchConfigModel = Field(default_factory=DispatchConfigModel)
    output: OutputConfigModel = Field(default_factory=OutputConfigModel)
    logging: LoggingConfigModel = Field(default_factory=LoggingConfigModel)

    def to_run_config(self) -> RunConfig:
        """Convert to the RunConfig dataclass."""
        source = self.source
        return RunConfig(
            source=SourceConfig(
                source_type=source.source_type,
                image_path=source.image_path,
                url_template=source.url_template,
                token=source.token,
                credentials=source.credentials,
                zoom=source.zoom,
                max_downloads=source.max_downloads,
                tile_size=source.tile_size,
                max_retries=source.max_retries,
                timeout=source.timeout,
                bbox=tuple(source.bbox) if source.bbox else None,
            ),
            model=ModelConfig(
                model_path=self.model.path,
                labels=self.model.labels,
                window_size=self.model.window_size,
                device=self.model.device,
                max_utilization=self.model.max_utilization,
            ),
            detection=DetectionConfig(**self.detection.model_dump()),
            dispatch=DispatchConfig(**self.dispatch.model_dump()),
            output=OutputConfig(**self.output.model_dump()),
        )


ConfigModel = DetectConfigModel

COMMAND_TYPES = ("detect", "landcover")


def create_default_config(command_type: str) -> ConfigModel:
    """Create default configuration for a command type."""
    if command_type == "detect":
        return DetectConfigModel()
    elif command_type == "landcover":
        return DetectConfigModel(detection=DetectionConfigModel(mode=RunModes.LANDCOVER))
    else:
        raise ValueError(f"Unknown command type: {command_type}")


def validate_config_dict(config_dict: Dict[str, Any], command_type: str) -> ConfigModel:
    """Validate and convert dictionary to the config model of a command."""
    if command_type not in COMMAND_TYPES:
        raise ValueError(f"Unknown command type: {command_type}")
    try:
        return DetectConfigModel(**config_dict)
    except ValidationError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise ConfigurationError(
            f"Invalid {command_type} configuration: {e}",
            details={"errors": e.errors(include_url=False)},
        ) from e


def config_model_to_dict(config_model: ConfigModel) -> Dict[str, Any]:
    """Convert config model to dictionary."""
    return config_model.model_dump(mode="json")
