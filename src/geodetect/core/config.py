"""
Configuration utilities for GeoDetect.
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import torch
import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ROOT = Path(__file__).parents[3]

DEFAULT_LAYER_NAME = "detections"
DEFAULT_BATCH_SIZE = 8


class SourceTypes(StrEnum):
    """Types of raster sources."""

    LOCAL = "local"
    SERVICE = "service"


class GeometryTypes(StrEnum):
    """Output geometry types."""

    POINT = "point"
    POLYGON = "polygon"


class DispatchModes(StrEnum):
    """Scheduling strategies of the dispatcher."""

    SERIAL = "serial"
    CONCURRENT = "concurrent"


class RunModes(StrEnum):
    """What a run produces."""

    DETECT = "detect"
    LANDCOVER = "landcover"


class OutputFormats(StrEnum):
    """Vector output formats."""

    SHP = "shp"
    GEOJSON = "geojson"
    GPKG = "gpkg"
    CSV = "csv"


def as_size(
    value: Union[None, int, Sequence[int]], name: str
) -> Optional[Tuple[int, int]]:
    """Normalize a one- or two-dimensional size to a (width, height) tuple.

    A single value is applied to both dimensions.
    """
    if value is None:
        return None
    if isinstance(value, int):
        values = [value]
    else:
        values = list(value)
    if len(values) not in (1, 2):
        raise ConfigurationError(
            f"{name} must have one or two dimensions, got {values}"
        )
    if not all(isinstance(v, int) and v > 0 for v in values):
        raise ConfigurationError(f"{name} must be positive integers, got {values}")
    if len(values) == 1:
        return values[0], values[0]
    return values[0], values[1]


@dataclass
class SourceConfig:
    """Where the pixels come from: a local raster or a tiled map service."""

    source_type: SourceTypes = SourceTypes.LOCAL
    image_path: Optional[str] = None

    # map service
    url_template: Optional[str] = None
    token: Optional[str] = None
    credentials: Optional[str] = None  # user:password
    zoom: int = 18
    max_downloads: int = 10
    tile_size: int = 256
    max_retries: int = 3
    timeout: int = 60

    # west, south, east, north in WGS84
    bbox: Optional[Tuple[float, float, float, float]] = None

    def __post_init__(self):
        self.source_type = SourceTypes(self.source_type)

        if self.bbox is not None:
            if len(self.bbox) != 4:
                raise ConfigurationError(
                    f"bbox must be (west, south, east, north), got {self.bbox}"
                )
            self.bbox = tuple(float(v) for v in self.bbox)
            west, south, east, north = self.bbox
            if west >= east or south >= north:
                raise ConfigurationError(f"Invalid bounding box: {self.bbox}")

        if self.source_type == SourceTypes.LOCAL:
            if self.image_path is None:
                raise ConfigurationError(
                    "No input specified, an image path or a map service must be provided."
                )
            return

        if self.url_template is None:
            raise ConfigurationError("A map service requires a URL template.")
        if self.bbox is None:
            raise ConfigurationError("A bounding box is required for map services.")
        if self.token is None:
            self.token = os.environ.get("GEODETECT_SERVICE_TOKEN", None)
        if self.credentials is None:
            self.credentials = os.environ.get("GEODETECT_CREDENTIALS", None)
        if not 0 <= self.zoom <= 23:
            raise ConfigurationError(f"Invalid zoom level: {self.zoom}")
        if self.max_downloads < 1:
            raise ConfigurationError(
                f"max_downloads must be at least 1, got {self.max_downloads}"
            )


@dataclass
class ModelConfig:
    """Classifier settings."""

    model_path: Optional[str] = None
    labels: Optional[List[str]] = None
    window_size: Optional[Tuple[int, int]] = None  # overrides the model's size
    device: str = "auto"
    max_utilization: float = 95  # percent of GPU, ignored on CPU

    def __post_init__(self):
        self.window_size = as_size(self.window_size, "window_size")

        if self.device == "auto":
            self.device = "cuda" if torch.cuda.is_available() else "cpu"

        if not 5 <= self.max_utilization <= 100:
            raise ConfigurationError(
                f"max_utilization must be between 5 and 100, got {self.max_utilization}"
            )

    @property
    def use_cpu(self) -> bool:
        return not str(self.device).startswith("cuda")


@dataclass
class DetectionConfig:
    """Sliding window and post-processing settings."""

    mode: RunModes = RunModes.DETECT
    confidence_threshold: float = 0.95
    step_size: Optional[Tuple[int, int]] = None
    pyramid: bool = False
    nms: bool = False
    overlap: float = 0.5
    point_nms_radius: Optional[float] = None  # in output CRS units

    def __post_init__(self):
        self.mode = RunModes(self.mode)
        self.step_size = as_size(self.step_size, "step_size")

        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ConfigurationError(
                f"confidence_threshold must be in [0, 1], got {self.confidence_threshold}"
            )
        if not 0.0 < self.overlap <= 1.0:
            raise ConfigurationError(
                f"overlap must be in (0, 1], got {self.overlap}"
            )
        if self.point_nms_radius is not None and self.point_nms_radius <= 0:
            raise ConfigurationError(
                f"point_nms_radius must be positive, got {self.point_nms_radius}"
            )


@dataclass
class DispatchConfig:
    """Concurrency settings of the dispatcher."""

    mode: DispatchModes = DispatchModes.CONCURRENT
    num_workers: Optional[int] = None  # defaults depend on the device
    queue_size: int = 24
    batch_size: Optional[int] = None  # model metadata, then DEFAULT_BATCH_SIZE

    def __post_init__(self):
        self.mode = DispatchModes(self.mode)
        if self.queue_size < 1:
            raise ConfigurationError("queue_size must be at least 1")
        if self.batch_size is not None and self.batch_size < 1:
            raise ConfigurationError(
                f"batch_size must be at least 1, got {self.batch_size}"
            )
        if self.num_workers is not None and self.num_workers < 1:
            raise ConfigurationError(
                f"num_workers must be at least 1, got {self.num_workers}"
            )

    def resolve_num_workers(self, use_cpu: bool) -> int:
        """Concurrency limit for classification calls.

        On CPU one window batch runs per core. On GPU the device driver
        serializes kernels, two workers keep reads overlapping with inference.
        """
        if self.mode == DispatchModes.SERIAL:
            return 1
        if self.num_workers is not None:
            return self.num_workers
        if use_cpu:
            return os.cpu_count() or 1
        return 2


@dataclass
class OutputConfig:
    """Vector output settings."""

    path: Optional[str] = None
    format: OutputFormats = OutputFormats.SHP
    layer_name: Optional[str] = None
    geometry_type: GeometryTypes = GeometryTypes.POLYGON
    producer_info: bool = False

    def __post_init__(self):
        self.format = OutputFormats(str(self.format).lower())
        self.geometry_type = GeometryTypes(str(self.geometry_type).lower())
        if self.path is None:
            raise ConfigurationError("An output path must be provided.")
        if self.format == OutputFormats.SHP and self.layer_name is not None:
            logger.warning("layer_name is ignored for Shapefile output.")

    @property
    def layer(self) -> str:
        if self.format == OutputFormats.SHP:
            return Path(self.path).stem
        return self.layer_name or DEFAULT_LAYER_NAME


@dataclass
class RunConfig:
    """Validated configuration of one detection run."""

    source: SourceConfig
    output: OutputConfig
    model: ModelConfig = field(default_factory=ModelConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunConfig":
        sections = {
            "source": SourceConfig,
            "output": OutputConfig,
            "model": ModelConfig,
            "detection": DetectionConfig,
            "dispatch": DispatchConfig,
        }
        cfg = {}
        for name, section_cls in sections.items():
            value = data.get(name, {})
            if isinstance(value, dict):
                value = section_cls(**value)
            elif not isinstance(value, section_cls):
                raise ConfigurationError(f"Invalid {name} type: {type(value)}")
            cfg[name] = value
        return cls(**cfg)

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "RunConfig":
        """
        Create a RunConfig instance from a YAML file.

        Raises:
            FileNotFoundError: If the YAML file doesn't exist
            ConfigurationError: If the YAML file is malformed or invalid
        """
        yaml_path_obj = Path(yaml_path)

        if not yaml_path_obj.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        try:
            with open(yaml_path_obj, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Error parsing YAML file {yaml_path}: {e}")

        return cls.from_dict(config_data or {})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
