"""
Vector output written with GeoPandas.
"""

import logging
import os
import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional

import geopandas as gpd
import pandas as pd

from ..config import GeometryTypes, OutputFormats
from ..data import Feature
from ..exceptions import SinkError
from .base import FeatureSink

logger = logging.getLogger(__name__)

DRIVERS = {
    OutputFormats.SHP: "ESRI Shapefile",
    OutputFormats.GEOJSON: "GeoJSON",
    OutputFormats.GPKG: "GPKG",
}

SHAPEFILE_SIDECARS = (".shp", ".shx", ".dbf", ".prj", ".cpg")

DTYPES = {"str": "object", "float": "float64", "int": "int64"}


class GeoPandasFeatureSink(FeatureSink):
    """Buffers features and writes the layer in one go on ``close``.

    Nothing touches the output path before ``close``, so an aborted run leaves
    no file behind.
    """

    def __init__(self, output_format: OutputFormats = OutputFormats.SHP):
        self.output_format = OutputFormats(output_format)
        self.path: Optional[Path] = None
        self.layer_name: Optional[str] = None
        self.geometry_type: Optional[GeometryTypes] = None
        self.fields: Dict[str, str] = {}
        self.crs: Optional[Any] = None
        self._rows: List[Dict[str, Any]] = []
        self._geometries: List[Any] = []
        self._is_open = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    def __len__(self) -> int:
        return len(self._rows)

    def open(
        self,
        path: str,
        layer_name: str,
        geometry_type: GeometryTypes,
        fields: Dict[str, str],
        crs: Optional[Any] = None,
    ) -> None:
        if self._is_open:
            raise SinkError("Sink is already open", path=str(path))

        path_obj = Path(path)
        try:
            path_obj.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SinkError(f"Cannot create output directory: {e}", path=str(path))

        if not os.access(path_obj.parent, os.W_OK):
            raise SinkError(
                f"Output directory is not writable: {path_obj.parent}", path=str(path)
            )
        if path_obj.is_dir():
            raise SinkError(f"Output path is a directory: {path}", path=str(path))

        unknown = [name for name, kind in fields.items() if kind not in DTYPES]
        if unknown:
            raise SinkError(f"Unsupported field types for {unknown}", path=str(path))

        self.path = path_obj
        self.layer_name = layer_name
        self.geometry_type = GeometryTypes(geometry_type)
        self.fields = dict(fields)
        self.crs = crs
        self._rows.clear()
        self._geometries.clear()
        self._is_open = True
        logger.info(
            f"Opened {self.output_format} output {self.path} (layer={layer_name})"
        )

    def write(self, feature: Feature) -> None:
        if not self._is_open:
            raise SinkError("Sink is not open")

        extra = set(feature.properties) - set(self.fields)
        if extra:
            raise SinkError(
                f"Feature has fields outside the layer schema: {sorted(extra)}",
                path=str(self.path),
            )
        if feature.geometry.geom_type.lower() != self.geometry_type:
            raise SinkError(
                f"Expected {self.geometry_type} geometry, got {feature.geometry.geom_type}",
                path=str(self.path),
            )

        self._rows.append({name: feature.properties.get(name) for name in self.fields})
        self._geometries.append(feature.geometry)

    def _to_geodataframe(self) -> gpd.GeoDataFrame:
        frame = pd.DataFrame(self._rows, columns=list(self.fields))
        frame = frame.astype({name: DTYPES[kind] for name, kind in self.fields.items()})
        return gpd.GeoDataFrame(
            frame,
            geometry=gpd.GeoSeries(self._geometries, crs=self.crs),
            crs=self.crs,
        )

    def close(self) -> None:
        if not self._is_open:
            raise SinkError("Sink is not open")

        gdf = self._to_geodataframe()
        try:
            if self.output_format == OutputFormats.CSV:
                table = pd.DataFrame(gdf.drop(columns="geometry"))
                table["geometry"] = gdf.geometry.to_wkt()
                table.to_csv(self.path, index=False)
            else:
                gdf.to_file(
                    self.path,
                    layer=self.layer_name,
                    driver=DRIVERS[self.output_format],
                    engine="pyogrio",
                    geometry_type=self.geometry_type.capitalize(),
                )
        except Exception as e:
            logger.debug(traceback.format_exc())
            self._remove_output()
            raise SinkError(f"Failed to write output: {e}", path=str(self.path)) from e
        finally:
            self._is_open = False

        logger.info(f"Wrote {len(gdf)} features to {self.path}")

    def abort(self) -> None:
        if self._is_open:
            logger.warning(f"Discarding {len(self._rows)} buffered features")
        self._rows.clear()
        self._geometries.clear()
        self._is_open = False

    def _remove_output(self) -> None:
        if self.path is None:
            return
        if self.output_format == OutputFormats.SHP:
            targets = [self.path.with_suffix(s) for s in SHAPEFILE_SIDECARS]
        else:
            targets = [self.path]
        for target in targets:
            if target.exists():
                target.unlink()
