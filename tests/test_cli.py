"""
Tests for the Typer CLI.
"""

import geopandas as gpd
import pytest
from typer.testing import CliRunner

from geodetect import __version__
from geodetect.cli import app

runner = CliRunner()


@pytest.fixture
def log_file(tmp_path):
    return str(tmp_path / "logs" / "run.log")


class TestCLI:
    """Test cases for the geodetect commands."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("detect", "landcover", "info"):
            assert command in result.stdout

    def test_info(self, torchscript_model):
        result = runner.invoke(app, ["info", "--model", torchscript_model])
        assert result.exit_code == 0, result.stdout
        assert "tree" in result.stdout

    def test_info_missing_model(self, tmp_path):
        result = runner.invoke(app, ["info", "--model", str(tmp_path / "missing.pt")])
        assert result.exit_code == 1
        assert "CONFIGURATION_ERROR" in result.stdout

    def test_detect(self, bright_raster, torchscript_model, tmp_path, log_file):
        output = tmp_path / "detections.geojson"
        result = runner.invoke(
            app,
            [
                "detect",
                "--image", bright_raster,
                "--model", torchscript_model,
                "--step-size", "32",
                "--confidence", "0",
                "--output", str(output),
                "--format", "geojson",
                "--device", "cpu",
                "--serial",
                "--quiet",
                "--log-file", log_file,
            ],
        )

        assert result.exit_code == 0, result.stdout
        gdf = gpd.read_file(output)
        assert len(gdf) == 32
        assert set(gdf["label"]) == {"tree", "other"}
        with open(log_file) as f:
            assert "Run finished" in f.read()

    def test_landcover(self, bright_raster, torchscript_model, tmp_path, log_file):
        output = tmp_path / "landcover.gpkg"
        result = runner.invoke(
            app,
            [
                "landcover",
                "--image", bright_raster,
                "--model", torchscript_model,
                "--output", str(output),
                "--format", "gpkg",
                "--device", "cpu",
                "--quiet",
                "--log-file", log_file,
            ],
        )

        assert result.exit_code == 0, result.stdout
        assert len(gpd.read_file(output)) == 16

    def test_invalid_option_value(self, bright_raster, torchscript_model, tmp_path, log_file):
        output = tmp_path / "out.geojson"
        result = runner.invoke(
            app,
            [
                "detect",
                "--image", bright_raster,
                "--model", torchscript_model,
                "--overlap", "2.0",
                "--output", str(output),
                "--quiet",
                "--log-file", log_file,
            ],
        )

        assert result.exit_code == 1
        assert "CONFIGURATION_ERROR" in result.stdout
        assert not output.exists()

    def test_missing_image(self, torchscript_model, tmp_path, log_file):
        result = runner.invoke(
            app,
            [
                "detect",
                "--image", str(tmp_path / "missing.tif"),
                "--model", torchscript_model,
                "--output", str(tmp_path / "out.geojson"),
                "--device", "cpu",
                "--quiet",
                "--log-file", log_file,
            ],
        )

        assert result.exit_code == 1
        assert "SOURCE_ERROR" in result.stdout

    def test_malformed_bbox(self, bright_raster, log_file):
        result = runner.invoke(
            app, ["detect", "--image", bright_raster, "--bbox", "1,2,3", "--log-file", log_file]
        )
        assert result.exit_code == 2
