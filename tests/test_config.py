"""
Tests for configuration dataclasses, pydantic models and the config loader.
"""

import pytest
import yaml

from geodetect.core.config import (
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
    as_size,
)
from geodetect.core.config_loader import ConfigLoader, load_config_with_pydantic
from geodetect.core.config_models import DetectConfigModel, create_default_config
from geodetect.core.exceptions import ConfigurationError


class TestDataclasses:
    """Test cases for validation in the configuration dataclasses."""

    def test_as_size(self):
        assert as_size(None, "size") is None
        assert as_size(32, "size") == (32, 32)
        assert as_size([32], "size") == (32, 32)
        assert as_size([64, 32], "size") == (64, 32)
        for bad in ([], [1, 2, 3], [0], [-4, 4], [1.5]):
            with pytest.raises(ConfigurationError):
                as_size(bad, "size")

    def test_defaults(self):
        detection = DetectionConfig()
        assert detection.confidence_threshold == 0.95
        assert detection.overlap == 0.5
        assert detection.mode == RunModes.DETECT
        assert not detection.nms and not detection.pyramid

        model = ModelConfig(device="cpu")
        assert model.max_utilization == 95
        assert model.use_cpu

        source = SourceConfig(image_path="a.tif")
        assert source.zoom == 18
        assert source.max_downloads == 10

        output = OutputConfig(path="out.shp")
        assert output.format == OutputFormats.SHP
        assert output.geometry_type == GeometryTypes.POLYGON

    @pytest.mark.parametrize("threshold", [-0.01, 1.01])
    def test_confidence_range(self, threshold):
        with pytest.raises(ConfigurationError):
            DetectionConfig(confidence_threshold=threshold)

    @pytest.mark.parametrize("overlap", [0.0, 1.2])
    def test_overlap_range(self, overlap):
        with pytest.raises(ConfigurationError):
            DetectionConfig(overlap=overlap)

    @pytest.mark.parametrize("utilization", [4, 101])
    def test_utilization_range(self, utilization):
        with pytest.raises(ConfigurationError):
            ModelConfig(device="cpu", max_utilization=utilization)

    def test_step_size_isotropic(self):
        assert DetectionConfig(step_size=7).step_size == (7, 7)
        assert DetectionConfig(step_size=[7, 3]).step_size == (7, 3)

    def test_local_source_requires_image(self):
        with pytest.raises(ConfigurationError):
            SourceConfig(source_type=SourceTypes.LOCAL)

    def test_service_source_requirements(self):
        with pytest.raises(ConfigurationError):
            SourceConfig(source_type="service", bbox=(0.0, 0.0, 1.0, 1.0))
        with pytest.raises(ConfigurationError):
            SourceConfig(source_type="service", url_template="https://t/{z}/{x}/{y}")

    def test_invalid_bbox(self):
        with pytest.raises(ConfigurationError):
            SourceConfig(image_path="a.tif", bbox=(1.0, 0.0, 0.0, 1.0))
        with pytest.raises(ConfigurationError):
            SourceConfig(image_path="a.tif", bbox=(0.0, 0.0, 1.0))

    def test_service_credentials_from_environment(self, monkeypatch):
        monkeypatch.setenv("GEODETECT_SERVICE_TOKEN", "abc")
        monkeypatch.setenv("GEODETECT_CREDENTIALS", "user:pw")
        source = SourceConfig(
            source_type="service", url_template="https://t/{z}/{x}/{y}", bbox=(0, 0, 1, 1)
        )
        assert source.token == "abc"
        assert source.credentials == "user:pw"

    def test_num_workers(self, monkeypatch):
        monkeypatch.setattr("os.cpu_count", lambda: 12)
        assert DispatchConfig().resolve_num_workers(use_cpu=True) == 12
        assert DispatchConfig().resolve_num_workers(use_cpu=False) == 2
        assert DispatchConfig(num_workers=3).resolve_num_workers(use_cpu=True) == 3
        serial = DispatchConfig(mode=DispatchModes.SERIAL, num_workers=3)
        assert serial.resolve_num_workers(use_cpu=True) == 1

    def test_output_layer(self):
        assert OutputConfig(path="out/trees.shp").layer == "trees"
        assert OutputConfig(path="out.gpkg", format="GPKG").layer == "detections"
        assert OutputConfig(path="out.gpkg", format="gpkg", layer_name="cars").layer == "cars"

    def test_output_requires_path(self):
        with pytest.raises(ConfigurationError):
            OutputConfig()

    def test_run_config_from_yaml(self, tmp_path):
        path = tmp_path / "run.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "source": {"image_path": "a.tif"},
                    "output": {"path": "out.geojson", "format": "geojson"},
                    "model": {"device": "cpu", "window_size": [64, 32]},
                    "detection": {"nms": True},
                    "dispatch": {"mode": "serial"},
                }
            )
        )

        config = RunConfig.from_yaml(str(path))

        assert config.model.window_size == (64, 32)
        assert config.detection.nms
        assert config.dispatch.mode == DispatchModes.SERIAL
        assert config.to_dict()["output"]["format"] == "geojson"

    def test_run_config_from_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("source: [unclosed\n")
        with pytest.raises(ConfigurationError):
            RunConfig.from_yaml(str(path))


class TestConfigLoader:
    """Test cases for the OmegaConf loader and pydantic models."""

    def test_builtin_landcover_defaults(self):
        model = create_default_config("landcover")
        assert model.detection.mode == RunModes.LANDCOVER

    def test_user_file_with_overrides(self, tmp_path):
        path = tmp_path / "detect.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "source": {"image_path": "a.tif", "bbox": [10.0, 50.0, 10.1, 50.1]},
                    "model": {"path": "model.pt", "device": "cpu"},
                    "detection": {"confidence_threshold": 0.8},
                    "output": {"path": "out.shp"},
                }
            )
        )

        loaded = load_config_with_pydantic(
            "detect",
            str(path),
            {
                "detection": {"confidence_threshold": 0.6, "nms": None},
                "output": {"format": "gpkg", "layer_name": None},
                "dispatch": {"mode": None},
            },
        )

        assert isinstance(loaded, DetectConfigModel)
        assert loaded.detection.confidence_threshold == 0.6
        assert loaded.detection.nms is False
        assert loaded.output.format == OutputFormats.GPKG

        run_config = loaded.to_run_config()
        assert run_config.source.bbox == (10.0, 50.0, 10.1, 50.1)
        assert run_config.model.model_path == "model.pt"
        assert run_config.output.path == "out.shp"
        assert run_config.dispatch.mode == DispatchModes.CONCURRENT

    def test_validation_error(self, tmp_path):
        path = tmp_path / "detect.yaml"
        path.write_text(yaml.safe_dump({"detection": {"overlap": 2.0}}))

        with pytest.raises(ConfigurationError) as excinfo:
            load_config_with_pydantic("detect", str(path))
        assert excinfo.value.error_code == "CONFIGURATION_ERROR"

    def test_missing_user_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config_with_pydantic("detect", str(tmp_path / "missing.yaml"))

    def test_save_and_reload(self, tmp_path):
        loader = ConfigLoader()
        model = create_default_config("detect")
        model.output.path = "out.geojson"
        path = loader.save_config_model(model, str(tmp_path / "saved.yaml"))

        reloaded = loader.load_config_with_pydantic("detect", path)

        assert reloaded == model
