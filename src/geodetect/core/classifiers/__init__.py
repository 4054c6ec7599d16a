"""
Classifier implementations.
"""

from ..config import ModelConfig
from ..exceptions import ConfigurationError
from .base import Classifier
from .torchscript import TorchScriptClassifier

__all__ = ["Classifier", "TorchScriptClassifier", "load_classifier"]


def load_classifier(config: ModelConfig) -> Classifier:
    """Load the classifier described by a model configuration."""
    if config.model_path is None:
        raise ConfigurationError("A model path must be provided.")
    return TorchScriptClassifier(
        model_path=config.model_path,
        labels=config.labels,
        device=config.device,
        max_utilization=config.max_utilization,
    )
