"""
Classifier interface.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple

import torch

from ..data import Prediction


class Classifier(ABC):
    """Assigns (label, confidence) predictions to fixed-size pixel windows.

    The execution device is chosen once, before a run.
    """

    device: str = "cpu"
    metadata: Dict[str, Any] = {}

    @property
    @abstractmethod
    def native_window_size(self) -> Tuple[int, int]:
        """(width, height) of the windows the model expects."""

    @property
    @abstractmethod
    def labels(self) -> List[str]:
        pass

    @abstractmethod
    def classify(self, batch: torch.Tensor) -> List[List[Prediction]]:
        """Classify a (N, C, H, W) batch, returning predictions per window."""

    @property
    def use_cpu(self) -> bool:
        return not str(self.device).startswith("cuda")

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "type": self.__class__.__name__,
            "device": self.device,
            "window_size": list(self.native_window_size),
            "labels": list(self.labels),
        }
