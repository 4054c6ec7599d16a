"""
Classifier running a TorchScript model.
"""

import json
import logging
import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import torch

from ..config import as_size
from ..data import Prediction
from ..exceptions import ClassifierError, ConfigurationError
from .base import Classifier

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"


class TorchScriptClassifier(Classifier):
    """Window classifier backed by a TorchScript module.

    The module may embed a ``metadata.json`` extra file with ``labels``,
    ``window_size`` and ``batch_size``; explicit arguments take precedence.
    Outputs are treated as logits unless the metadata sets
    ``"output": "probabilities"``.
    """

    def __init__(
        self,
        model_path: str,
        labels: Optional[Sequence[str]] = None,
        window_size: Optional[Tuple[int, int]] = None,
        device: str = "cpu",
        max_utilization: float = 95,
    ):
        if not Path(model_path).exists():
            raise ConfigurationError(f"Model file not found: {model_path}")

        self.model_path = model_path
        self.device = device
        self.max_utilization = max_utilization

        extra_files = {METADATA_FILE: ""}
        try:
            self.model = torch.jit.load(
                model_path, map_location=device, _extra_files=extra_files
            )
        except RuntimeError as e:
            raise ConfigurationError(f"Failed to load model {model_path}: {e}") from e
        self.model.eval()

        self.metadata: Dict[str, Any] = (
            json.loads(extra_files[METADATA_FILE]) if extra_files[METADATA_FILE] else {}
        )

        self._labels = list(labels or self.metadata.get("labels") or [])
        if not self._labels:
            raise ConfigurationError(
                f"No labels provided and none found in the metadata of {model_path}"
            )

        self._window_size = window_size or as_size(
            self.metadata.get("window_size"), "window_size"
        )
        if self._window_size is None:
            raise ConfigurationError(
                f"No window size provided and none found in the metadata of {model_path}"
            )

        if not self.use_cpu:
            fraction = self.max_utilization / 100
            torch.cuda.set_per_process_memory_fraction(fraction)
            logger.info(f"Limiting GPU memory to {self.max_utilization}%")

        logger.info(
            f"Loaded {model_path} on {device}: window={self._window_size}, "
            f"{len(self._labels)} labels"
        )

    @property
    def native_window_size(self) -> Tuple[int, int]:
        return self._window_size

    @property
    def labels(self) -> List[str]:
        return self._labels

    def get_model_info(self) -> Dict[str, Any]:
        info = super().get_model_info()
        info["model_path"] = self.model_path
        info["metadata"] = dict(self.metadata)
        return info

    def classify(self, batch: torch.Tensor) -> List[List[Prediction]]:
        try:
            with torch.no_grad():
                output = self.model(batch.to(self.device, non_blocking=True))
                if self.metadata.get("output") != "probabilities":
                    output = torch.softmax(output, dim=1)
                scores = output.float().cpu().clamp(0.0, 1.0).tolist()
        except RuntimeError as e:
            logger.debug(traceback.format_exc())
            raise ClassifierError(f"Inference failed: {e}") from e

        if scores and len(scores[0]) != len(self._labels):
            raise ClassifierError(
                f"Model returned {len(scores[0])} scores for {len(self._labels)} labels"
            )

        results = []
        for row in scores:
            predictions = [
                Prediction(label=label, confidence=score)
                for label, score in zip(self._labels, row)
            ]
            predictions.sort(key=lambda p: -p.confidence)
            results.append(predictions)
        return results
