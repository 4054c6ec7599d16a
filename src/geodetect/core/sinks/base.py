"""
Feature sink interface.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..config import GeometryTypes
from ..data import Feature

BASE_FIELDS: Dict[str, str] = {"label": "str", "confidence": "float"}
PRODUCER_FIELDS: Dict[str, str] = {
    "tool": "str",
    "version": "str",
    "run_time": "str",
    "user_name": "str",
}


class FeatureSink(ABC):
    """Serializer for a vector layer.

    Usage is ``open`` once, ``write`` any number of times, then ``close``.
    ``abort`` discards everything written since ``open``.
    """

    @abstractmethod
    def open(
        self,
        path: str,
        layer_name: str,
        geometry_type: GeometryTypes,
        fields: Dict[str, str],
        crs: Optional[Any] = None,
    ) -> None:
        """Prepare the output; raise SinkError if it cannot be written."""

    @abstractmethod
    def write(self, feature: Feature) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    @abstractmethod
    def abort(self) -> None:
        pass

