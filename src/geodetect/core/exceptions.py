"""
Exceptions raised by the detection pipeline.

Every error is fatal for the run it occurs in; no partial output is written.
"""

from typing import Any, Dict, Optional


class GeoDetectError(Exception):
    """Base exception for GeoDetect."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(GeoDetectError):
    """Invalid or missing configuration, detected before any processing."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="CONFIGURATION_ERROR", details=details)


class SourceError(GeoDetectError):
    """Raster source read or tile download failure."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="SOURCE_ERROR", details=details)


class ClassifierError(GeoDetectError):
    """Inference failure on a window."""

    def __init__(self, message: str, window: Optional[Any] = None):
        details = {"window": window} if window is not None else {}
        super().__init__(message, error_code="CLASSIFIER_ERROR", details=details)


class SinkError(GeoDetectError):
    """Output cannot be opened or written."""

    def __init__(self, message: str, path: Optional[str] = None):
        details = {"path": path} if path else {}
        super().__init__(message, error_code="SINK_ERROR", details=details)


class RunCancelledError(GeoDetectError):
    """The run was cancelled before completion."""

    def __init__(self, message: str = "Run cancelled"):
        super().__init__(message, error_code="RUN_CANCELLED")
