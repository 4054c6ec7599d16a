"""
Georeferencing of windows.
"""

from .geocoder import WGS84, Geocoder

__all__ = ["Geocoder", "WGS84"]
