"""
GeoDetect - Sliding window detection on georeferenced rasters

Scans a raster (local file or tiled map service) with a fixed-size window
classifier and writes the geolocated detections to a vector layer.
"""

__version__ = "1.0.0"
__author__ = "GeoDetect Team"
__description__ = "Sliding window detection on georeferenced rasters"
