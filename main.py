#!/usr/bin/env python3
"""
GeoDetect - Sliding window detection on georeferenced rasters

Main entry point for the command line interface.
"""

from geodetect.cli import app

if __name__ == "__main__":
    app()
