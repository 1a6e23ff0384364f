"""Capture a page with a headless browser and replay a rehosted snapshot."""

__version__ = "0.1.0"
