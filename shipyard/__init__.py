"""Shipyard - continuous deployment setup for Azure projects."""

__version__ = "0.1.0"
