"""Tessera: cross-project pattern memory and confidence calibration."""

__version__ = "0.1.0"
