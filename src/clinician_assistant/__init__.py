"""Clinician Assistant natural-language query pipeline."""

__version__ = "0.1.0"
