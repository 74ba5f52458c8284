"""Telemetry ingestion and energy analytics backend for home energy monitors."""

__version__ = "0.1.0"
