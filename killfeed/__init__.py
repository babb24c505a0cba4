"""Killfeed ingestion for Deadside game servers."""

__version__ = "0.1.0"
