"""Finacra compliance tracker: notification and enrichment pipelines."""

__version__ = "1.0.0"
