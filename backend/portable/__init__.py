"""Portable: bookmarking backend with content extraction and AI enrichment."""

__version__ = "1.0.0"
