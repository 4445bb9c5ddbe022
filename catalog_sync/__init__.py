"""Discover, filter, merge and translate AI-model metadata from public catalogs."""

__version__ = "0.1.0"
