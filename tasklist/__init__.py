"""Hierarchical task lists with tags, typed custom attributes and search."""

__version__ = "1.0.0"
