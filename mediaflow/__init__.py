"""Lesson video processing pipeline and content review workflow."""

__version__ = "0.1.0"
