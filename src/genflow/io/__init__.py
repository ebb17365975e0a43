"""Incremental I/O for model output."""
