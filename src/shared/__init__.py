"""Shared constants and error types."""
