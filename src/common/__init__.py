"""Shared helpers: logging, configuration and path handling."""
