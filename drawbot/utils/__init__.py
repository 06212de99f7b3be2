"""Shared helpers: atomic file writes, YAML loading, logging setup."""
