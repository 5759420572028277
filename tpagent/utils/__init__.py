"""Shared helpers: configuration and console logging."""
