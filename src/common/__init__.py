"""Shared helpers (logging, HTTP) used across the converter and CLI."""
