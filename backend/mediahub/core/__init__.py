"""Core configuration, infrastructure and shared utilities."""
