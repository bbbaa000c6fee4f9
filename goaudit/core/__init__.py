"""Core enums, errors, configuration and version helpers."""
