"""goaudit: static analysis of parsed Go programs."""

__version__ = "0.4.0"
