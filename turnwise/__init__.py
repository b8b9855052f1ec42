"""Turn-based agent conversation runtime."""

__version__ = "0.1.0"
