"""hookwatch - webhook delivery monitor."""

__version__ = "1.0.0"
