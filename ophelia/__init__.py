"""Multi-provider streaming chat completion core."""

__version__ = "0.1.0"
