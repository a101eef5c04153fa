"""Bear Valley run checks backend."""

__version__ = "0.1.0"
