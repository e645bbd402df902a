"""Local-first mirror of a remote photo library."""

__version__ = "0.1.0"
