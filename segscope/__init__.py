"""Inspect Lucene index archives and report commit and segment statistics."""

__version__ = "0.1.0"

__all__ = ["__version__"]
