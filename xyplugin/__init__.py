"""xyOps event plugin that runs Python command blocks."""

__version__ = "1.0.0"
