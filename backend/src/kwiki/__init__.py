"""kwiki: multi-provider AI wiki documentation generator."""

__version__ = "0.1.0"
