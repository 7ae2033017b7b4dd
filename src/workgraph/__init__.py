"""Task dependency graph and worker coordination over a shared SQLite store."""

__version__ = "0.1.0"
