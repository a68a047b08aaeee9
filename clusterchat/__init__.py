"""Chat server and terminal client exchanging JSON over TCP, with MySQL storage and Redis pub/sub."""

__version__ = "0.1.0"
__all__ = ["__version__"]