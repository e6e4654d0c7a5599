"""Bridge agent driving a single target session on behalf of a remote bridge server."""

__all__ = ["__version__"]

__version__ = "0.1.0"
