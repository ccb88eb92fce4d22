"""Local-first persistence for the app snapshot."""

from .local_store import LocalStore

__all__ = ["LocalStore"]
