"""Reference sync server for Speak-EZ.

Serves the push/pull endpoints with FastAPI, for development and tests.
"""

from .app import ServerState, create_app

__all__ = ["ServerState", "create_app"]
