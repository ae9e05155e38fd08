"""
nit Reference Remote

FastAPI implementation of the server half of the nit protocol.
"""

from .app import create_app, run_server
from .storage import ServerStorage

__all__ = ["create_app", "run_server", "ServerStorage"]
