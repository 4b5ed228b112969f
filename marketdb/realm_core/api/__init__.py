"""
HTTP API for the realm core (FastAPI).
"""

from .app import create_app
from .settings import ApiSettings

__all__ = ["ApiSettings", "create_app"]
