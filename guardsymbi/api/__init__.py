"""
API - HTTP surface of the engine
"""

from .server import create_app, setup_cors
from .runs import router, set_engine

__all__ = [
    "create_app",
    "setup_cors",
    "router",
    "set_engine",
]
