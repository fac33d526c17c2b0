"""
HTTP API
"""

from .app import app, create_app, install_runtime

__all__ = ["app", "create_app", "install_runtime"]
