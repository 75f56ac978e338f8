"""HTTP API for devkb."""

from .api import create_app

__all__ = ["create_app"]
