"""FastAPI application exposing the relay and its storage."""

from .app import create_app

__all__ = ["create_app"]
