"""REST and server-sent-event surface over the workflow manager."""

from .app import create_app

__all__ = ["create_app"]
