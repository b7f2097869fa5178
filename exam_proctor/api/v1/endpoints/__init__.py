"""API endpoints package."""

from . import (
    preflight,
    sessions,
)

__all__ = [
    "preflight",
    "sessions",
]
