"""JSON web surface for familyledger."""
from __future__ import annotations

from .application import create_app, status_for

__all__ = ["create_app", "status_for"]
