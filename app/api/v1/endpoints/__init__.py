"""
API endpoints module
"""

from . import analytics, health

__all__ = [
    "analytics",
    "health"
]
