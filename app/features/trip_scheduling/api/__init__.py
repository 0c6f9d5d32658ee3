"""
HTTP API for trip scheduling.
"""

from .router import router

__all__ = ["router"]
