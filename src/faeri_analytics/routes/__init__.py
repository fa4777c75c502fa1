"""
Analytics routes.

Anonymous event ingestion plus authenticated per-page reporting.
"""

from .tracking import create_tracking_router

__all__ = ["create_tracking_router"]
