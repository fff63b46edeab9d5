"""
Models module
Export all models
"""

from app.models.session import Segment, Session

__all__ = [
    "Session",
    "Segment",
]
