"""Projection models for calibrated multi-view geometry."""

from .pinhole import PinholeCamera
from .protocol import ProjectionModel

__all__ = ["PinholeCamera", "ProjectionModel"]
