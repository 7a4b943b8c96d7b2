"""Visualization outputs for depth map results."""

from .depth import (
    render_all_depth_maps,
    render_depth_map,
    render_similarity_map,
)

__all__ = [
    "render_all_depth_maps",
    "render_depth_map",
    "render_similarity_map",
]
