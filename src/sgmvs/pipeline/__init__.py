"""Pipeline orchestration for single-view depth map estimation.

Provides the view inputs, result container, and the runner that chains the
SGM, refinement, fusion and optimization stages.
"""

from .context import DepthMapResult, ViewInput
from .runner import estimate_depth_map

__all__ = [
    "DepthMapResult",
    "ViewInput",
    "estimate_depth_map",
]
