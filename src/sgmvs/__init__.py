"""Multi-view depth map estimation with semi-global matching and refinement."""

from .config import (
    DepthMapConfig,
    FusionConfig,
    OptimizationConfig,
    QualityPreset,
    RefineConfig,
    RuntimeConfig,
    SgmConfig,
)
from .dense import (
    CostVolume,
    DepthSimMap,
    aggregate_volume,
    build_cost_volume,
    extract_best_depth,
    generate_depth_hypotheses,
    refine_depth_sim_map,
)
from .device import DeviceContext
from .errors import DepthMapConfigError, DeviceMemoryError, RunCancelledError
from .fusion import fuse_depth_sim_maps
from .optimize import compute_image_variance, optimize_depth_sim_map
from .pipeline import DepthMapResult, ViewInput, estimate_depth_map
from .projection import PinholeCamera, ProjectionModel
from .pyramid import ImagePyramid

__version__ = "0.1.0"

__all__ = [
    "DepthMapConfig",
    "SgmConfig",
    "RefineConfig",
    "FusionConfig",
    "OptimizationConfig",
    "RuntimeConfig",
    "QualityPreset",
    "DepthMapConfigError",
    "DeviceMemoryError",
    "RunCancelledError",
    "DeviceContext",
    "PinholeCamera",
    "ProjectionModel",
    "ImagePyramid",
    "CostVolume",
    "DepthSimMap",
    "generate_depth_hypotheses",
    "build_cost_volume",
    "aggregate_volume",
    "extract_best_depth",
    "refine_depth_sim_map",
    "fuse_depth_sim_maps",
    "compute_image_variance",
    "optimize_depth_sim_map",
    "ViewInput",
    "DepthMapResult",
    "estimate_depth_map",
]
