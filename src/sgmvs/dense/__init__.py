"""Dense stereo: plane sweep cost volumes, SGM aggregation and refinement."""

from .aggregation import aggregate_path, aggregate_volume, aggregation_paths
from .depth_sim_map import (
    DepthSimMap,
    compute_pixel_size_map,
    load_depth_sim_map,
    save_depth_sim_map,
)
from .extraction import extract_best_depth
from .interpolation import fit_parabola
from .plane_sweep import (
    CostVolume,
    DepthCell,
    build_cost_volume,
    generate_depth_hypotheses,
    plan_depth_cells,
    working_bytes_per_depth,
)
from .refine import refine_depth_sim_map
from .similarity import (
    MAX_SCORE,
    NO_INFORMATION_SIMILARITY,
    compute_bilateral_ncc,
    compute_patch_similarity,
    score_to_similarity,
    similarity_to_score,
    warp_target_image,
)

__all__ = [
    "MAX_SCORE",
    "NO_INFORMATION_SIMILARITY",
    "compute_bilateral_ncc",
    "compute_patch_similarity",
    "warp_target_image",
    "similarity_to_score",
    "score_to_similarity",
    "generate_depth_hypotheses",
    "DepthCell",
    "CostVolume",
    "working_bytes_per_depth",
    "plan_depth_cells",
    "build_cost_volume",
    "aggregation_paths",
    "aggregate_path",
    "aggregate_volume",
    "fit_parabola",
    "extract_best_depth",
    "DepthSimMap",
    "save_depth_sim_map",
    "load_depth_sim_map",
    "compute_pixel_size_map",
    "refine_depth_sim_map",
]
