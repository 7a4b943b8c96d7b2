"""Optimization stage: texture-aware smoothing of the fused map."""

import logging

import torch

from ...config import DepthMapConfig
from ...dense import DepthSimMap
from ...device import DeviceContext
from ...optimize import compute_image_variance, optimize_depth_sim_map
from ...profiling import timed_stage
from ..context import ViewInput

logger = logging.getLogger(__name__)


def run_optimization_stage(
    reference: ViewInput,
    seed: DepthSimMap,
    fused: DepthSimMap,
    pixel_size: torch.Tensor,
    config: DepthMapConfig,
    ctx: DeviceContext,
) -> DepthSimMap:
    """Run the optimizer on the fused map at the refinement level."""
    with timed_stage("optimization", logger):
        _, ref_image = reference.at_level(config.refine.scale_level)
        variance = compute_image_variance(ref_image)
        return optimize_depth_sim_map(
            seed, fused, variance, pixel_size, config.optimization, ctx
        )
