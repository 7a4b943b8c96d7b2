"""Refinement stage: per-target refinement followed by fusion."""

import logging
import sys

import torch
from tqdm import tqdm

from ...config import DepthMapConfig
from ...dense import DepthSimMap, refine_depth_sim_map
from ...device import DeviceContext
from ...fusion import fuse_depth_sim_maps, select_best_depth_sim_map
from ...profiling import timed_stage
from ..context import ViewInput

logger = logging.getLogger(__name__)


def run_refine_stage(
    reference: ViewInput,
    targets: list[ViewInput],
    seed: DepthSimMap,
    pixel_size: torch.Tensor,
    config: DepthMapConfig,
    ctx: DeviceContext,
) -> list[DepthSimMap]:
    """Refine the seed map against each target view independently.

    Args:
        reference: Reference view.
        targets: Target views.
        seed: Seed map at ``config.refine.scale_level``.
        pixel_size: Pixel size map at the seed depth.
        config: Full configuration.
        ctx: Device context.

    Returns:
        One refined map per target, in target order.
    """
    with timed_stage("refine", logger):
        level = config.refine.scale_level
        ref_camera, ref_image = reference.at_level(level)

        refined = []
        for target in tqdm(
            targets,
            desc="Refinement",
            disable=config.runtime.quiet or not sys.stderr.isatty(),
            unit="view",
            leave=False,
        ):
            ctx.check_cancelled()
            tgt_camera, tgt_image = target.at_level(level)
            refined.append(
                refine_depth_sim_map(
                    ref_camera,
                    ref_image,
                    tgt_camera,
                    tgt_image,
                    seed.depth,
                    pixel_size,
                    config.refine,
                    ctx,
                )
            )
        return refined


def run_fusion_stage(
    seed: DepthSimMap,
    refined: list[DepthSimMap],
    pixel_size: torch.Tensor,
    config: DepthMapConfig,
) -> DepthSimMap:
    """Fuse the refined maps around the seed.

    With fusion disabled, keeps per pixel the best-scoring refined depth.
    """
    with timed_stage("fusion", logger):
        if not config.fusion.enabled:
            logger.debug("Fusion disabled; selecting best refined depth per pixel")
            return select_best_depth_sim_map(refined)
        return fuse_depth_sim_maps(seed, refined, pixel_size, config.fusion)
