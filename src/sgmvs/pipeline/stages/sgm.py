"""SGM stage: cost volume, path aggregation and best-depth extraction."""

import logging

import torch

from ...config import DepthMapConfig
from ...dense import (
    MAX_SCORE,
    DepthSimMap,
    aggregate_volume,
    aggregation_paths,
    build_cost_volume,
    extract_best_depth,
    score_to_similarity,
)
from ...device import DeviceContext
from ...profiling import timed_stage
from ..context import ViewInput

logger = logging.getLogger(__name__)


def run_sgm_stage(
    reference: ViewInput,
    targets: list[ViewInput],
    depths: torch.Tensor,
    config: DepthMapConfig,
    ctx: DeviceContext,
) -> DepthSimMap:
    """Estimate a coarse depth map for the reference view.

    Args:
        reference: Reference view.
        targets: Target views.
        depths: Depth hypotheses, shape (D,).
        config: Full configuration; the ``sgm`` section drives this stage.
        ctx: Device context.

    Returns:
        DepthSimMap at ``config.sgm.scale_level``, with similarities
        recovered from the path-averaged cost.
    """
    with timed_stage("sgm", logger):
        sgm = config.sgm
        ref_camera, ref_image = reference.at_level(sgm.scale_level)
        scaled = [target.at_level(sgm.scale_level) for target in targets]

        volume = build_cost_volume(
            ref_camera,
            ref_image,
            [camera for camera, _ in scaled],
            [image for _, image in scaled],
            depths,
            sgm,
            ctx,
            quiet=config.runtime.quiet,
        )

        if sgm.use_second_best and len(targets) >= 2:
            logger.debug("Optimizing the second-best score volume")
            raw = volume.second_best
        else:
            raw = volume.best
        no_information = (raw == MAX_SCORE).all(dim=2)

        aggregated = aggregate_volume(raw, sgm.filtering_axes, sgm.p1, sgm.p2, ctx)
        del volume

        extracted = extract_best_depth(aggregated, depths, interpolate=sgm.interpolate)
        num_paths = len(aggregation_paths(sgm.filtering_axes))
        similarity = score_to_similarity(extracted.similarity / num_paths)

        depth = torch.where(
            no_information,
            torch.full_like(extracted.depth, float("nan")),
            extracted.depth,
        )
        similarity = torch.where(no_information, torch.ones_like(similarity), similarity)

        logger.info(
            "SGM %s: %dx%d, %d hypotheses, %d/%d pixels with information",
            reference.name,
            ref_image.shape[2],
            ref_image.shape[1],
            depths.shape[0],
            int((~no_information).sum()),
            no_information.numel(),
        )
        return DepthSimMap(depth=depth, similarity=similarity)
