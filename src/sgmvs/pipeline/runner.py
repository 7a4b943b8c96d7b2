"""Single-view depth map orchestration: SGM, refinement, fusion, optimization."""

import logging

import torch

from ..config import DepthMapConfig
from ..dense import compute_pixel_size_map
from ..device import DeviceContext
from ..errors import DepthMapConfigError, RunCancelledError
from .context import DepthMapResult, ViewInput
from .stages import (
    run_fusion_stage,
    run_optimization_stage,
    run_refine_stage,
    run_sgm_stage,
)

logger = logging.getLogger(__name__)


def estimate_depth_map(
    reference: ViewInput,
    targets: list[ViewInput],
    depths: torch.Tensor,
    config: DepthMapConfig | None = None,
    ctx: DeviceContext | None = None,
) -> DepthMapResult:
    """Estimate the depth map of a reference view against target views.

    Runs SGM at ``config.sgm.scale_level``, upscales the result to
    ``config.refine.scale_level``, refines it against every target, fuses
    the refined maps and optimizes the fused map. Disabled stages are
    skipped and leave their result fields unset.

    Args:
        reference: Reference view.
        targets: Target views, at least one.
        depths: Depth hypotheses for the SGM stage, shape (D,).
        config: Configuration; defaults to DepthMapConfig().
        ctx: Device context; built from ``config.runtime`` when omitted.

    Returns:
        DepthMapResult holding every map produced.

    Raises:
        DepthMapConfigError: On invalid inputs, before any kernel runs.
        DeviceMemoryError: If the device runs out of memory.
        RunCancelledError: If the run is cancelled through ``ctx``.
    """
    if config is None:
        config = DepthMapConfig()
    if ctx is None:
        ctx = DeviceContext.from_config(config.runtime)
    if not targets:
        raise DepthMapConfigError("estimate_depth_map needs at least one target view")

    # Fail on missing pyramid levels before any work starts
    levels = [config.sgm.scale_level]
    if config.refine.enabled:
        levels.append(config.refine.scale_level)
    for view in [reference, *targets]:
        for level in levels:
            view.at_level(level)

    logger.info(
        "Estimating depth for %s: %d targets, %d hypotheses in [%.3f, %.3f]",
        reference.name,
        len(targets),
        depths.shape[0],
        float(depths.min()),
        float(depths.max()),
    )

    try:
        sgm_map = run_sgm_stage(reference, targets, depths, config, ctx)
        result = DepthMapResult(sgm=sgm_map)
        if not config.refine.enabled:
            return result

        ref_camera, ref_image = reference.at_level(config.refine.scale_level)
        result.seed = sgm_map.upscale(ref_image.shape[1], ref_image.shape[2])
        pixel_size = compute_pixel_size_map(ref_camera, result.seed.depth)

        result.refined = run_refine_stage(
            reference, targets, result.seed, pixel_size, config, ctx
        )
        result.fused = run_fusion_stage(result.seed, result.refined, pixel_size, config)

        if config.optimization.enabled:
            result.optimized = run_optimization_stage(
                reference, result.seed, result.fused, pixel_size, config, ctx
            )
        return result
    except RunCancelledError:
        logger.warning("Depth map run for %s cancelled", reference.name)
        if ctx.device.type == "cuda":
            torch.cuda.empty_cache()
        raise
