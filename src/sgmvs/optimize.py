"""Texture-aware depth map optimization (data term vs. smoothness term)."""

import logging

import torch
import torch.nn.functional as F
from torch.profiler import record_function

from .config import OptimizationConfig
from .dense.depth_sim_map import DepthSimMap
from .device import DeviceContext
from .errors import check_same_shape
from .fusion import similarity_weight

logger = logging.getLogger(__name__)


def compute_image_variance(image: torch.Tensor, radius: int = 1) -> torch.Tensor:
    """Local variance of the L channel over a (2r+1)^2 window.

    Args:
        image: Lab image, shape (3, H, W), float32.
        radius: Window half size.

    Returns:
        Variance, shape (H, W), float32, >= 0. Borders use replicated pixels.
    """
    k = 2 * radius + 1
    lum = image[0:1].unsqueeze(0)  # (1, 1, H, W)
    padded = F.pad(lum, (radius, radius, radius, radius), mode="replicate")
    mean = F.avg_pool2d(padded, k, stride=1)
    mean_sq = F.avg_pool2d(padded * padded, k, stride=1)
    return (mean_sq - mean * mean).clamp(min=0.0)[0, 0]


def _neighbour_mean(depth: torch.Tensor) -> torch.Tensor:
    """Mean of the valid 4-neighbours of each pixel; NaN where there are none."""
    valid = torch.isfinite(depth)
    values = torch.where(valid, depth, torch.zeros_like(depth))
    padded = F.pad(values.unsqueeze(0), (1, 1, 1, 1))[0]
    counts = F.pad(valid.float().unsqueeze(0), (1, 1, 1, 1))[0]

    total = padded[:-2, 1:-1] + padded[2:, 1:-1] + padded[1:-1, :-2] + padded[1:-1, 2:]
    count = counts[:-2, 1:-1] + counts[2:, 1:-1] + counts[1:-1, :-2] + counts[1:-1, 2:]
    return torch.where(
        count > 0, total / count.clamp(min=1.0), torch.full_like(total, float("nan"))
    )


def _clip_step(step: torch.Tensor, max_step: torch.Tensor) -> torch.Tensor:
    clipped = torch.maximum(torch.minimum(step, max_step), -max_step)
    return torch.nan_to_num(clipped, nan=0.0, posinf=0.0, neginf=0.0)


def optimize_depth_sim_map(
    seed: DepthSimMap,
    refined: DepthSimMap,
    variance: torch.Tensor,
    pixel_size: torch.Tensor,
    config: OptimizationConfig,
    ctx: DeviceContext | None = None,
) -> DepthSimMap:
    """Smooth a refined depth map where the image lacks texture.

    Each Jacobi iteration moves every pixel towards its refined depth
    (weighted by texture and match quality) and towards the mean of its
    valid 4-neighbours (weighted by the lack of texture):

        d += v * f * clip(refined - d) + (1 - v) * clip(smooth - d)

    with v = sigmoid((variance - threshold) / softness) and
    f = (1 - sim_refined) / 2. Steps are clipped to
    ``max_step_fraction * pixel_size``.

    Args:
        seed: Coarse map, used where the refined map has no depth.
        refined: Refined (or fused) map.
        variance: Local image variance, shape (H, W).
        pixel_size: World size of one pixel at the seed depth, shape (H, W).
        config: Optimizer configuration.
        ctx: Device context for cancellation, checked between iterations.

    Returns:
        Optimized map. Its similarity is the refined similarity (seed
        similarity where refined is invalid).
    """
    with record_function("optimize_depth_sim_map"), torch.no_grad():
        check_same_shape(
            "optimization",
            seed=seed.depth,
            refined=refined.depth,
            variance=variance,
            pixel_size=pixel_size,
        )

        refined_valid = refined.valid_mask()
        target = torch.where(refined_valid, refined.depth, seed.depth)
        similarity = torch.where(refined_valid, refined.similarity, seed.similarity)

        texture = torch.sigmoid(
            (variance - config.variance_threshold) / config.variance_softness
        )
        data_weight = texture * similarity_weight(similarity)
        smooth_weight = 1.0 - texture
        max_step = config.max_step_fraction * pixel_size

        depth = target.clone()
        valid = torch.isfinite(depth)
        for _ in range(config.iterations):
            if ctx is not None:
                ctx.check_cancelled()
            smooth = _neighbour_mean(depth)
            smooth = torch.where(torch.isfinite(smooth), smooth, seed.depth)
            update = data_weight * _clip_step(target - depth, max_step)
            update = update + smooth_weight * _clip_step(smooth - depth, max_step)
            depth = torch.where(valid, depth + update, depth)

        if config.iterations > 0:
            logger.debug(
                "Optimized %d valid pixels over %d iterations",
                int(valid.sum()),
                config.iterations,
            )
        return DepthSimMap(depth=depth, similarity=similarity)
