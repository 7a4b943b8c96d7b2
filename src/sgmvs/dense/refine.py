"""Per-target local depth refinement around a seed depth map."""

import logging

import torch
from torch.profiler import record_function

from ..config import RefineConfig
from ..device import DeviceContext
from ..errors import check_same_shape
from ..projection.pinhole import PinholeCamera
from .depth_sim_map import DepthSimMap
from .interpolation import fit_parabola
from .plane_sweep import plan_depth_cells
from .similarity import (
    NO_INFORMATION_SIMILARITY,
    compute_patch_similarity,
    make_pixel_grid,
)

logger = logging.getLogger(__name__)


def refine_depth_sim_map(
    ref_camera: PinholeCamera,
    ref_image: torch.Tensor,
    tgt_camera: PinholeCamera,
    tgt_image: torch.Tensor,
    seed_depth: torch.Tensor,
    pixel_size: torch.Tensor,
    config: RefineConfig,
    ctx: DeviceContext | None = None,
) -> DepthSimMap:
    """Search a small window of depths around a seed against one target.

    Step z of N tests depth ``seed + (z - (N - 1) / 2) * pixel_size *
    step_scale``. The best step (strict <, first wins) is refined by a
    parabola through the similarities at the best step and its neighbours;
    steps at either end of the window, or a non-convex neighbourhood, keep
    the best step depth.

    Args:
        ref_camera: Reference camera, matching ``ref_image``.
        ref_image: Reference Lab image, shape (3, H, W), float32.
        tgt_camera: Target camera.
        tgt_image: Target Lab image, shape (3, H_t, W_t), float32.
        seed_depth: Seed plane depth, shape (H, W), float32. NaN = no seed.
        pixel_size: World size of one pixel at the seed, shape (H, W).
        config: Refinement configuration.
        ctx: Device context for the memory budget and cancellation.

    Returns:
        DepthSimMap at the reference resolution. NaN depth and similarity
        1.0 where the seed is NaN or no step produced information.
    """
    with record_function("refine_depth_sim_map"), torch.no_grad():
        _, H, W = ref_image.shape
        check_same_shape(
            "refinement",
            ref_image=ref_image[0],
            seed_depth=seed_depth,
            pixel_size=pixel_size,
        )
        device = seed_depth.device
        ctx = ctx if ctx is not None else DeviceContext(device)

        N = config.num_steps
        half = (N - 1) // 2
        step = pixel_size * config.step_scale
        seed_valid = torch.isfinite(seed_depth) & torch.isfinite(step)
        seed = torch.where(seed_valid, seed_depth, torch.full_like(seed_depth, float("nan")))

        def similarity_at(depth_maps: torch.Tensor) -> torch.Tensor:
            return compute_patch_similarity(
                ref_image,
                tgt_image,
                ref_camera,
                tgt_camera,
                depth_maps,
                config.wsh,
                config.gamma_c,
                config.gamma_p,
                pixel_grid=pixel_grid,
            )

        pixel_grid = make_pixel_grid(H, W, device=device)
        offsets = torch.arange(N, device=device, dtype=torch.float32) - half

        best_sim = torch.full((H, W), NO_INFORMATION_SIMILARITY, device=device)
        best_step = torch.full((H, W), half, dtype=torch.long, device=device)

        for cell in plan_depth_cells(N, H, W, ctx.effective_budget_bytes()):
            ctx.check_cancelled()
            cell_offsets = offsets[cell.start : cell.stop].view(-1, 1, 1)
            sims = similarity_at(seed.unsqueeze(0) + cell_offsets * step)
            for b in range(cell.count):
                better = sims[b] < best_sim
                best_sim = torch.where(better, sims[b], best_sim)
                best_step = torch.where(
                    better, torch.full_like(best_step, cell.start + b), best_step
                )

        has_info = best_sim < NO_INFORMATION_SIMILARITY
        best_depth = seed + (best_step - half).float() * step

        # Re-score the best step and its neighbours for the sub-step fit
        neighbours = torch.stack([best_step - 1, best_step, best_step + 1]).clamp(0, N - 1)
        neighbour_depths = seed.unsqueeze(0) + (neighbours - half).float() * step
        neighbour_sims = similarity_at(neighbour_depths)
        vertex_x, vertex_y, valid = fit_parabola(neighbour_depths, neighbour_sims)

        interior = (best_step > 0) & (best_step < N - 1)
        informative = (neighbour_sims < NO_INFORMATION_SIMILARITY).all(dim=0)
        use_fit = interior & valid & informative
        depth = torch.where(use_fit, vertex_x, best_depth)
        similarity = torch.where(use_fit, vertex_y, best_sim).clamp(-1.0, 1.0)

        invalid = ~seed_valid | ~has_info
        depth = torch.where(invalid, torch.full_like(depth, float("nan")), depth)
        similarity = torch.where(
            invalid, torch.full_like(similarity, NO_INFORMATION_SIMILARITY), similarity
        )

        logger.debug(
            "Refined %s against %s: %d/%d pixels valid",
            ref_camera.name,
            tgt_camera.name,
            int((~invalid).sum()),
            H * W,
        )
        return DepthSimMap(depth=depth, similarity=similarity)
