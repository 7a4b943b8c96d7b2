"""Winner-take-all depth extraction with sub-sample refinement."""

import torch
from torch.profiler import record_function

from ..errors import DepthMapConfigError
from .depth_sim_map import DepthSimMap
from .interpolation import fit_parabola


def _gather(volume: torch.Tensor, index: torch.Tensor) -> torch.Tensor:
    return torch.gather(volume, 2, index.unsqueeze(-1)).squeeze(-1)


def extract_best_depth(
    volume: torch.Tensor,
    depths: torch.Tensor,
    interpolate: bool = True,
    invalid_cost: float | None = None,
) -> DepthSimMap:
    """Extract the per-pixel best depth from a cost volume.

    Takes the minimum along the depth axis (ties resolve to the lowest
    index). With ``interpolate``, fits a parabola through the (depth, cost)
    pairs at the minimum and its two neighbours; pixels at the first or last
    hypothesis, or with a non-convex neighbourhood, keep the discrete depth.

    Args:
        volume: Costs, shape (H, W, D), uint8 or float. Lower = better.
        depths: Hypotheses, shape (D,) or per-pixel (H, W, D).
        interpolate: Refine the minimum with a parabola fit.
        invalid_cost: Pixels whose best cost is >= this get NaN depth.

    Returns:
        DepthSimMap whose similarity holds the cost at the (interpolated)
        minimum, in the units of ``volume``.
    """
    with record_function("extract_best_depth"):
        H, W, D = volume.shape
        cost = volume.float()

        if depths.dim() == 1:
            if depths.shape[0] != D:
                raise DepthMapConfigError(
                    f"Extraction: {depths.shape[0]} hypotheses for a volume "
                    f"with {D} slices"
                )
            depth_volume = depths.view(1, 1, D).expand(H, W, D)
        elif tuple(depths.shape) == (H, W, D):
            depth_volume = depths
        else:
            raise DepthMapConfigError(
                f"Extraction: hypotheses of shape {tuple(depths.shape)} do not "
                f"match volume {tuple(volume.shape)}"
            )

        best_idx = torch.argmin(cost, dim=2)  # (H, W), first minimum
        best_cost = _gather(cost, best_idx)
        best_depth = _gather(depth_volume, best_idx)

        depth_map = best_depth
        sim_map = best_cost
        if interpolate and D >= 3:
            idx_minus = (best_idx - 1).clamp(min=0)
            idx_plus = (best_idx + 1).clamp(max=D - 1)
            x = torch.stack(
                [_gather(depth_volume, idx_minus), best_depth, _gather(depth_volume, idx_plus)]
            )
            y = torch.stack([_gather(cost, idx_minus), best_cost, _gather(cost, idx_plus)])
            vertex_x, vertex_y, valid = fit_parabola(x, y)

            interior = (best_idx > 0) & (best_idx < D - 1)
            use_fit = interior & valid
            depth_map = torch.where(use_fit, vertex_x, best_depth)
            sim_map = torch.where(use_fit, vertex_y, best_cost)

        if invalid_cost is not None:
            invalid = best_cost >= invalid_cost
            depth_map = torch.where(
                invalid, torch.full_like(depth_map, float("nan")), depth_map
            )

        return DepthSimMap(depth=depth_map.contiguous(), similarity=sim_map.contiguous())
