"""Fusion of per-target refined depth maps by kernel voting."""

import logging

import torch
from torch.profiler import record_function

from .config import FusionConfig
from .dense.depth_sim_map import DepthSimMap
from .dense.interpolation import fit_parabola
from .errors import check_same_shape

logger = logging.getLogger(__name__)


def similarity_weight(similarity: torch.Tensor) -> torch.Tensor:
    """Vote weight of a similarity: 1 for a perfect match, 0 for none."""
    return ((1.0 - similarity) * 0.5).clamp(0.0, 1.0)


def fuse_depth_sim_maps(
    reference: DepthSimMap,
    others: list[DepthSimMap],
    pixel_size: torch.Tensor,
    config: FusionConfig,
) -> DepthSimMap:
    """Fuse several depth maps of one view around a reference map.

    Depth offsets from the reference are sampled at
    ``s * pixel_size / samples_per_pixel_size`` for integer s in
    [-samples_half, samples_half]. Each valid map votes at every sample with
    ``w * exp(-(i - s)^2 / (2 sigma^2))`` where i is its own offset in
    samples and w its similarity weight. The best sample (first maximum) is
    refined with a parabola through its neighbours' votes.

    Args:
        reference: Reference map (typically the upscaled SGM map), (H, W).
        others: Maps to fuse, each (H, W).
        pixel_size: World size of one pixel at the reference depth, (H, W).
        config: Fusion configuration.

    Returns:
        Fused map. Pixels with an invalid reference or without any vote keep
        the reference values.
    """
    with record_function("fuse_depth_sim_maps"), torch.no_grad():
        check_same_shape(
            "fusion",
            reference=reference.depth,
            pixel_size=pixel_size,
            **{f"map_{i}": m.depth for i, m in enumerate(others)},
        )
        if not others:
            return reference.clone()

        S = config.samples_half
        two_sigma_sq = 2.0 * config.sigma**2
        step = pixel_size / config.samples_per_pixel_size

        ref_valid = torch.isfinite(reference.depth) & torch.isfinite(step) & (step > 0)
        safe_ref = torch.where(ref_valid, reference.depth, torch.zeros_like(step))
        safe_step = torch.where(ref_valid, step, torch.ones_like(step))

        positions = []
        weights = []
        for m in others:
            valid = ref_valid & torch.isfinite(m.depth)
            positions.append(
                torch.where(valid, (safe_ref - m.depth) / safe_step, torch.zeros_like(step))
            )
            weights.append(
                torch.where(valid, similarity_weight(m.similarity), torch.zeros_like(step))
            )
        positions = torch.stack(positions)  # (K, H, W)
        weights = torch.stack(weights)
        similarities = torch.stack([m.similarity for m in others])

        neg_inf = torch.full_like(step, float("-inf"))
        best_vote = neg_inf.clone()
        best_s = torch.full_like(step, float(-S))
        left_vote = neg_inf.clone()
        right_vote = neg_inf.clone()
        prev_vote = neg_inf.clone()

        for s in range(-S, S + 1):
            vote = (weights * torch.exp(-((positions - s) ** 2) / two_sigma_sq)).sum(0)
            right_vote = torch.where(best_s == s - 1, vote, right_vote)

            # Strict > keeps the first maximum
            better = vote > best_vote
            best_vote = torch.where(better, vote, best_vote)
            best_s = torch.where(better, torch.full_like(best_s, float(s)), best_s)
            left_vote = torch.where(better, prev_vote, left_vote)
            right_vote = torch.where(better, neg_inf, right_vote)
            prev_vote = vote

        # Parabola through the votes around the best sample, as a minimum of -vote
        x = torch.stack([best_s - 1.0, best_s, best_s + 1.0])
        y = -torch.stack([left_vote, best_vote, right_vote])
        vertex_s, _, valid_fit = fit_parabola(x, y)
        has_neighbours = torch.isfinite(left_vote) & torch.isfinite(right_vote)
        s_star = torch.where(valid_fit & has_neighbours, vertex_s, best_s)

        kernel = weights * torch.exp(-((positions - s_star) ** 2) / two_sigma_sq)
        kernel_sum = kernel.sum(0)
        fused_sim = (kernel * similarities).sum(0) / kernel_sum.clamp(min=1e-12)

        fuse = ref_valid & (best_vote > 0) & (kernel_sum > 0)
        depth = torch.where(fuse, safe_ref - s_star * safe_step, reference.depth)
        similarity = torch.where(fuse, fused_sim, reference.similarity)

        logger.debug(
            "Fused %d maps: %d/%d pixels voted",
            len(others),
            int(fuse.sum()),
            fuse.numel(),
        )
        return DepthSimMap(depth=depth, similarity=similarity)


def select_best_depth_sim_map(maps: list[DepthSimMap]) -> DepthSimMap:
    """Per pixel, the valid depth with the lowest similarity across maps.

    Used in place of fusion when fusion is disabled.
    """
    if not maps:
        raise ValueError("select_best_depth_sim_map needs at least one map")
    check_same_shape("selection", **{f"map_{i}": m.depth for i, m in enumerate(maps)})
    best = maps[0].clone()
    for m in maps[1:]:
        better = torch.isfinite(m.depth) & (
            ~torch.isfinite(best.depth) | (m.similarity < best.similarity)
        )
        best = DepthSimMap(
            depth=torch.where(better, m.depth, best.depth),
            similarity=torch.where(better, m.similarity, best.similarity),
        )
    return best
