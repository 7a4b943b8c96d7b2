"""Plane sweep cost volume construction over memory-bounded depth cells."""

import logging
import sys
from dataclasses import dataclass

import torch
from torch.profiler import record_function
from tqdm import tqdm

from ..config import SgmConfig
from ..device import DeviceContext
from ..errors import DepthMapConfigError, DeviceMemoryError
from ..projection.pinhole import PinholeCamera
from .similarity import (
    MAX_SCORE,
    compute_patch_similarity,
    make_pixel_grid,
    similarity_to_score,
)

logger = logging.getLogger(__name__)

# float32 temporaries alive per (pixel, hypothesis) while a cell is scored:
# ray points, projected pixels, warped Lab, validity, six window moments and
# the per-offset weight and product buffers.
_FLOATS_PER_VOXEL = 24


def generate_depth_hypotheses(
    d_min: float,
    d_max: float,
    num_depths: int,
    spacing: str = "linear",
    device: str | torch.device = "cpu",
) -> torch.Tensor:
    """Generate ordered depth hypotheses.

    Args:
        d_min: Minimum plane depth.
        d_max: Maximum plane depth.
        num_depths: Number of depth hypotheses.
        spacing: "linear" (uniform in depth) or "inverse" (uniform in
            inverse depth, denser near the camera).
        device: Device for the output tensor.

    Returns:
        Depth values, shape (D,), float32, increasing from d_min to d_max
        (inclusive of both endpoints).
    """
    if num_depths < 1:
        raise DepthMapConfigError(f"num_depths must be >= 1, got {num_depths}")
    if not 0 < d_min <= d_max:
        raise DepthMapConfigError(
            f"Depth range must satisfy 0 < d_min <= d_max, got ({d_min}, {d_max})"
        )
    if spacing == "linear":
        return torch.linspace(d_min, d_max, num_depths, device=device)
    if spacing == "inverse":
        inv = torch.linspace(1.0 / d_min, 1.0 / d_max, num_depths, device=device)
        return 1.0 / inv
    raise DepthMapConfigError(f"Unknown depth spacing: {spacing!r}")


@dataclass(frozen=True)
class DepthCell:
    """Contiguous range of hypotheses scored in one batch."""

    start: int
    count: int

    @property
    def stop(self) -> int:
        return self.start + self.count


@dataclass
class CostVolume:
    """Best and second-best scores over all targets.

    Attributes:
        best: Lowest score over targets, shape (H, W, D), uint8.
        second_best: Second lowest score, shape (H, W, D), uint8.
        depths: Hypotheses the volume was computed for, shape (D,).
    """

    best: torch.Tensor
    second_best: torch.Tensor
    depths: torch.Tensor

    @property
    def shape(self) -> tuple[int, int, int]:
        return tuple(self.best.shape)


def working_bytes_per_depth(height: int, width: int) -> int:
    """Working memory needed to score one hypothesis for a full image."""
    return height * width * _FLOATS_PER_VOXEL * 4


def plan_depth_cells(
    num_depths: int,
    height: int,
    width: int,
    memory_budget_bytes: int,
    max_depths_per_cell: int | None = None,
) -> list[DepthCell]:
    """Split the hypothesis range into cells that fit the memory budget.

    Args:
        num_depths: Number of hypotheses D.
        height: Image height.
        width: Image width.
        memory_budget_bytes: Working memory one cell may use.
        max_depths_per_cell: Explicit cell size. Must not exceed what the
            budget holds.

    Returns:
        Cells covering [0, D) in increasing order.

    Raises:
        DepthMapConfigError: If the budget cannot hold one hypothesis or the
            explicit cell size exceeds the budget.
    """
    per_depth = working_bytes_per_depth(height, width)
    capacity = memory_budget_bytes // per_depth
    if capacity < 1:
        raise DepthMapConfigError(
            f"Memory budget of {memory_budget_bytes} bytes cannot hold one "
            f"{width}x{height} hypothesis ({per_depth} bytes needed)"
        )
    if max_depths_per_cell is not None:
        if max_depths_per_cell < 1:
            raise DepthMapConfigError(
                f"max_depths_per_cell must be >= 1, got {max_depths_per_cell}"
            )
        if max_depths_per_cell > capacity:
            raise DepthMapConfigError(
                f"max_depths_per_cell={max_depths_per_cell} exceeds the "
                f"{capacity} hypotheses a {memory_budget_bytes}-byte budget "
                f"holds at {width}x{height}"
            )
        capacity = max_depths_per_cell

    cell_size = min(capacity, num_depths)
    return [
        DepthCell(start, min(cell_size, num_depths - start))
        for start in range(0, num_depths, cell_size)
    ]


def _score_cell(
    ref_camera: PinholeCamera,
    ref_image: torch.Tensor,
    tgt_cameras: list[PinholeCamera],
    tgt_images: list[torch.Tensor],
    cell_depths: torch.Tensor,
    config: SgmConfig,
    pixel_grid: torch.Tensor,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Best and second-best scores for one cell, shape (B, H, W) each."""
    _, H, W = ref_image.shape
    B = cell_depths.shape[0]
    depth_maps = cell_depths.view(B, 1, 1).expand(B, H, W)

    best = torch.full(
        (B, H, W), MAX_SCORE, dtype=torch.uint8, device=ref_image.device
    )
    second = best.clone()

    for tgt_camera, tgt_image in zip(tgt_cameras, tgt_images):
        similarity = compute_patch_similarity(
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
        score = similarity_to_score(similarity)

        # Strict < keeps the first-seen value on ties
        better = score < best
        second_better = ~better & (score < second)
        second = torch.where(better, best, torch.where(second_better, score, second))
        best = torch.where(better, score, best)

    return best, second


def build_cost_volume(
    ref_camera: PinholeCamera,
    ref_image: torch.Tensor,
    tgt_cameras: list[PinholeCamera],
    tgt_images: list[torch.Tensor],
    depths: torch.Tensor,
    config: SgmConfig,
    ctx: DeviceContext | None = None,
    quiet: bool = False,
) -> CostVolume:
    """Build best / second-best score volumes for one reference view.

    Hypotheses are processed in memory-bounded cells, in increasing depth
    order, and target views in the order given. The cell plan is computed
    (and validated) before any kernel runs.

    Args:
        ref_camera: Reference camera, matching ``ref_image``.
        ref_image: Reference Lab image, shape (3, H, W), float32.
        tgt_cameras: Target cameras (len T).
        tgt_images: Target Lab images, each shape (3, H_t, W_t), float32.
        depths: Depth hypotheses, shape (D,), float32.
        config: SGM configuration (window and cell sizing).
        ctx: Device context for the memory budget and cancellation.
        quiet: Suppress the progress bar.

    Returns:
        CostVolume with uint8 volumes of shape (H, W, D).

    Raises:
        DepthMapConfigError: On inconsistent inputs or unusable cell sizing.
        DeviceMemoryError: If the device runs out of memory for a cell.
        RunCancelledError: If the context is cancelled between cells.
    """
    with record_function("build_cost_volume"), torch.no_grad():
        _, H, W = ref_image.shape
        D = depths.shape[0]
        device = ref_image.device
        ctx = ctx if ctx is not None else DeviceContext(device)

        if len(tgt_cameras) != len(tgt_images):
            raise DepthMapConfigError(
                f"Got {len(tgt_cameras)} target cameras but {len(tgt_images)} images"
            )
        if not tgt_cameras:
            raise DepthMapConfigError("Cost volume needs at least one target view")
        if depths.dim() != 1:
            raise DepthMapConfigError(
                f"Cost volume hypotheses must have shape (D,), got {tuple(depths.shape)}"
            )
        if ref_camera.image_size != (W, H):
            raise DepthMapConfigError(
                f"Reference camera image size {ref_camera.image_size} does not "
                f"match reference image {W}x{H}"
            )
        ctx.check_device(ref_image, "Reference image")
        for tgt_camera, tgt_image in zip(tgt_cameras, tgt_images):
            ctx.check_device(tgt_image, f"Target image {tgt_camera.name!r}")

        cells = plan_depth_cells(
            D, H, W, ctx.effective_budget_bytes(), config.max_depths_per_cell
        )
        logger.debug(
            "Cost volume %dx%dx%d: %d targets, %d cells of up to %d hypotheses",
            W,
            H,
            D,
            len(tgt_cameras),
            len(cells),
            cells[0].count,
        )

        try:
            best = torch.full((H, W, D), MAX_SCORE, dtype=torch.uint8, device=device)
            second = torch.full_like(best, MAX_SCORE)
        except torch.cuda.OutOfMemoryError as e:
            raise DeviceMemoryError(
                f"Out of device memory allocating a {W}x{H}x{D} cost volume"
            ) from e

        pixel_grid = make_pixel_grid(H, W, device=device)
        show_progress = not quiet and sys.stderr.isatty()
        for index, cell in enumerate(
            tqdm(cells, desc="Cost volume", unit="cell", disable=not show_progress)
        ):
            ctx.check_cancelled()
            try:
                cell_best, cell_second = _score_cell(
                    ref_camera,
                    ref_image,
                    tgt_cameras,
                    tgt_images,
                    depths[cell.start : cell.stop],
                    config,
                    pixel_grid,
                )
            except torch.cuda.OutOfMemoryError as e:
                raise DeviceMemoryError(
                    f"Out of device memory in cost volume cell {index} "
                    f"(hypotheses {cell.start}..{cell.stop - 1} at {W}x{H}); "
                    f"retry with a smaller max_depths_per_cell"
                ) from e

            best[..., cell.start : cell.stop] = cell_best.permute(1, 2, 0)
            second[..., cell.start : cell.stop] = cell_second.permute(1, 2, 0)

        return CostVolume(best=best, second_best=second, depths=depths)
