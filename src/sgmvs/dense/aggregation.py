"""Semi-global path aggregation of score volumes."""

import logging

import torch
from torch.profiler import record_function

from ..device import DeviceContext
from ..errors import DepthMapConfigError
from .similarity import MAX_SCORE

logger = logging.getLogger(__name__)

_AXIS_DIMS = {"Y": 0, "X": 1}


def aggregation_paths(filtering_axes: str) -> list[tuple[int, bool]]:
    """Scan (dim, reverse) pairs for an axis string such as "YX".

    Each axis letter contributes a forward and a reverse path.
    """
    paths = []
    for axis in filtering_axes:
        if axis not in _AXIS_DIMS:
            raise DepthMapConfigError(
                f"Unsupported filtering axis {axis!r}; expected letters from 'XY'"
            )
        dim = _AXIS_DIMS[axis]
        paths.append((dim, False))
        paths.append((dim, True))
    return paths


def _check_penalties(p1: float, p2: float) -> None:
    if p1 < 0 or p2 < 0 or p1 > p2:
        raise DepthMapConfigError(
            f"Aggregation penalties must satisfy 0 <= p1 <= p2, got p1={p1}, p2={p2}"
        )


def aggregate_path(
    volume: torch.Tensor,
    out: torch.Tensor,
    scan_dim: int,
    reverse: bool,
    p1: float,
    p2: float,
    ctx: DeviceContext | None = None,
) -> None:
    """Accumulate one scan path of the aggregated cost into ``out``.

    The volume is viewed with ``scan_dim`` first, so slices along the scan
    are (C, D) planes. The path contributes MAX_SCORE at its first slice.
    Each following slice gets

        cost[z] = raw[z] + min(prev[z], prev[z-1] + p1, prev[z+1] + p1,
                               best_prev + p2) - best_prev

    where ``prev`` is the previous slice's path cost (seeded with the raw
    first slice) and ``best_prev`` its minimum over z.

    Args:
        volume: Raw scores, shape (H, W, D), uint8 or float.
        out: Accumulator, shape (H, W, D), float32. Updated in place.
        scan_dim: 0 to scan along Y (rows), 1 to scan along X (columns).
        reverse: Scan from the last slice to the first.
        p1: Penalty for a one-hypothesis change between slices.
        p2: Penalty for a larger change.
        ctx: Device context for cancellation, checked between slices.
    """
    if scan_dim not in (0, 1):
        raise DepthMapConfigError(f"scan_dim must be 0 (Y) or 1 (X), got {scan_dim}")
    _check_penalties(p1, p2)

    raw = volume if scan_dim == 0 else volume.transpose(0, 1)
    agg = out if scan_dim == 0 else out.transpose(0, 1)
    S, C, D = raw.shape

    order = range(S - 1, -1, -1) if reverse else range(S)
    first = order[0]
    agg[first] += MAX_SCORE

    # Ping-pong buffers, swapped by reference each slice
    prev = raw[first].to(device=out.device, dtype=torch.float32).clone()
    cur = torch.empty_like(prev)
    best_prev = torch.empty(C, 1, device=out.device, dtype=torch.float32)

    for i in order[1:]:
        if ctx is not None:
            ctx.check_cancelled()
        torch.amin(prev, dim=1, keepdim=True, out=best_prev)

        cur.copy_(prev)
        if D > 1:
            cur[:, 1:] = torch.minimum(cur[:, 1:], prev[:, :-1] + p1)
            cur[:, :-1] = torch.minimum(cur[:, :-1], prev[:, 1:] + p1)
        torch.minimum(cur, best_prev + p2, out=cur)
        cur.add_(raw[i]).sub_(best_prev)

        agg[i] += cur
        prev, cur = cur, prev


def aggregate_volume(
    volume: torch.Tensor,
    filtering_axes: str = "YX",
    p1: float = 10.0,
    p2: float = 100.0,
    ctx: DeviceContext | None = None,
) -> torch.Tensor:
    """Sum the forward and reverse scan paths of every filtering axis.

    Args:
        volume: Raw scores, shape (H, W, D), uint8 or float.
        filtering_axes: Axis letters to scan, from "X" and "Y".
        p1: Small-jump penalty.
        p2: Large-jump penalty, >= p1.
        ctx: Device context for cancellation.

    Returns:
        Aggregated cost, shape (H, W, D), float32.
    """
    with record_function("aggregate_volume"), torch.no_grad():
        if volume.dim() != 3:
            raise DepthMapConfigError(
                f"Aggregation expects an (H, W, D) volume, got {tuple(volume.shape)}"
            )
        _check_penalties(p1, p2)
        paths = aggregation_paths(filtering_axes)

        out = torch.zeros(volume.shape, dtype=torch.float32, device=volume.device)
        for scan_dim, reverse in paths:
            logger.debug(
                "Aggregating %s path along %s",
                "reverse" if reverse else "forward",
                "YX"[scan_dim],
            )
            aggregate_path(volume, out, scan_dim, reverse, p1, p2, ctx)
        return out
