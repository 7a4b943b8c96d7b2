"""Depth and similarity map rendering."""

import logging
from pathlib import Path

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from ..dense.depth_sim_map import DepthSimMap

logger = logging.getLogger(__name__)


def _save_map_figure(
    image: np.ndarray,
    output_path: Path,
    cmap_name: str,
    vmin: float | None,
    vmax: float | None,
    label: str,
    title: str,
    dpi: int,
) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig, ax = plt.subplots(1, 1, figsize=(8, 6))

    cmap = plt.get_cmap(cmap_name).copy()
    cmap.set_bad(color="0.8")  # gray for NaN

    im = ax.imshow(np.ma.masked_invalid(image), cmap=cmap, vmin=vmin, vmax=vmax)
    cbar = fig.colorbar(im, ax=ax, shrink=0.8)
    cbar.set_label(label)
    ax.set_title(title)
    ax.axis("off")

    fig.savefig(output_path, dpi=dpi, bbox_inches="tight", pad_inches=0.1)
    plt.close(fig)


def render_depth_map(
    depth_map: np.ndarray,
    output_path: str | Path,
    view_name: str = "",
    vmin: float | None = None,
    vmax: float | None = None,
    dpi: int = 150,
) -> None:
    """Render a depth map as a colormapped image with colorbar.

    Args:
        depth_map: Depth map, shape (H, W), float32. NaN for invalid pixels.
        output_path: Path to save the PNG image.
        view_name: View name for the title.
        vmin: Colormap minimum. If None, auto from valid data.
        vmax: Colormap maximum. If None, auto from valid data.
        dpi: Output resolution.
    """
    valid = depth_map[np.isfinite(depth_map)]
    if vmin is None and len(valid) > 0:
        vmin = float(valid.min())
    if vmax is None and len(valid) > 0:
        vmax = float(valid.max())

    title = "Depth Map"
    if view_name:
        title += f" - {view_name}"
    _save_map_figure(
        depth_map, Path(output_path), "viridis", vmin, vmax, "Depth", title, dpi
    )


def render_similarity_map(
    similarity: np.ndarray,
    output_path: str | Path,
    view_name: str = "",
    dpi: int = 150,
) -> None:
    """Render a similarity map on the fixed range [-1, 1].

    Args:
        similarity: Similarity map, shape (H, W), float32. -1 = best match.
        output_path: Path to save the PNG image.
        view_name: View name for the title.
        dpi: Output resolution.
    """
    title = "Similarity Map"
    if view_name:
        title += f" - {view_name}"
    _save_map_figure(
        similarity,
        Path(output_path),
        "plasma_r",
        -1.0,
        1.0,
        "Similarity (-NCC)",
        title,
        dpi,
    )


def render_all_depth_maps(
    maps: dict[str, DepthSimMap],
    output_dir: str | Path,
    dpi: int = 150,
) -> list[Path]:
    """Render depth and similarity images for several maps.

    Saves to output_dir/depth_{name}.png and output_dir/similarity_{name}.png,
    with one depth color range shared across all maps.

    Args:
        maps: Name to DepthSimMap mapping.
        output_dir: Directory to save images.
        dpi: Output resolution.

    Returns:
        Paths of the images written.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    arrays = {
        name: (m.depth.cpu().numpy(), m.similarity.cpu().numpy())
        for name, m in maps.items()
    }

    valid_depths = [d[np.isfinite(d)] for d, _ in arrays.values()]
    valid_depths = [v for v in valid_depths if len(v) > 0]
    if valid_depths:
        all_valid = np.concatenate(valid_depths)
        vmin, vmax = float(all_valid.min()), float(all_valid.max())
    else:
        vmin = vmax = None

    written = []
    for name, (depth, similarity) in arrays.items():
        depth_path = output_dir / f"depth_{name}.png"
        render_depth_map(depth, depth_path, view_name=name, vmin=vmin, vmax=vmax, dpi=dpi)
        similarity_path = output_dir / f"similarity_{name}.png"
        render_similarity_map(similarity, similarity_path, view_name=name, dpi=dpi)
        written.extend([depth_path, similarity_path])

    logger.info("Rendered %d maps to %s", len(arrays), output_dir)
    return written
