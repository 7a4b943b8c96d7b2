"""Per-pixel depth / similarity maps and their persistence."""

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import torch
import torch.nn.functional as F

from ..errors import check_same_shape
from ..projection.pinhole import PinholeCamera
from .similarity import NO_INFORMATION_SIMILARITY, make_pixel_grid


@dataclass
class DepthSimMap:
    """Plane depth and similarity per pixel.

    Attributes:
        depth: Plane depth, shape (H, W), float32. NaN = invalid.
        similarity: Similarity (-NCC), shape (H, W), float32. Lower = better.
    """

    depth: torch.Tensor
    similarity: torch.Tensor

    def __post_init__(self) -> None:
        check_same_shape("depth map", depth=self.depth, similarity=self.similarity)

    @classmethod
    def invalid(
        cls, height: int, width: int, device: str | torch.device = "cpu"
    ) -> "DepthSimMap":
        """A map with no valid pixel."""
        return cls(
            depth=torch.full((height, width), float("nan"), device=device),
            similarity=torch.full(
                (height, width), NO_INFORMATION_SIMILARITY, device=device
            ),
        )

    @property
    def shape(self) -> tuple[int, int]:
        return tuple(self.depth.shape)

    @property
    def device(self) -> torch.device:
        return self.depth.device

    def to(self, device: str | torch.device) -> "DepthSimMap":
        return DepthSimMap(self.depth.to(device), self.similarity.to(device))

    def clone(self) -> "DepthSimMap":
        return DepthSimMap(self.depth.clone(), self.similarity.clone())

    def valid_mask(self) -> torch.Tensor:
        """Pixels with a finite depth, shape (H, W), bool."""
        return torch.isfinite(self.depth)

    def upscale(self, height: int, width: int) -> "DepthSimMap":
        """Nearest-neighbour resize to (height, width). Depth values are kept."""
        if (height, width) == self.shape:
            return self.clone()
        stacked = torch.stack([self.depth, self.similarity]).unsqueeze(0)
        resized = F.interpolate(stacked, size=(height, width), mode="nearest")[0]
        return DepthSimMap(resized[0].contiguous(), resized[1].contiguous())

    def as_volume(self) -> tuple[torch.Tensor, torch.Tensor]:
        """The map as a one-hypothesis volume.

        Returns:
            volume: Similarity, shape (H, W, 1).
            depths: Per-pixel hypotheses, shape (H, W, 1).
        """
        return self.similarity.unsqueeze(-1), self.depth.unsqueeze(-1)

    def save(self, path: str | Path) -> None:
        save_depth_sim_map(self, path)

    @classmethod
    def load(cls, path: str | Path, device: str = "cpu") -> "DepthSimMap":
        return load_depth_sim_map(path, device=device)


def save_depth_sim_map(depth_sim_map: DepthSimMap, path: str | Path) -> None:
    """Save a depth / similarity map to an .npz file.

    Args:
        depth_sim_map: Map to save.
        path: Output file path (should end with .npz).
    """
    np.savez(
        path,
        depth=depth_sim_map.depth.cpu().numpy(),
        similarity=depth_sim_map.similarity.cpu().numpy(),
    )


def load_depth_sim_map(path: str | Path, device: str = "cpu") -> DepthSimMap:
    """Load a depth / similarity map from an .npz file.

    Args:
        path: Path to .npz file.
        device: Device to place the loaded tensors on.

    Returns:
        The map.
    """
    data = np.load(path)
    return DepthSimMap(
        depth=torch.from_numpy(data["depth"]).to(device),
        similarity=torch.from_numpy(data["similarity"]).to(device),
    )


def compute_pixel_size_map(
    camera: PinholeCamera, depth_map: torch.Tensor
) -> torch.Tensor:
    """World size of one pixel at each pixel's depth.

    Args:
        camera: Camera matching the map resolution.
        depth_map: Plane depth, shape (H, W), float32. NaN = invalid.

    Returns:
        Pixel sizes, shape (H, W), float32. NaN where the depth is NaN.
    """
    H, W = depth_map.shape
    pixel_grid = make_pixel_grid(H, W, device=depth_map.device)
    sizes = camera.pixel_size(pixel_grid, depth_map.reshape(-1))
    return sizes.reshape(H, W)
