"""Multi-scale Lab image pyramids and clamped image sampling."""

import logging

import cv2
import numpy as np
import torch
import torch.nn.functional as F

logger = logging.getLogger(__name__)


def bgr_to_lab(image: np.ndarray) -> np.ndarray:
    """Convert a BGR image to float32 CIE Lab (L in [0, 100]).

    Args:
        image: BGR image, shape (H, W, 3), uint8 or float32 in [0, 1].

    Returns:
        Lab image, shape (H, W, 3), float32.
    """
    if image.dtype == np.uint8:
        image = image.astype(np.float32) / 255.0
    return cv2.cvtColor(image.astype(np.float32), cv2.COLOR_BGR2Lab)


class ImagePyramid:
    """Per-camera stack of Lab images, level 0 at full resolution.

    Args:
        levels: Level images, each shape (3, H_i, W_i), float32 Lab.
            Level sizes must be non-increasing.
    """

    def __init__(self, levels: list[torch.Tensor]) -> None:
        if not levels:
            raise ValueError("ImagePyramid needs at least one level")
        for image in levels:
            if image.dim() != 3 or image.shape[0] != 3:
                raise ValueError(
                    f"Pyramid levels must have shape (3, H, W), got {tuple(image.shape)}"
                )
        self.levels = levels

    @classmethod
    def from_bgr(
        cls,
        image: np.ndarray,
        num_levels: int = 3,
        downscale: int = 2,
        device: str | torch.device = "cpu",
    ) -> "ImagePyramid":
        """Build a Gaussian pyramid from a BGR image.

        Args:
            image: BGR image, shape (H, W, 3), uint8 or float32 in [0, 1].
            num_levels: Number of levels, including full resolution.
            downscale: Integer downscale factor between levels.
            device: Device for the level tensors.

        Returns:
            The pyramid.
        """
        lab = bgr_to_lab(image)
        return cls.from_lab(lab, num_levels, downscale, device)

    @classmethod
    def from_lab(
        cls,
        lab: np.ndarray,
        num_levels: int = 3,
        downscale: int = 2,
        device: str | torch.device = "cpu",
    ) -> "ImagePyramid":
        """Build a Gaussian pyramid from a float32 Lab image.

        Args:
            lab: Lab image, shape (H, W, 3), float32.
            num_levels: Number of levels, including full resolution.
            downscale: Integer downscale factor between levels.
            device: Device for the level tensors.

        Returns:
            The pyramid.
        """
        if num_levels < 1:
            raise ValueError(f"num_levels must be >= 1, got {num_levels}")

        level_images = [lab]
        sigma = 0.5 * downscale
        for _ in range(1, num_levels):
            prev = level_images[-1]
            blurred = cv2.GaussianBlur(prev, (0, 0), sigmaX=sigma, sigmaY=sigma)
            height = max(1, prev.shape[0] // downscale)
            width = max(1, prev.shape[1] // downscale)
            level_images.append(
                cv2.resize(blurred, (width, height), interpolation=cv2.INTER_AREA)
            )

        levels = [
            torch.from_numpy(np.ascontiguousarray(img.transpose(2, 0, 1))).to(device)
            for img in level_images
        ]
        logger.debug(
            "Built %d-level pyramid from %dx%d image",
            num_levels,
            lab.shape[1],
            lab.shape[0],
        )
        return cls(levels)

    @property
    def num_levels(self) -> int:
        return len(self.levels)

    def level(self, index: int) -> torch.Tensor:
        """Level image, shape (3, H, W)."""
        if not 0 <= index < self.num_levels:
            raise IndexError(
                f"Pyramid level {index} out of range (pyramid has {self.num_levels})"
            )
        return self.levels[index]

    def scale(self, index: int) -> float:
        """Downscale factor of a level relative to level 0."""
        return self.levels[0].shape[-1] / self.level(index).shape[-1]


def sample_image(
    image: torch.Tensor,
    pixels: torch.Tensor,
    mode: str = "bilinear",
) -> torch.Tensor:
    """Sample an image at sub-pixel locations with clamped addressing.

    Args:
        image: Image, shape (C, H, W), float32.
        pixels: Pixel coordinates (u, v), shape (B, h, w, 2), float32.
        mode: "bilinear" or "nearest".

    Returns:
        Sampled values, shape (B, C, h, w), float32. Coordinates outside the
        image read the nearest border pixel.
    """
    C, H, W = image.shape
    B = pixels.shape[0]

    # grid_sample expects grid in [-1, 1] range
    grid = torch.empty_like(pixels)
    grid[..., 0] = 2.0 * pixels[..., 0] / max(W - 1, 1) - 1.0
    grid[..., 1] = 2.0 * pixels[..., 1] / max(H - 1, 1) - 1.0

    src = image.unsqueeze(0).expand(B, C, H, W)
    return F.grid_sample(
        src, grid, mode=mode, padding_mode="border", align_corners=True
    )
