"""Pinhole camera model with a precomputed orthonormal basis."""

import torch


class PinholeCamera:
    """Calibrated pinhole camera, read-only once constructed.

    Implements the ProjectionModel protocol. Depth is measured along the
    optical axis (fronto-parallel plane depth), so every pixel of a plane
    parallel to the image plane shares one depth value.

    Args:
        K: Intrinsic matrix, shape (3, 3), float32.
        R: Rotation matrix (world to camera), shape (3, 3), float32.
        t: Translation vector (world to camera), shape (3,), float32.
        image_size: Image dimensions as (width, height) in pixels.
        name: Camera identifier, used for logging only.
    """

    def __init__(
        self,
        K: torch.Tensor,
        R: torch.Tensor,
        t: torch.Tensor,
        image_size: tuple[int, int],
        name: str = "",
    ) -> None:
        self.K = K
        self.R = R
        self.t = t
        self.image_size = (int(image_size[0]), int(image_size[1]))
        self.name = name

        # Precompute derived quantities
        self.K_inv = torch.linalg.inv(K)
        self.P = K @ torch.cat([R, t.unsqueeze(-1)], dim=-1)  # (3, 4)
        self.iP = torch.linalg.inv(K @ R)  # pixel -> world direction
        self.C = -R.T @ t  # camera center in world frame

        # Camera axes expressed in the world frame
        self.x_axis = R[0]
        self.y_axis = R[1]
        self.z_axis = R[2]

    @property
    def width(self) -> int:
        return self.image_size[0]

    @property
    def height(self) -> int:
        return self.image_size[1]

    @property
    def device(self) -> torch.device:
        return self.K.device

    def __repr__(self) -> str:
        return f"PinholeCamera(name={self.name!r}, image_size={self.image_size})"

    def to(self, device: str | torch.device) -> "PinholeCamera":
        """Return a copy of this camera with all parameters on ``device``."""
        return PinholeCamera(
            self.K.to(device),
            self.R.to(device),
            self.t.to(device),
            self.image_size,
            name=self.name,
        )

    def scaled(
        self, factor: float, image_size: tuple[int, int] | None = None
    ) -> "PinholeCamera":
        """Camera for an image downscaled by ``factor``.

        Args:
            factor: Downscale factor (2.0 halves the resolution).
            image_size: Exact (width, height) of the downscaled image. Defaults
                to the rounded scaled size.

        Returns:
            New camera with focal lengths and principal point divided by
            ``factor``.
        """
        if factor == 1.0 and image_size in (None, self.image_size):
            return self
        # Pixel centers sit at integer coordinates on every level
        K = self.K.clone()
        K[:2] = K[:2] / factor
        K[0, 2] = (self.K[0, 2] + 0.5) / factor - 0.5
        K[1, 2] = (self.K[1, 2] + 0.5) / factor - 0.5
        if image_size is None:
            image_size = (
                max(1, round(self.width / factor)),
                max(1, round(self.height / factor)),
            )
        return PinholeCamera(K, self.R, self.t, image_size, name=self.name)

    def cast_ray(self, pixels: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Cast rays from pixel coordinates into the scene.

        Args:
            pixels: 2D pixel coordinates (u, v), shape (N, 2), float32.

        Returns:
            origins: Camera center repeated, shape (N, 3), float32.
            directions: Ray directions with unit component along ``z_axis``,
                shape (N, 3), float32.
        """
        N = pixels.shape[0]
        ones = torch.ones(N, 1, device=pixels.device, dtype=pixels.dtype)
        pixels_h = torch.cat([pixels, ones], dim=-1)  # (N, 3)

        rays = (self.iP @ pixels_h.T).T  # (N, 3)
        rays = rays / (rays @ self.z_axis).unsqueeze(-1)

        origins = self.C.unsqueeze(0).expand(N, 3)
        return origins, rays

    def backproject(self, pixels: torch.Tensor, depth: torch.Tensor) -> torch.Tensor:
        """3D points of pixels at the given plane depths.

        Args:
            pixels: Pixel coordinates (u, v), shape (N, 2), float32.
            depth: Plane depth per pixel, shape (N,) or broadcastable.

        Returns:
            World points, shape (N, 3), float32.
        """
        origins, directions = self.cast_ray(pixels)
        return origins + depth.unsqueeze(-1) * directions

    def project(self, points: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Project 3D world points to 2D pixel coordinates.

        Args:
            points: 3D points in world frame, shape (N, 3), float32.

        Returns:
            pixels: 2D pixel coordinates (u, v), shape (N, 2), float32.
            valid: Boolean mask, shape (N,). False for points at or behind
                the camera plane.
        """
        points_cam = points @ self.R.T + self.t  # (N, 3)
        z = points_cam[:, 2]
        valid = z > 1e-6

        # Keep the division finite for invalid points
        z_safe = torch.where(valid, z, torch.ones_like(z))
        uv = (points_cam @ self.K.T)[:, :2] / z_safe.unsqueeze(-1)
        return uv, valid

    def pixel_size(self, pixels: torch.Tensor, depth: torch.Tensor) -> torch.Tensor:
        """World-space size of one pixel at the given depths.

        Distance between the back-projections of (u, v) and (u + 1, v) at the
        same plane depth.

        Args:
            pixels: Pixel coordinates (u, v), shape (N, 2), float32.
            depth: Plane depth per pixel, shape (N,).

        Returns:
            Pixel sizes, shape (N,), float32.
        """
        step = torch.zeros_like(pixels)
        step[:, 0] = 1.0
        p0 = self.backproject(pixels, depth)
        p1 = self.backproject(pixels + step, depth)
        return torch.linalg.norm(p1 - p0, dim=-1)

    def in_image(self, pixels: torch.Tensor, margin: float = 0.0) -> torch.Tensor:
        """Whether pixel coordinates fall inside the image bounds.

        Args:
            pixels: Pixel coordinates (u, v), shape (..., 2).
            margin: Required distance from the image border.

        Returns:
            Boolean mask, shape (...).
        """
        u, v = pixels[..., 0], pixels[..., 1]
        return (
            (u >= margin)
            & (u <= self.width - 1 - margin)
            & (v >= margin)
            & (v <= self.height - 1 - margin)
        )
