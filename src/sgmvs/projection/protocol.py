"""Protocol definition for projection models."""

from typing import Protocol, runtime_checkable

import torch


@runtime_checkable
class ProjectionModel(Protocol):
    """Protocol for geometric projection models.

    Defines the interface for mapping between 3D world points and 2D pixel
    coordinates used by every depth kernel. Both methods are batched
    (N points/pixels in, N results out) and device-agnostic (output tensors
    are on the same device as input tensors).
    """

    def project(self, points: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Project 3D world points to 2D pixel coordinates.

        Args:
            points: 3D points in world frame, shape (N, 3), float32.

        Returns:
            pixels: 2D pixel coordinates (u, v), shape (N, 2), float32.
            valid: Boolean validity mask, shape (N,). False for points that
                cannot be projected (behind the camera). Invalid entries in
                pixels are undefined.
        """
        ...

    def cast_ray(self, pixels: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Cast rays from pixel coordinates into the scene.

        A 3D point at plane depth d is recovered as:
        point = origin + d * direction.

        Args:
            pixels: 2D pixel coordinates (u, v), shape (N, 2), float32.

        Returns:
            origins: Ray origin points, shape (N, 3), float32.
            directions: Ray direction vectors, shape (N, 3), float32, scaled
                so that their component along the optical axis is 1.
        """
        ...
