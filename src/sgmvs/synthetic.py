"""Synthetic calibrated views of a textured fronto-parallel plane.

Used by the tests and the ``sgmvs demo`` command: the ground-truth depth of
every reference pixel is the plane depth.
"""

import math
from collections.abc import Callable

import torch

from .dense.similarity import make_pixel_grid
from .pipeline.context import ViewInput
from .projection.pinhole import PinholeCamera
from .pyramid import ImagePyramid

Texture = Callable[[torch.Tensor, torch.Tensor], torch.Tensor]


def default_texture(x: torch.Tensor, y: torch.Tensor) -> torch.Tensor:
    """Lab lightness of a mix of sinusoids at world position (x, y).

    Periods are a few centimetres (a few pixels at the default scene scale)
    and the pattern does not repeat within a small disparity range.
    """
    two_pi = 2.0 * math.pi
    return (
        50.0
        + 18.0 * torch.sin(two_pi * x / 0.13)
        + 14.0 * torch.sin(two_pi * y / 0.17 + 0.5)
        + 10.0 * torch.sin(two_pi * (x + 0.6 * y) / 0.07 + 1.3)
    )


def make_camera(
    position: tuple[float, float, float],
    focal: float,
    image_size: tuple[int, int],
    principal_point: tuple[float, float] | None = None,
    name: str = "",
    device: str | torch.device = "cpu",
) -> PinholeCamera:
    """Camera looking down the world +Z axis from ``position``.

    Args:
        position: Camera center in world coordinates.
        focal: Focal length in pixels.
        image_size: (width, height) in pixels.
        principal_point: (cx, cy). Defaults to the image center.
        name: Camera name.
        device: Device for the camera tensors.

    Returns:
        The camera.
    """
    width, height = image_size
    if principal_point is None:
        principal_point = ((width - 1) / 2.0, (height - 1) / 2.0)
    cx, cy = principal_point
    K = torch.tensor(
        [[focal, 0.0, cx], [0.0, focal, cy], [0.0, 0.0, 1.0]],
        dtype=torch.float32,
        device=device,
    )
    R = torch.eye(3, dtype=torch.float32, device=device)
    t = -torch.tensor(position, dtype=torch.float32, device=device)
    return PinholeCamera(K, R, t, image_size, name=name)


def render_plane_view(
    camera: PinholeCamera,
    plane_depth: float,
    texture: Texture = default_texture,
) -> torch.Tensor:
    """Render the plane Z = plane_depth as seen by ``camera``.

    Args:
        camera: Camera whose rays hit the plane.
        plane_depth: World Z of the plane.
        texture: Lightness as a function of world (x, y).

    Returns:
        Lab image, shape (3, H, W), float32. The a and b channels follow the
        lightness so the bilateral color weights see real color edges.
    """
    W, H = camera.image_size
    pixels = make_pixel_grid(H, W, device=camera.device)
    origins, directions = camera.cast_ray(pixels)
    ray_t = (plane_depth - origins[:, 2]) / directions[:, 2]
    points = origins + ray_t.unsqueeze(-1) * directions

    lightness = texture(points[:, 0], points[:, 1]).clamp(0.0, 100.0)
    a = 0.4 * (lightness - 50.0)
    b = 0.25 * (50.0 - lightness)
    return torch.stack([lightness, a, b]).reshape(3, H, W).contiguous()


def make_stereo_plane_scene(
    plane_depth: float = 2.0,
    baseline: float = 0.2,
    focal: float = 100.0,
    image_size: tuple[int, int] = (48, 40),
    num_targets: int = 1,
    num_levels: int = 1,
    min_depth: float | None = None,
    texture: Texture = default_texture,
    device: str | torch.device = "cpu",
) -> tuple[ViewInput, list[ViewInput]]:
    """Reference view plus targets shifted along +X, all seeing one plane.

    Target images are widened, with their principal point moved by the same
    margin, so every reference pixel at depth >= ``min_depth`` projects
    inside every target image.

    Args:
        plane_depth: World Z of the plane.
        baseline: Distance between neighbouring cameras along X.
        focal: Focal length in pixels at level 0.
        image_size: Reference (width, height). Both should be divisible by
            2 ** (num_levels - 1).
        num_targets: Number of target views.
        num_levels: Pyramid levels per view.
        min_depth: Smallest depth that must stay in view. Defaults to
            ``plane_depth``.
        texture: Plane texture.
        device: Device for cameras and images.

    Returns:
        (reference, targets).
    """
    if min_depth is None:
        min_depth = plane_depth
    width, height = image_size
    cx, cy = (width - 1) / 2.0, (height - 1) / 2.0
    align = 2 ** (num_levels - 1)

    def view(camera: PinholeCamera) -> ViewInput:
        lab = render_plane_view(camera, plane_depth, texture)
        pyramid = ImagePyramid.from_lab(
            lab.permute(1, 2, 0).contiguous().cpu().numpy(),
            num_levels=num_levels,
            device=device,
        )
        return ViewInput(camera=camera, pyramid=pyramid)

    reference = view(
        make_camera((0.0, 0.0, 0.0), focal, image_size, name="ref", device=device)
    )

    targets = []
    for k in range(1, num_targets + 1):
        shift = k * baseline
        margin = math.ceil(focal * shift / min_depth) + 8
        margin = align * math.ceil(margin / align)
        camera = make_camera(
            (shift, 0.0, 0.0),
            focal,
            (width + margin, height),
            principal_point=(cx + margin, cy),
            name=f"target_{k}",
            device=device,
        )
        targets.append(view(camera))
    return reference, targets
