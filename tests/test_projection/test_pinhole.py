"""Tests for the pinhole camera model."""

import pytest
import torch

from sgmvs.projection import PinholeCamera
from sgmvs.synthetic import make_camera


@pytest.fixture
def camera(device):
    """Camera at (0.1, -0.2, 0.0) looking down +Z, 64x48, f=100."""
    return make_camera((0.1, -0.2, 0.0), 100.0, (64, 48), device=device)


@pytest.fixture
def rotated_camera(device):
    """Camera rotated 10 degrees about Y, with a non-trivial translation."""
    angle = torch.tensor(0.1745)
    c, s = torch.cos(angle).item(), torch.sin(angle).item()
    R = torch.tensor([[c, 0.0, -s], [0.0, 1.0, 0.0], [s, 0.0, c]], device=device)
    K = torch.tensor(
        [[120.0, 0.0, 31.5], [0.0, 110.0, 23.5], [0.0, 0.0, 1.0]], device=device
    )
    t = torch.tensor([0.05, 0.1, 0.3], device=device)
    return PinholeCamera(K, R, t, (64, 48), name="rotated")


class TestProject:
    """Tests for project()."""

    def test_principal_point(self, camera, device):
        """A point on the optical axis projects to the principal point."""
        points = torch.tensor([[0.1, -0.2, 2.0]], device=device)
        pixels, valid = camera.project(points)
        assert valid.all()
        torch.testing.assert_close(
            pixels, torch.tensor([[31.5, 23.5]], device=device), atol=1e-4, rtol=0
        )

    def test_behind_camera_invalid(self, camera, device):
        """Points behind the camera are flagged invalid."""
        points = torch.tensor([[0.0, 0.0, -1.0], [0.0, 0.0, 0.0]], device=device)
        _, valid = camera.project(points)
        assert not valid.any()

    def test_outputs_finite_for_invalid(self, camera, device):
        """Projection of invalid points does not produce inf."""
        points = torch.tensor([[0.1, -0.2, 0.0]], device=device)
        pixels, _ = camera.project(points)
        assert torch.isfinite(pixels).all()


class TestCastRay:
    """Tests for cast_ray() and backproject()."""

    def test_rays_have_unit_axis_component(self, rotated_camera, device):
        """Ray directions have component 1 along the optical axis."""
        pixels = torch.tensor([[0.0, 0.0], [63.0, 47.0], [20.5, 11.25]], device=device)
        origins, directions = rotated_camera.cast_ray(pixels)
        torch.testing.assert_close(
            directions @ rotated_camera.z_axis,
            torch.ones(3, device=device),
            atol=1e-5,
            rtol=0,
        )
        torch.testing.assert_close(origins, rotated_camera.C.expand(3, 3))

    def test_backproject_project_round_trip(self, rotated_camera, device):
        """Back-projected points project back to their pixels."""
        pixels = torch.tensor([[5.0, 7.0], [40.5, 30.0], [63.0, 0.0]], device=device)
        depth = torch.tensor([0.5, 1.7, 3.0], device=device)

        points = rotated_camera.backproject(pixels, depth)
        reprojected, valid = rotated_camera.project(points)

        assert valid.all()
        torch.testing.assert_close(reprojected, pixels, atol=1e-3, rtol=0)

    def test_depth_is_along_optical_axis(self, rotated_camera, device):
        """The camera-frame Z of a back-projected point equals its depth."""
        pixels = torch.tensor([[0.0, 0.0], [50.0, 10.0]], device=device)
        depth = torch.tensor([1.25, 2.5], device=device)

        points = rotated_camera.backproject(pixels, depth)
        z_cam = (points - rotated_camera.C) @ rotated_camera.z_axis

        torch.testing.assert_close(z_cam, depth, atol=1e-5, rtol=0)


class TestPixelSize:
    """Tests for pixel_size()."""

    def test_fronto_parallel(self, camera, device):
        """Pixel size is depth / focal for an axis-aligned camera."""
        pixels = torch.tensor([[10.0, 10.0], [50.0, 40.0]], device=device)
        depth = torch.tensor([1.0, 3.0], device=device)
        sizes = camera.pixel_size(pixels, depth)
        torch.testing.assert_close(
            sizes, torch.tensor([0.01, 0.03], device=device), atol=1e-5, rtol=0
        )

    def test_nan_depth(self, camera, device):
        """NaN depth gives NaN pixel size."""
        pixels = torch.tensor([[10.0, 10.0]], device=device)
        sizes = camera.pixel_size(pixels, torch.tensor([float("nan")], device=device))
        assert torch.isnan(sizes).all()


class TestScaled:
    """Tests for scaled()."""

    def test_identity(self, camera):
        """Factor 1 returns the same camera."""
        assert camera.scaled(1.0) is camera

    def test_half_resolution(self, camera, device):
        """Halving keeps pixel centers consistent with area downsampling."""
        half = camera.scaled(2.0)
        assert half.image_size == (32, 24)
        torch.testing.assert_close(half.K[0, 0], torch.tensor(50.0, device=device))
        # Center of level-0 pixels 0 and 1 maps to level-1 pixel 0
        torch.testing.assert_close(half.K[0, 2], torch.tensor(15.5, device=device))

    def test_explicit_image_size(self, camera):
        """An explicit size overrides the rounded one."""
        assert camera.scaled(2.0, image_size=(33, 25)).image_size == (33, 25)

    def test_projection_scales(self, camera, device):
        """Projections on the scaled camera follow the pixel-center mapping."""
        points = torch.tensor([[0.3, 0.1, 2.0]], device=device)
        full, _ = camera.project(points)
        half, _ = camera.scaled(2.0).project(points)
        torch.testing.assert_close(half, (full + 0.5) / 2.0 - 0.5, atol=1e-4, rtol=0)


class TestInImage:
    """Tests for in_image()."""

    def test_bounds(self, camera, device):
        """Pixels on the border are inside, beyond it outside."""
        pixels = torch.tensor(
            [[0.0, 0.0], [63.0, 47.0], [-0.1, 5.0], [63.5, 5.0], [5.0, 47.2]],
            device=device,
        )
        inside = camera.in_image(pixels)
        assert inside.tolist() == [True, True, False, False, False]

    def test_margin(self, camera, device):
        """A margin shrinks the valid region."""
        pixels = torch.tensor([[1.0, 1.0], [3.0, 3.0]], device=device)
        assert camera.in_image(pixels, margin=2.0).tolist() == [False, True]

    def test_to_device(self, camera):
        """to() moves every parameter."""
        moved = camera.to("cpu")
        assert moved.K.device.type == "cpu"
        assert moved.image_size == camera.image_size
