"""Tests for per-target depth refinement."""

import pytest
import torch

from sgmvs.config import RefineConfig
from sgmvs.dense.depth_sim_map import compute_pixel_size_map
from sgmvs.dense.refine import refine_depth_sim_map
from sgmvs.device import DeviceContext
from sgmvs.errors import DepthMapConfigError, RunCancelledError
from sgmvs.synthetic import make_stereo_plane_scene


@pytest.fixture
def views(device):
    """Reference and target cameras and images of a plane at depth 2.0."""
    reference, targets = make_stereo_plane_scene(min_depth=1.6, device=device)
    ref_camera, ref_image = reference.at_level(0)
    tgt_camera, tgt_image = targets[0].at_level(0)
    return ref_camera, ref_image, tgt_camera, tgt_image


def _seed(views, value):
    ref_camera, ref_image, _, _ = views
    _, H, W = ref_image.shape
    seed = torch.full((H, W), value, device=ref_image.device)
    return seed, compute_pixel_size_map(ref_camera, seed)


def test_recovers_plane_depth(views):
    """An offset seed is pulled back onto the plane."""
    ref_camera, ref_image, tgt_camera, tgt_image = views
    seed, pixel_size = _seed(views, 2.05)

    result = refine_depth_sim_map(
        ref_camera, ref_image, tgt_camera, tgt_image, seed, pixel_size, RefineConfig()
    )

    depth = result.depth[4:-4, 4:-4]
    assert torch.isfinite(depth).all()
    assert (depth - 2.0).abs().max() < 0.02
    assert (result.similarity[4:-4, 4:-4] < -0.9).all()


def test_seed_on_plane_stays(views):
    """A seed already on the plane is kept."""
    ref_camera, ref_image, tgt_camera, tgt_image = views
    seed, pixel_size = _seed(views, 2.0)

    result = refine_depth_sim_map(
        ref_camera,
        ref_image,
        tgt_camera,
        tgt_image,
        seed,
        pixel_size,
        RefineConfig(num_steps=5),
    )

    assert (result.depth[4:-4, 4:-4] - 2.0).abs().max() < 0.005


def test_nan_seed_is_invalid(views):
    """Pixels without a seed depth stay invalid."""
    ref_camera, ref_image, tgt_camera, tgt_image = views
    seed, pixel_size = _seed(views, 2.0)
    seed[10, 10] = float("nan")
    pixel_size[10, 10] = float("nan")

    result = refine_depth_sim_map(
        ref_camera,
        ref_image,
        tgt_camera,
        tgt_image,
        seed,
        pixel_size,
        RefineConfig(num_steps=3),
    )

    assert torch.isnan(result.depth[10, 10])
    assert result.similarity[10, 10] == 1.0
    assert torch.isfinite(result.depth[12, 12])


def test_small_budget_gives_same_result(views):
    """Splitting the steps over several cells does not change the result."""
    ref_camera, ref_image, tgt_camera, tgt_image = views
    seed, pixel_size = _seed(views, 2.03)
    _, H, W = ref_image.shape
    config = RefineConfig(num_steps=7)
    small = DeviceContext(ref_image.device, memory_budget_bytes=2 * H * W * 24 * 4)

    whole = refine_depth_sim_map(
        ref_camera, ref_image, tgt_camera, tgt_image, seed, pixel_size, config
    )
    split = refine_depth_sim_map(
        ref_camera, ref_image, tgt_camera, tgt_image, seed, pixel_size, config, ctx=small
    )

    torch.testing.assert_close(split.depth, whole.depth, equal_nan=True)
    torch.testing.assert_close(split.similarity, whole.similarity)


def test_shape_mismatch_raises(views):
    """Seed and pixel-size maps must match the reference image."""
    ref_camera, ref_image, tgt_camera, tgt_image = views
    seed = torch.full((5, 5), 2.0, device=ref_image.device)

    with pytest.raises(DepthMapConfigError, match="refinement"):
        refine_depth_sim_map(
            ref_camera, ref_image, tgt_camera, tgt_image, seed, seed, RefineConfig()
        )


def test_cancelled_context_raises(views):
    """A cancelled context stops refinement."""
    ref_camera, ref_image, tgt_camera, tgt_image = views
    seed, pixel_size = _seed(views, 2.0)
    ctx = DeviceContext(ref_image.device)
    ctx.cancel()

    with pytest.raises(RunCancelledError):
        refine_depth_sim_map(
            ref_camera,
            ref_image,
            tgt_camera,
            tgt_image,
            seed,
            pixel_size,
            RefineConfig(),
            ctx=ctx,
        )
