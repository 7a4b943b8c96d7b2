"""Tests for plane-sweep cost volume construction."""

from unittest.mock import patch

import pytest
import torch

import sgmvs.dense.plane_sweep as plane_sweep_module
from sgmvs.config import SgmConfig
from sgmvs.dense.aggregation import aggregate_volume
from sgmvs.dense.extraction import extract_best_depth
from sgmvs.dense.plane_sweep import (
    CostVolume,
    DepthCell,
    build_cost_volume,
    generate_depth_hypotheses,
    plan_depth_cells,
    working_bytes_per_depth,
)
from sgmvs.dense.similarity import MAX_SCORE
from sgmvs.device import DeviceContext
from sgmvs.errors import DepthMapConfigError, DeviceMemoryError, RunCancelledError
from sgmvs.synthetic import make_stereo_plane_scene

# Plane at 2.0; index 2 of these hypotheses is the true depth
DEPTHS = [1.6, 1.8, 2.0, 2.2, 2.4]


@pytest.fixture
def scene(device):
    """Reference and two targets seeing a plane at depth 2.0."""
    reference, targets = make_stereo_plane_scene(
        num_targets=2, min_depth=1.6, device=device
    )
    ref_camera, ref_image = reference.at_level(0)
    tgt = [view.at_level(0) for view in targets]
    depths = torch.tensor(DEPTHS, device=device)
    return ref_camera, ref_image, [c for c, _ in tgt], [i for _, i in tgt], depths


class TestGenerateDepthHypotheses:
    """Tests for generate_depth_hypotheses()."""

    def test_linear(self, device):
        """Linear spacing is uniform and includes both endpoints."""
        depths = generate_depth_hypotheses(1.0, 2.0, 11, device=device)

        assert depths.shape == (11,)
        assert depths.dtype == torch.float32
        assert depths.device.type == device.type
        torch.testing.assert_close(depths[0], torch.tensor(1.0, device=device))
        torch.testing.assert_close(depths[-1], torch.tensor(2.0, device=device))
        spacing = depths[1:] - depths[:-1]
        torch.testing.assert_close(spacing, torch.full_like(spacing, 0.1))

    def test_inverse(self):
        """Inverse spacing is uniform in 1/depth and denser near the camera."""
        depths = generate_depth_hypotheses(1.0, 4.0, 7, spacing="inverse")

        torch.testing.assert_close(depths[0], torch.tensor(1.0))
        torch.testing.assert_close(depths[-1], torch.tensor(4.0))
        inv_spacing = (1.0 / depths)[1:] - (1.0 / depths)[:-1]
        torch.testing.assert_close(inv_spacing, torch.full_like(inv_spacing, -0.125))
        assert depths[1] - depths[0] < depths[-1] - depths[-2]

    def test_single_depth(self):
        """d_min == d_max repeats the one depth."""
        depths = generate_depth_hypotheses(1.5, 1.5, 3)
        torch.testing.assert_close(depths, torch.full((3,), 1.5))

    @pytest.mark.parametrize(
        "d_min,d_max,num_depths,spacing",
        [
            (1.0, 2.0, 0, "linear"),
            (0.0, 2.0, 5, "linear"),
            (2.0, 1.0, 5, "linear"),
            (1.0, 2.0, 5, "log"),
        ],
    )
    def test_invalid(self, d_min, d_max, num_depths, spacing):
        """Bad ranges, counts and spacings raise DepthMapConfigError."""
        with pytest.raises(DepthMapConfigError):
            generate_depth_hypotheses(d_min, d_max, num_depths, spacing=spacing)


class TestPlanDepthCells:
    """Tests for plan_depth_cells()."""

    def test_cells_cover_range(self):
        """Cells tile [0, D) in order, the last one possibly short."""
        budget = 3 * working_bytes_per_depth(10, 10)

        cells = plan_depth_cells(7, 10, 10, budget)

        assert cells == [DepthCell(0, 3), DepthCell(3, 3), DepthCell(6, 1)]
        assert cells[-1].stop == 7

    def test_single_cell_when_budget_large(self):
        """A large budget puts every hypothesis in one cell."""
        cells = plan_depth_cells(50, 10, 10, 10**9)
        assert cells == [DepthCell(0, 50)]

    def test_explicit_cell_size(self):
        """max_depths_per_cell caps the cell size."""
        cells = plan_depth_cells(5, 10, 10, 10**9, max_depths_per_cell=2)
        assert [c.count for c in cells] == [2, 2, 1]

    def test_budget_too_small(self):
        """A budget below one hypothesis raises."""
        budget = working_bytes_per_depth(10, 10) - 1
        with pytest.raises(DepthMapConfigError, match="cannot hold one"):
            plan_depth_cells(5, 10, 10, budget)

    def test_explicit_cell_size_exceeds_budget(self):
        """An explicit cell size larger than the budget allows raises."""
        budget = 3 * working_bytes_per_depth(10, 10)
        with pytest.raises(DepthMapConfigError, match="exceeds"):
            plan_depth_cells(5, 10, 10, budget, max_depths_per_cell=4)

    def test_explicit_cell_size_must_be_positive(self):
        """max_depths_per_cell < 1 raises."""
        with pytest.raises(DepthMapConfigError, match="max_depths_per_cell"):
            plan_depth_cells(5, 10, 10, 10**9, max_depths_per_cell=0)


class TestBuildCostVolume:
    """Tests for build_cost_volume()."""

    def test_shape_and_dtype(self, scene):
        """Volumes are (H, W, D) uint8."""
        ref_camera, ref_image, tgt_cameras, tgt_images, depths = scene

        volume = build_cost_volume(
            ref_camera, ref_image, tgt_cameras, tgt_images, depths, SgmConfig(), quiet=True
        )

        assert isinstance(volume, CostVolume)
        assert volume.shape == (40, 48, 5)
        assert volume.best.dtype == torch.uint8
        assert volume.second_best.dtype == torch.uint8
        assert volume.depths is depths

    def test_true_depth_is_minimum(self, scene):
        """The plane depth has the lowest score on textured pixels."""
        ref_camera, ref_image, tgt_cameras, tgt_images, depths = scene

        volume = build_cost_volume(
            ref_camera, ref_image, tgt_cameras, tgt_images, depths, SgmConfig(), quiet=True
        )

        assert (volume.best.argmin(dim=-1) == 2).all()

    def test_second_best_not_better_than_best(self, scene):
        """The second-best score never beats the best score."""
        ref_camera, ref_image, tgt_cameras, tgt_images, depths = scene

        volume = build_cost_volume(
            ref_camera, ref_image, tgt_cameras, tgt_images, depths, SgmConfig(), quiet=True
        )

        assert (volume.second_best >= volume.best).all()

    def test_single_target_second_best_is_max(self, scene):
        """With one target the second-best volume stays at MAX_SCORE."""
        ref_camera, ref_image, tgt_cameras, tgt_images, depths = scene

        volume = build_cost_volume(
            ref_camera,
            ref_image,
            tgt_cameras[:1],
            tgt_images[:1],
            depths,
            SgmConfig(),
            quiet=True,
        )

        assert (volume.second_best == MAX_SCORE).all()

    def test_cell_size_does_not_change_result(self, scene):
        """Scoring in small cells gives the same volume as one cell."""
        ref_camera, ref_image, tgt_cameras, tgt_images, depths = scene

        whole = build_cost_volume(
            ref_camera, ref_image, tgt_cameras, tgt_images, depths, SgmConfig(), quiet=True
        )
        split = build_cost_volume(
            ref_camera,
            ref_image,
            tgt_cameras,
            tgt_images,
            depths,
            SgmConfig(max_depths_per_cell=2),
            quiet=True,
        )

        assert torch.equal(whole.best, split.best)
        assert torch.equal(whole.second_best, split.second_best)

    def test_cancelled_context_raises(self, scene):
        """A cancelled context stops before the first cell."""
        ref_camera, ref_image, tgt_cameras, tgt_images, depths = scene
        ctx = DeviceContext(ref_image.device)
        ctx.cancel()

        with pytest.raises(RunCancelledError):
            build_cost_volume(
                ref_camera,
                ref_image,
                tgt_cameras,
                tgt_images,
                depths,
                SgmConfig(),
                ctx=ctx,
                quiet=True,
            )

    def test_camera_size_mismatch_raises(self, scene):
        """A reference camera for another resolution is rejected."""
        ref_camera, ref_image, tgt_cameras, tgt_images, depths = scene

        with pytest.raises(DepthMapConfigError, match="image size"):
            build_cost_volume(
                ref_camera.scaled(2.0),
                ref_image,
                tgt_cameras,
                tgt_images,
                depths,
                SgmConfig(),
                quiet=True,
            )

    def test_out_of_memory_names_cell(self, scene):
        """Running out of memory in a cell raises DeviceMemoryError for that cell."""
        ref_camera, ref_image, tgt_cameras, tgt_images, depths = scene
        score_cell = plane_sweep_module._score_cell
        calls = []

        def fail_on_second_cell(*args, **kwargs):
            calls.append(args[4].clone())
            if len(calls) == 2:
                raise torch.cuda.OutOfMemoryError("CUDA out of memory")
            return score_cell(*args, **kwargs)

        with patch.object(
            plane_sweep_module, "_score_cell", side_effect=fail_on_second_cell
        ):
            with pytest.raises(DeviceMemoryError, match="cell 1") as exc_info:
                build_cost_volume(
                    ref_camera,
                    ref_image,
                    tgt_cameras,
                    tgt_images,
                    depths,
                    SgmConfig(max_depths_per_cell=2),
                    quiet=True,
                )

        assert len(calls) == 2
        torch.testing.assert_close(calls[0], depths[0:2])
        torch.testing.assert_close(calls[1], depths[2:4])
        assert "hypotheses 2..3" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, torch.cuda.OutOfMemoryError)

    def test_no_targets_raises(self, scene):
        """At least one target view is required."""
        ref_camera, ref_image, _, _, depths = scene

        with pytest.raises(DepthMapConfigError, match="at least one target"):
            build_cost_volume(ref_camera, ref_image, [], [], depths, SgmConfig())

    def test_budget_too_small_raises(self, scene):
        """A budget below one hypothesis fails before any scoring."""
        ref_camera, ref_image, tgt_cameras, tgt_images, depths = scene
        ctx = DeviceContext(ref_image.device, memory_budget_bytes=1024)

        with pytest.raises(DepthMapConfigError, match="cannot hold one"):
            build_cost_volume(
                ref_camera,
                ref_image,
                tgt_cameras,
                tgt_images,
                depths,
                SgmConfig(),
                ctx=ctx,
            )


def test_plane_recovered_through_aggregation_and_extraction(scene):
    """Without penalties, aggregation and extraction land on the plane depth."""
    ref_camera, ref_image, tgt_cameras, tgt_images, depths = scene

    volume = build_cost_volume(
        ref_camera, ref_image, tgt_cameras, tgt_images, depths, SgmConfig(), quiet=True
    )
    aggregated = aggregate_volume(volume.best, "YX", p1=0.0, p2=0.0)
    result = extract_best_depth(aggregated, depths, interpolate=False)

    assert torch.equal(aggregated.argmin(-1), volume.best.float().argmin(-1))
    assert (result.depth == 2.0).all()
