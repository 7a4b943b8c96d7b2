"""Tests for bilateral NCC similarity and score quantization."""

import pytest
import torch

from sgmvs.dense.similarity import (
    MAX_SCORE,
    NO_INFORMATION_SIMILARITY,
    compute_bilateral_ncc,
    compute_patch_similarity,
    make_pixel_grid,
    score_to_similarity,
    similarity_to_score,
    warp_target_image,
)
from sgmvs.synthetic import make_stereo_plane_scene


@pytest.fixture
def textured_image(device):
    """Random Lab image, shape (3, 16, 20)."""
    generator = torch.Generator().manual_seed(7)
    lightness = torch.rand(16, 20, generator=generator) * 80.0 + 10.0
    lab = torch.stack([lightness, 0.3 * (lightness - 50.0), 0.2 * (50.0 - lightness)])
    return lab.to(device)


class TestScoreMapping:
    """Tests for similarity_to_score() and score_to_similarity()."""

    def test_endpoints(self, device):
        """-1 maps to 0 and +1 maps to MAX_SCORE."""
        sim = torch.tensor([-1.0, 0.0, 1.0], device=device)
        score = similarity_to_score(sim)
        assert score.dtype == torch.uint8
        assert score.tolist() == [0, 128, MAX_SCORE]

    def test_out_of_range_clamped(self, device):
        """Values outside [-1, 1] saturate."""
        score = similarity_to_score(torch.tensor([-3.0, 2.0], device=device))
        assert score.tolist() == [0, MAX_SCORE]

    def test_inverse(self, device):
        """score_to_similarity inverts the mapping up to quantization."""
        sim = torch.linspace(-1.0, 1.0, 101, device=device)
        back = score_to_similarity(similarity_to_score(sim))
        assert (back - sim).abs().max() <= 1.0 / MAX_SCORE + 1e-6

    def test_float_scores_clamped(self, device):
        """Averaged float scores map back into [-1, 1]."""
        sim = score_to_similarity(torch.tensor([-5.0, 0.0, 300.0], device=device))
        torch.testing.assert_close(sim, torch.tensor([-1.0, -1.0, 1.0], device=device))

    def test_no_information_is_max_score(self, device):
        """The no-information similarity quantizes to MAX_SCORE."""
        score = similarity_to_score(
            torch.tensor([NO_INFORMATION_SIMILARITY], device=device)
        )
        assert score.item() == MAX_SCORE


class TestBilateralNcc:
    """Tests for compute_bilateral_ncc()."""

    def test_identical_images(self, textured_image):
        """A patch compared against itself is a perfect match."""
        warped = textured_image.unsqueeze(0)
        valid = torch.ones(1, 16, 20, dtype=torch.bool, device=textured_image.device)

        sim = compute_bilateral_ncc(textured_image, warped, valid, 3, 5.5, 8.0)

        assert sim.shape == (1, 16, 20)
        torch.testing.assert_close(sim, torch.full_like(sim, -1.0), atol=1e-3, rtol=0)

    def test_inverted_images(self, textured_image):
        """An inverted target is anti-correlated."""
        inverted = textured_image.clone()
        inverted[0] = 100.0 - inverted[0]
        valid = torch.ones(1, 16, 20, dtype=torch.bool, device=textured_image.device)

        sim = compute_bilateral_ncc(
            textured_image, inverted.unsqueeze(0), valid, 2, 5.5, 8.0
        )

        assert (sim[:, 2:-2, 2:-2] > 0.99).all()

    def test_flat_patch_has_no_information(self, textured_image):
        """A constant target gives NO_INFORMATION_SIMILARITY."""
        flat = torch.full_like(textured_image, 30.0).unsqueeze(0)
        valid = torch.ones(1, 16, 20, dtype=torch.bool, device=textured_image.device)

        sim = compute_bilateral_ncc(textured_image, flat, valid, 2, 5.5, 8.0)

        assert (sim == NO_INFORMATION_SIMILARITY).all()
        assert (similarity_to_score(sim) == MAX_SCORE).all()

    def test_invalid_pixels_have_no_information(self, textured_image):
        """Pixels whose own warp is invalid get NO_INFORMATION_SIMILARITY."""
        warped = textured_image.unsqueeze(0)
        valid = torch.ones(1, 16, 20, dtype=torch.bool, device=textured_image.device)
        valid[0, 5, 6] = False

        sim = compute_bilateral_ncc(textured_image, warped, valid, 2, 5.5, 8.0)

        assert sim[0, 5, 6] == NO_INFORMATION_SIMILARITY
        assert sim[0, 5, 8] < -0.99

    def test_batch_independent(self, textured_image):
        """Each batch entry is scored independently."""
        flat = torch.full_like(textured_image, 30.0)
        warped = torch.stack([textured_image, flat])
        valid = torch.ones(2, 16, 20, dtype=torch.bool, device=textured_image.device)

        sim = compute_bilateral_ncc(textured_image, warped, valid, 2, 5.5, 8.0)

        assert (sim[0] < -0.99).all()
        assert (sim[1] == NO_INFORMATION_SIMILARITY).all()


class TestWarpTargetImage:
    """Tests for make_pixel_grid() and warp_target_image()."""

    def test_pixel_grid_order(self, device):
        """Grid is row-major with (u, v) coordinates."""
        grid = make_pixel_grid(2, 3, device=device)
        assert grid.shape == (6, 2)
        assert grid[1].tolist() == [1.0, 0.0]
        assert grid[3].tolist() == [0.0, 1.0]

    def test_true_depth_reproduces_reference(self, device):
        """Warping at the plane depth reproduces the reference image."""
        reference, targets = make_stereo_plane_scene(device=device)
        ref_camera, ref_image = reference.at_level(0)
        tgt_camera, tgt_image = targets[0].at_level(0)
        _, H, W = ref_image.shape

        depth = torch.full((1, H, W), 2.0, device=device)
        warped, valid = warp_target_image(ref_camera, tgt_camera, tgt_image, depth)

        assert valid.all()
        torch.testing.assert_close(warped[0], ref_image, atol=1e-2, rtol=0)

    def test_nan_depth_invalid(self, device):
        """NaN depths are invalid and warp to zero."""
        reference, targets = make_stereo_plane_scene(device=device)
        ref_camera, ref_image = reference.at_level(0)
        tgt_camera, tgt_image = targets[0].at_level(0)
        _, H, W = ref_image.shape

        depth = torch.full((1, H, W), float("nan"), device=device)
        warped, valid = warp_target_image(ref_camera, tgt_camera, tgt_image, depth)

        assert not valid.any()
        assert (warped == 0).all()


class TestPatchSimilarity:
    """Tests for compute_patch_similarity()."""

    def test_true_depth_scores_best(self, device):
        """The plane depth matches better than a wrong depth."""
        reference, targets = make_stereo_plane_scene(min_depth=1.6, device=device)
        ref_camera, ref_image = reference.at_level(0)
        tgt_camera, tgt_image = targets[0].at_level(0)
        _, H, W = ref_image.shape

        depth_maps = torch.stack(
            [torch.full((H, W), 2.0, device=device), torch.full((H, W), 1.6, device=device)]
        )
        sim = compute_patch_similarity(
            ref_image, tgt_image, ref_camera, tgt_camera, depth_maps, 3, 5.5, 8.0
        )

        interior = sim[:, 4:-4, 4:-4]
        assert (interior[0] < -0.95).all()
        assert interior[0].mean() < interior[1].mean()
