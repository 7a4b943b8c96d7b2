"""Bilateral-weighted NCC patch similarity and score quantization."""

import math

import torch
import torch.nn.functional as F
from torch.profiler import record_function

from ..projection.pinhole import PinholeCamera
from ..projection.protocol import ProjectionModel
from ..pyramid import sample_image

# Similarity is -NCC: -1 = perfect match, 1 = anti-correlated or no information.
NO_INFORMATION_SIMILARITY = 1.0

# Scores are similarities quantized to uint8; MAX_SCORE doubles as the
# "no information" sentinel.
MAX_SCORE = 255

# Weighted variance below which a patch is considered flat (Lab L units^2)
FLAT_PATCH_VARIANCE = 1e-6


def similarity_to_score(similarity: torch.Tensor) -> torch.Tensor:
    """Quantize similarities in [-1, 1] to uint8 scores in [0, 255].

    Args:
        similarity: Similarity values, any shape, float32.

    Returns:
        Scores, same shape, uint8. Lower = better match.
    """
    score = ((similarity + 1.0) * (MAX_SCORE / 2.0)).round()
    return score.clamp(0, MAX_SCORE).to(torch.uint8)


def score_to_similarity(score: torch.Tensor) -> torch.Tensor:
    """Map scores (uint8 or float, possibly averaged) back to similarities.

    Args:
        score: Scores, any shape.

    Returns:
        Similarities, same shape, float32, clamped to [-1, 1].
    """
    similarity = score.float() * (2.0 / MAX_SCORE) - 1.0
    return similarity.clamp(-1.0, 1.0)


def compute_bilateral_ncc(
    ref_image: torch.Tensor,
    warped: torch.Tensor,
    valid: torch.Tensor,
    wsh: int,
    gamma_c: float,
    gamma_p: float,
) -> torch.Tensor:
    """Compute bilateral-weighted NCC similarity between a reference image
    and a batch of target images warped into the reference view.

    Each window sample is weighted by how close it is to the window center in
    color and in space, in both images:
    w = exp(-(dC_ref / gamma_c + dP / gamma_p)) * exp(-(dC_tgt / gamma_c + dP / gamma_p)).
    The correlation runs on the L channel. Moments are accumulated relative
    to the window center value, so a constant patch has exactly zero
    variance.

    Args:
        ref_image: Reference Lab image, shape (3, H, W), float32.
        warped: Warped target Lab images, shape (B, 3, H, W), float32.
            Values at invalid pixels are ignored.
        valid: Validity of each warped pixel, shape (B, H, W), bool.
        wsh: Half window size; the window is (2 * wsh + 1)^2.
        gamma_c: Color falloff (Lab distance).
        gamma_p: Spatial falloff (pixels).

    Returns:
        Similarity, shape (B, H, W), float32 in [-1, 1]. Pixels whose own
        warp is invalid, and flat patches, are NO_INFORMATION_SIMILARITY.
    """
    B, _, H, W = warped.shape
    k = wsh

    warped = torch.where(valid.unsqueeze(1), warped, torch.zeros_like(warped))
    mask = valid.to(warped.dtype)

    # Reference uses clamped addressing; outside the warped image is invalid
    ref_pad = F.pad(ref_image.unsqueeze(0), (k, k, k, k), mode="replicate")[0]
    tgt_pad = F.pad(warped, (k, k, k, k))
    mask_pad = F.pad(mask, (k, k, k, k))

    ref_l = ref_image[0]
    tgt_l = warped[:, 0]

    sum_w = torch.zeros(B, H, W, device=warped.device, dtype=warped.dtype)
    sum_x = torch.zeros_like(sum_w)
    sum_y = torch.zeros_like(sum_w)
    sum_xx = torch.zeros_like(sum_w)
    sum_yy = torch.zeros_like(sum_w)
    sum_xy = torch.zeros_like(sum_w)

    for dy in range(-k, k + 1):
        rows = slice(k + dy, k + dy + H)
        for dx in range(-k, k + 1):
            cols = slice(k + dx, k + dx + W)
            spatial = math.hypot(dx, dy) / gamma_p

            ref_n = ref_pad[:, rows, cols]  # (3, H, W)
            tgt_n = tgt_pad[:, :, rows, cols]  # (B, 3, H, W)

            w_ref = torch.exp(
                -(torch.linalg.vector_norm(ref_n - ref_image, dim=0) / gamma_c + spatial)
            )
            w_tgt = torch.exp(
                -(torch.linalg.vector_norm(tgt_n - warped, dim=1) / gamma_c + spatial)
            )
            w = w_ref * w_tgt * mask_pad[:, rows, cols]

            x = ref_n[0] - ref_l  # (H, W), broadcast over B
            y = tgt_n[:, 0] - tgt_l

            wx = w * x
            wy = w * y
            sum_w += w
            sum_x += wx
            sum_y += wy
            sum_xx += wx * x
            sum_yy += wy * y
            sum_xy += wx * y

    has_weight = sum_w > 0
    sum_w = torch.where(has_weight, sum_w, torch.ones_like(sum_w))
    mean_x = sum_x / sum_w
    mean_y = sum_y / sum_w
    var_x = sum_xx / sum_w - mean_x**2
    var_y = sum_yy / sum_w - mean_y**2
    covar = sum_xy / sum_w - mean_x * mean_y

    flat = (var_x < FLAT_PATCH_VARIANCE) | (var_y < FLAT_PATCH_VARIANCE)
    denom = torch.sqrt((var_x * var_y).clamp(min=FLAT_PATCH_VARIANCE**2))
    similarity = -(covar / denom).clamp(-1.0, 1.0)

    no_information = flat | ~valid | ~has_weight
    return torch.where(
        no_information,
        torch.full_like(similarity, NO_INFORMATION_SIMILARITY),
        similarity,
    )


def make_pixel_grid(
    height: int,
    width: int,
    device: str | torch.device = "cpu",
) -> torch.Tensor:
    """Create a grid of all pixel coordinates.

    Args:
        height: Image height.
        width: Image width.
        device: Device for the output tensor.

    Returns:
        Pixel coordinates (u, v), shape (H*W, 2), float32.
        u is column (0..W-1), v is row (0..H-1).
    """
    v, u = torch.meshgrid(
        torch.arange(height, device=device, dtype=torch.float32),
        torch.arange(width, device=device, dtype=torch.float32),
        indexing="ij",
    )
    return torch.stack([u.reshape(-1), v.reshape(-1)], dim=-1)  # (H*W, 2)


def warp_target_image(
    ref_camera: ProjectionModel,
    tgt_camera: PinholeCamera,
    tgt_image: torch.Tensor,
    depth_maps: torch.Tensor,
    pixel_grid: torch.Tensor | None = None,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Warp a target image into the reference view at per-pixel depths.

    For each reference pixel and each depth map b:
    1. Cast a ray through the reference camera.
    2. Compute the 3D point at depth_maps[b]: point = origin + depth * direction.
    3. Project the 3D point into the target camera.
    4. Sample the target image at the projected pixel location (bilinear).

    Args:
        ref_camera: Reference camera.
        tgt_camera: Target camera.
        tgt_image: Target Lab image, shape (3, H_t, W_t), float32.
        depth_maps: Plane depths, shape (B, H, W), float32. NaN = no depth.
        pixel_grid: Precomputed reference pixel grid, shape (H*W, 2).

    Returns:
        warped: Warped target images, shape (B, 3, H, W), float32. Zero
            where invalid.
        valid: Shape (B, H, W), bool. False where the point is behind the
            target camera or projects outside its image.
    """
    with record_function("warp_target_image"):
        B, H, W = depth_maps.shape
        if pixel_grid is None:
            pixel_grid = make_pixel_grid(H, W, device=depth_maps.device)

        origins, directions = ref_camera.cast_ray(pixel_grid)  # (N, 3), (N, 3)
        points = origins.unsqueeze(0) + depth_maps.reshape(B, -1, 1) * directions

        pixels, valid = tgt_camera.project(points.reshape(-1, 3))
        pixels = pixels.reshape(B, H, W, 2)
        valid = valid.reshape(B, H, W) & tgt_camera.in_image(pixels)
        valid = valid & torch.isfinite(depth_maps) & (depth_maps > 0)

        pixels = torch.where(valid.unsqueeze(-1), pixels, torch.zeros_like(pixels))
        warped = sample_image(tgt_image, pixels)
        warped = torch.where(valid.unsqueeze(1), warped, torch.zeros_like(warped))
        return warped, valid


def compute_patch_similarity(
    ref_image: torch.Tensor,
    tgt_image: torch.Tensor,
    ref_camera: ProjectionModel,
    tgt_camera: PinholeCamera,
    depth_maps: torch.Tensor,
    wsh: int,
    gamma_c: float,
    gamma_p: float,
    pixel_grid: torch.Tensor | None = None,
) -> torch.Tensor:
    """Similarity of every reference pixel against a target at given depths.

    Args:
        ref_image: Reference Lab image, shape (3, H, W), float32.
        tgt_image: Target Lab image, shape (3, H_t, W_t), float32.
        ref_camera: Reference camera.
        tgt_camera: Target camera.
        depth_maps: Plane depths to test, shape (B, H, W), float32.
        wsh: Half window size.
        gamma_c: Color falloff of the bilateral weights.
        gamma_p: Spatial falloff of the bilateral weights.
        pixel_grid: Precomputed reference pixel grid, shape (H*W, 2).

    Returns:
        Similarity, shape (B, H, W), float32 in [-1, 1].
    """
    with record_function("compute_patch_similarity"), torch.no_grad():
        warped, valid = warp_target_image(
            ref_camera, tgt_camera, tgt_image, depth_maps, pixel_grid
        )
        return compute_bilateral_ncc(ref_image, warped, valid, wsh, gamma_c, gamma_p)
