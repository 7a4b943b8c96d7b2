"""Inputs and results of a single-view depth map run."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import torch

from ..dense.depth_sim_map import DepthSimMap
from ..errors import DepthMapConfigError
from ..projection.pinhole import PinholeCamera
from ..pyramid import ImagePyramid

logger = logging.getLogger(__name__)


@dataclass
class ViewInput:
    """A calibrated view: full-resolution camera plus its image pyramid."""

    camera: PinholeCamera
    pyramid: ImagePyramid

    @property
    def name(self) -> str:
        return self.camera.name

    def at_level(self, level: int) -> tuple[PinholeCamera, torch.Tensor]:
        """Camera and Lab image for a pyramid level.

        Raises:
            DepthMapConfigError: If the pyramid has no such level.
        """
        if not 0 <= level < self.pyramid.num_levels:
            raise DepthMapConfigError(
                f"View {self.name!r} has {self.pyramid.num_levels} pyramid "
                f"levels, level {level} requested"
            )
        image = self.pyramid.level(level)
        camera = self.camera.scaled(
            self.pyramid.scale(level), image_size=(image.shape[2], image.shape[1])
        )
        return camera, image


@dataclass
class DepthMapResult:
    """Every map produced for one reference view.

    Attributes:
        sgm: SGM map at the SGM level.
        seed: SGM map upscaled to the refinement level (None if refinement
            is disabled).
        refined: One refined map per target view.
        fused: Fused (or best-selected) refined map.
        optimized: Optimizer output.
    """

    sgm: DepthSimMap
    seed: DepthSimMap | None = None
    refined: list[DepthSimMap] = field(default_factory=list)
    fused: DepthSimMap | None = None
    optimized: DepthSimMap | None = None

    @property
    def final(self) -> DepthSimMap:
        """The most processed map available."""
        for candidate in (self.optimized, self.fused, self.seed):
            if candidate is not None:
                return candidate
        return self.sgm

    def save(self, output_dir: str | Path, name: str = "depth") -> list[Path]:
        """Write every map as ``<name>_<stage>.npz`` under ``output_dir``.

        Returns:
            Paths written.
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        maps = {
            "sgm": self.sgm,
            "seed": self.seed,
            "fused": self.fused,
            "optimized": self.optimized,
        }
        for i, refined in enumerate(self.refined):
            maps[f"refined_{i}"] = refined

        paths = []
        for stage, depth_sim_map in maps.items():
            if depth_sim_map is None:
                continue
            path = output_dir / f"{name}_{stage}.npz"
            depth_sim_map.save(path)
            paths.append(path)
        logger.debug("Saved %d maps to %s", len(paths), output_dir)
        return paths
