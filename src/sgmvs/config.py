"""Configuration management for the SGMVS depth map pipeline."""

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

VALID_FILTERING_AXES = "XY"


class QualityPreset(str, Enum):
    """Quality presets for the depth map pipeline.

    Each preset provides a different speed/accuracy tradeoff:
    - FAST: coarse SGM level, small refinement search, few optimizer iterations
    - BALANCED: default settings
    - QUALITY: larger windows and longer refinement search
    """

    FAST = "fast"
    BALANCED = "balanced"
    QUALITY = "quality"


PRESET_CONFIGS = {
    QualityPreset.FAST: {
        "sgm": {"scale_level": 2, "wsh": 3},
        "refine": {"num_steps": 15},
        "optimization": {"iterations": 50},
    },
    QualityPreset.BALANCED: {
        "sgm": {"scale_level": 1, "wsh": 4},
        "refine": {"num_steps": 31},
        "optimization": {"iterations": 100},
    },
    QualityPreset.QUALITY: {
        "sgm": {"scale_level": 1, "wsh": 5},
        "refine": {"num_steps": 61},
        "optimization": {"iterations": 200},
    },
}


def _validate_half_window(v: int) -> int:
    if v < 1:
        raise ValueError(f"wsh must be >= 1, got {v}")
    return v


class _Section(BaseModel):
    """Base for config sections: unknown keys are accepted with a warning."""

    model_config = ConfigDict(extra="allow", validate_assignment=True)

    @model_validator(mode="after")
    def warn_extra_fields(self):
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in %s (ignored): %s",
                type(self).__name__,
                list(self.__pydantic_extra__.keys()),
            )
        return self


class SgmConfig(_Section):
    """Configuration for cost volume construction and SGM regularization.

    Attributes:
        scale_level: Pyramid level the similarity volume is computed at.
        wsh: Half window size of the similarity patch (window is 2*wsh+1).
        gamma_c: Color falloff of the bilateral weights (Lab units).
        gamma_p: Spatial falloff of the bilateral weights (pixels).
        p1: Penalty for a one-hypothesis depth change between neighbours.
        p2: Penalty for larger depth changes (occlusions).
        filtering_axes: Spatial axes regularized, in order ("X", "Y").
            Each axis is swept in both directions.
        interpolate: Sub-voxel parabola interpolation at extraction.
        use_second_best: Regularize the second-best similarity volume when at
            least two target cameras are available.
        max_depths_per_cell: Hypotheses per batch. None derives it from the
            memory budget.
    """

    scale_level: int = 1
    wsh: int = 4
    gamma_c: float = 5.5
    gamma_p: float = 8.0
    p1: float = 10.0
    p2: float = 100.0
    filtering_axes: str = "YX"
    interpolate: bool = True
    use_second_best: bool = False
    max_depths_per_cell: int | None = None

    @field_validator("wsh")
    @classmethod
    def validate_wsh(cls, v: int) -> int:
        """Validate that the half window size is positive."""
        return _validate_half_window(v)

    @field_validator("filtering_axes")
    @classmethod
    def validate_filtering_axes(cls, v: str) -> str:
        """Validate that axes are a non-empty combination of X and Y."""
        v = v.upper()
        if not v or any(axis not in VALID_FILTERING_AXES for axis in v):
            raise ValueError(
                f"filtering_axes must only contain {list(VALID_FILTERING_AXES)}, got {v!r}"
            )
        return v

    @field_validator("max_depths_per_cell")
    @classmethod
    def validate_max_depths_per_cell(cls, v: int | None) -> int | None:
        """Validate that an explicit cell size is positive."""
        if v is not None and v < 1:
            raise ValueError(f"max_depths_per_cell must be >= 1, got {v}")
        return v

    @model_validator(mode="after")
    def check_penalties(self) -> "SgmConfig":
        """Validate 0 <= p1 <= p2."""
        if self.p1 < 0 or self.p2 < 0:
            raise ValueError(f"penalties must be >= 0, got p1={self.p1}, p2={self.p2}")
        if self.p1 > self.p2:
            raise ValueError(f"p1 must be <= p2, got p1={self.p1}, p2={self.p2}")
        return self


class RefineConfig(_Section):
    """Configuration for per-target sub-pixel refinement.

    Attributes:
        enabled: Run refinement (and the stages that consume it).
        scale_level: Pyramid level refinement runs at.
        wsh: Half window size of the similarity patch.
        gamma_c: Color falloff of the bilateral weights.
        gamma_p: Spatial falloff of the bilateral weights.
        num_steps: Number of depth offsets searched, centered on the seed.
        step_scale: Offset step in units of the per-pixel pixel size.
    """

    enabled: bool = True
    scale_level: int = 0
    wsh: int = 3
    gamma_c: float = 15.5
    gamma_p: float = 8.0
    num_steps: int = 31
    step_scale: float = 1.0

    @field_validator("wsh")
    @classmethod
    def validate_wsh(cls, v: int) -> int:
        """Validate that the half window size is positive."""
        return _validate_half_window(v)

    @field_validator("num_steps")
    @classmethod
    def validate_num_steps(cls, v: int) -> int:
        """Validate that num_steps is positive and odd."""
        if v <= 0 or v % 2 == 0:
            raise ValueError(f"num_steps must be positive and odd, got {v}")
        return v

    @field_validator("step_scale")
    @classmethod
    def validate_step_scale(cls, v: float) -> float:
        """Validate that the step scale is positive."""
        if v <= 0:
            raise ValueError(f"step_scale must be > 0, got {v}")
        return v


class FusionConfig(_Section):
    """Configuration for Gaussian kernel-density fusion of refined maps.

    Attributes:
        enabled: Fuse the per-target refined maps.
        samples_half: Sample offsets span [-samples_half, samples_half].
        samples_per_pixel_size: Samples per pixel-size depth step.
        sigma: Gaussian bandwidth, in samples.
    """

    enabled: bool = True
    samples_half: int = 150
    samples_per_pixel_size: float = 10.0
    sigma: float = 15.0

    @field_validator("samples_half")
    @classmethod
    def validate_samples_half(cls, v: int) -> int:
        """Validate that the sample range is positive."""
        if v < 1:
            raise ValueError(f"samples_half must be >= 1, got {v}")
        return v

    @field_validator("samples_per_pixel_size", "sigma")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate strictly positive floats."""
        if v <= 0:
            raise ValueError(f"value must be > 0, got {v}")
        return v


class OptimizationConfig(_Section):
    """Configuration for the iterative depth/similarity optimizer.

    Attributes:
        enabled: Run the optimizer.
        iterations: Number of Jacobi iterations.
        variance_threshold: Local L variance at which the data and smoothness
            terms are weighted equally.
        variance_softness: Width of the sigmoid around variance_threshold.
        max_step_fraction: Largest depth step per iteration, as a fraction of
            the pixel size.
    """

    enabled: bool = True
    iterations: int = 100
    variance_threshold: float = 20.0
    variance_softness: float = 10.0
    max_step_fraction: float = 0.1

    @field_validator("iterations")
    @classmethod
    def validate_iterations(cls, v: int) -> int:
        """Validate non-negative iteration count."""
        if v < 0:
            raise ValueError(f"iterations must be >= 0, got {v}")
        return v

    @field_validator("variance_softness", "max_step_fraction")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate strictly positive floats."""
        if v <= 0:
            raise ValueError(f"value must be > 0, got {v}")
        return v


class RuntimeConfig(_Section):
    """Configuration for runtime settings.

    Attributes:
        device: PyTorch device string.
        memory_budget_mb: Working memory a cost volume cell may use.
        quiet: Suppress progress output.
    """

    device: Literal["cpu", "cuda"] = "cpu"
    memory_budget_mb: float = 1024.0
    quiet: bool = False

    @field_validator("memory_budget_mb")
    @classmethod
    def validate_memory_budget(cls, v: float) -> float:
        """Validate that the memory budget is positive."""
        if v <= 0:
            raise ValueError(f"memory_budget_mb must be > 0, got {v}")
        return v


class DepthMapConfig(BaseModel):
    """Top-level configuration for depth map estimation.

    Attributes:
        quality_preset: Optional preset recorded for reference.
        sgm: Cost volume and SGM configuration.
        refine: Refinement configuration.
        fusion: Fusion configuration.
        optimization: Optimizer configuration.
        runtime: Runtime configuration.
    """

    model_config = ConfigDict(extra="allow")

    quality_preset: QualityPreset | None = None

    sgm: SgmConfig = Field(default_factory=SgmConfig)
    refine: RefineConfig = Field(default_factory=RefineConfig)
    fusion: FusionConfig = Field(default_factory=FusionConfig)
    optimization: OptimizationConfig = Field(default_factory=OptimizationConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    def apply_preset(self, preset: QualityPreset) -> "DepthMapConfig":
        """Apply a quality preset to this configuration.

        Only applies preset values to parameters that are still at their
        defaults. User-specified values take precedence.

        Args:
            preset: Quality preset to apply.

        Returns:
            Self for method chaining.
        """
        preset = QualityPreset(preset)
        for section_name, values in PRESET_CONFIGS[preset].items():
            section = getattr(self, section_name)
            default_section = type(section)()
            for key, value in values.items():
                if getattr(section, key) == getattr(default_section, key):
                    setattr(section, key, value)
        self.quality_preset = preset
        return self

    @model_validator(mode="after")
    def check_cross_stage_constraints(self) -> "DepthMapConfig":
        """Validate cross-stage constraints and warn about extra fields."""
        if self.refine.enabled and self.refine.scale_level > self.sgm.scale_level:
            logger.warning(
                "refine.scale_level=%d is coarser than sgm.scale_level=%d; "
                "refinement will not add resolution.",
                self.refine.scale_level,
                self.sgm.scale_level,
            )

        if self.fusion.enabled and not self.refine.enabled:
            logger.info("Fusion has no input with refinement disabled; skipping it")

        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in DepthMapConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "DepthMapConfig":
        """Load configuration from a YAML file.

        Missing fields use their default values.

        Args:
            path: Path to YAML configuration file.

        Returns:
            Loaded configuration with defaults filled in.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If the file is not valid YAML.
            ValueError: If validation fails (with all errors collected).
        """
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}

        cls._log_default_sections(data)

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            formatted_errors = format_validation_errors(e)
            raise ValueError(
                f"Configuration validation failed:\n{formatted_errors}"
            ) from None

        return config

    @staticmethod
    def _log_default_sections(data: dict[str, Any]) -> None:
        """Log INFO messages about sections using defaults."""
        for section in ("sgm", "refine", "fusion", "optimization", "runtime"):
            if section not in data:
                logger.info("Using default: %s (all defaults)", section)

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file.

        All fields including defaults are written for explicitness.

        Args:
            path: Path to output YAML file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(mode="json")

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors with YAML-style paths.

    Args:
        error: Pydantic ValidationError.

    Returns:
        Formatted error string with YAML paths and messages.
    """
    lines = []
    for err in error.errors():
        path_parts = []
        for part in err["loc"]:
            if isinstance(part, int) and path_parts:
                path_parts[-1] = f"{path_parts[-1]}[{part}]"
            else:
                path_parts.append(str(part))

        path = ".".join(path_parts)
        lines.append(f"  {path}: {err['msg']}")

    return "\n".join(lines)
