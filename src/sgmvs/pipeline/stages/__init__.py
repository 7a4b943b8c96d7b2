"""Depth map pipeline stages."""

from .optimization import run_optimization_stage
from .refinement import run_fusion_stage, run_refine_stage
from .sgm import run_sgm_stage

__all__ = [
    "run_sgm_stage",
    "run_refine_stage",
    "run_fusion_stage",
    "run_optimization_stage",
]
