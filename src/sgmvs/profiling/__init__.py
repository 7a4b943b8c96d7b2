"""Profiling infrastructure for identifying pipeline bottlenecks."""

from .profiler import (
    MemorySnapshot,
    PipelineProfiler,
    get_active_profiler,
    set_active_profiler,
    timed_stage,
)

__all__ = [
    "MemorySnapshot",
    "PipelineProfiler",
    "get_active_profiler",
    "set_active_profiler",
    "timed_stage",
]
