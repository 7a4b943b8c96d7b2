"""PipelineProfiler wrapping torch.profiler with stage timing and memory tracking."""

import logging
import time
import tracemalloc
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import torch
from tabulate import tabulate
from torch.profiler import ProfilerActivity, profile, record_function

_active_profiler: "PipelineProfiler | None" = None


@dataclass
class MemorySnapshot:
    """Memory usage captured at stage boundaries."""

    cpu_delta_mb: float = 0.0
    cuda_delta_mb: float = 0.0
    cuda_peak_mb: float = 0.0


class PipelineProfiler:
    """Wrapper around torch.profiler for depth map runs.

    Provides:
    - CUDA warmup before profiling
    - Manual memory tracking at stage boundaries
    - Per-stage wall times
    - Chrome trace export

    Memory is tracked using torch.cuda APIs and tracemalloc rather than the
    profiler's built-in profile_memory option, which can cause OOM when
    serializing traces.
    """

    def __init__(
        self,
        activities: list[str] | None = None,
        record_shapes: bool = False,
    ):
        """Initialize profiler.

        Args:
            activities: List of activities to profile. Options: ["cpu", "cuda"].
                Defaults to ["cpu", "cuda"]; "cuda" is ignored without a GPU.
            record_shapes: Record tensor shapes.
        """
        if activities is None:
            activities = ["cpu", "cuda"]

        self.activities = []
        if "cpu" in activities:
            self.activities.append(ProfilerActivity.CPU)
        if "cuda" in activities and torch.cuda.is_available():
            self.activities.append(ProfilerActivity.CUDA)

        self.record_shapes = record_shapes
        self.prof = None
        self.memory_snapshots: dict[str, MemorySnapshot] = {}
        self.stage_times_ms: dict[str, float] = {}

    def _cuda_warmup(self):
        """Perform CUDA warmup to avoid cold-start overhead in profile."""
        if torch.cuda.is_available():
            dummy = torch.randn(100, 100, device="cuda")
            _ = dummy @ dummy
            torch.cuda.synchronize()

    def __enter__(self):
        """Start profiling and make this the active profiler."""
        self._cuda_warmup()

        self.prof = profile(
            activities=self.activities,
            profile_memory=False,
            record_shapes=self.record_shapes,
            with_stack=False,
        )
        self.prof.__enter__()
        set_active_profiler(self)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Stop profiling and finalize."""
        set_active_profiler(None)
        if self.prof is not None:
            self.prof.__exit__(exc_type, exc_val, exc_tb)

    @contextmanager
    def stage(self, name: str):
        """Stage-level profiling context with memory tracking.

        Args:
            name: Stage name (e.g., "sgm", "refine").

        Yields:
            None.
        """
        has_cuda = torch.cuda.is_available()

        if has_cuda:
            torch.cuda.synchronize()
            torch.cuda.reset_peak_memory_stats()
            cuda_before = torch.cuda.memory_allocated()

        tracing = not tracemalloc.is_tracing()
        if tracing:
            tracemalloc.start()
        start = time.perf_counter()

        try:
            with record_function(name):
                yield
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            _, cpu_peak = tracemalloc.get_traced_memory()
            if tracing:
                tracemalloc.stop()

            snap = MemorySnapshot(cpu_delta_mb=cpu_peak / (1024 * 1024))
            if has_cuda:
                torch.cuda.synchronize()
                cuda_after = torch.cuda.memory_allocated()
                cuda_peak = torch.cuda.max_memory_allocated()
                snap.cuda_delta_mb = (cuda_after - cuda_before) / (1024 * 1024)
                snap.cuda_peak_mb = cuda_peak / (1024 * 1024)

            self.memory_snapshots[name] = snap
            self.stage_times_ms[name] = self.stage_times_ms.get(name, 0.0) + elapsed_ms

    def export_chrome_trace(self, path: Path) -> None:
        """Export Chrome trace JSON for visualization.

        Args:
            path: Output path for trace JSON file.
        """
        if self.prof is None:
            raise RuntimeError("Profiler must be run before exporting trace")

        self.prof.export_chrome_trace(str(path))

    def format_report(self) -> str:
        """Format stage times and memory as an ASCII table.

        Returns:
            Grid table with one row per stage, in execution order.
        """
        table_data = []
        for name, elapsed in self.stage_times_ms.items():
            snap = self.memory_snapshots.get(name, MemorySnapshot())
            table_data.append(
                [
                    name,
                    f"{elapsed:.2f}",
                    f"{snap.cpu_delta_mb:.2f}",
                    f"{snap.cuda_peak_mb:.2f}",
                ]
            )

        headers = ["Stage", "Time (ms)", "CPU (MB)", "CUDA peak (MB)"]
        return tabulate(table_data, headers=headers, tablefmt="grid")


def get_active_profiler() -> PipelineProfiler | None:
    """Profiler currently collecting stage data, if any."""
    return _active_profiler


def set_active_profiler(profiler: PipelineProfiler | None) -> None:
    """Install (or clear with None) the profiler stages report to."""
    global _active_profiler
    _active_profiler = profiler


@contextmanager
def timed_stage(name: str, logger: logging.Logger):
    """Time a pipeline stage and log its duration at INFO.

    Forwards to the active PipelineProfiler when one is installed, otherwise
    wraps the stage in ``record_function`` only.

    Args:
        name: Stage name.
        logger: Logger of the calling module.

    Yields:
        None.
    """
    profiler = get_active_profiler()
    start = time.perf_counter()
    logger.debug("Stage %s started", name)
    if profiler is not None:
        with profiler.stage(name):
            yield
    else:
        with record_function(name):
            yield
    logger.info("Stage %s finished in %.2f s", name, time.perf_counter() - start)
