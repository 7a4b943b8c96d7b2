"""Compute-device context: device selection, memory budget, cancellation."""

import logging
import threading
from dataclasses import dataclass

import torch

from .errors import RunCancelledError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceCapabilities:
    """Hardware properties queried once per context."""

    name: str
    total_memory_bytes: int | None
    multiprocessor_count: int


class DeviceContext:
    """Owns the torch device a depth map run executes on.

    Capabilities are queried lazily on first use and cached for the lifetime
    of the context. A run is cancelled with ``cancel()``; kernels check
    ``check_cancelled()`` between cells, slices and iterations, so work
    already issued completes and nothing further is launched.

    Args:
        device: Torch device string or object.
        memory_budget_bytes: Working memory one cost volume cell may use.
    """

    def __init__(
        self,
        device: str | torch.device = "cpu",
        memory_budget_bytes: int = 1024 * 1024 * 1024,
    ) -> None:
        self.device = torch.device(device)
        self.memory_budget_bytes = int(memory_budget_bytes)
        self._cancel_event = threading.Event()
        self._lock = threading.Lock()
        self._capabilities: DeviceCapabilities | None = None

    @classmethod
    def from_config(cls, runtime) -> "DeviceContext":
        """Build a context from a RuntimeConfig."""
        device = runtime.device
        if device == "cuda" and not torch.cuda.is_available():
            logger.warning("CUDA requested but not available, falling back to CPU")
            device = "cpu"
        return cls(device, int(runtime.memory_budget_mb * 1024 * 1024))

    @property
    def capabilities(self) -> DeviceCapabilities:
        """Hardware capabilities, queried on first access."""
        with self._lock:
            if self._capabilities is None:
                self._capabilities = self._query_capabilities()
                logger.debug("Device capabilities: %s", self._capabilities)
            return self._capabilities

    def _query_capabilities(self) -> DeviceCapabilities:
        if self.device.type == "cuda":
            props = torch.cuda.get_device_properties(self.device)
            return DeviceCapabilities(
                name=props.name,
                total_memory_bytes=props.total_memory,
                multiprocessor_count=props.multi_processor_count,
            )
        return DeviceCapabilities(
            name="cpu",
            total_memory_bytes=None,
            multiprocessor_count=torch.get_num_threads(),
        )

    def effective_budget_bytes(self) -> int:
        """Memory budget, capped by the device's total memory when known."""
        total = self.capabilities.total_memory_bytes
        if total is not None and self.memory_budget_bytes > total:
            logger.warning(
                "Memory budget %.0f MB exceeds device memory %.0f MB; capping",
                self.memory_budget_bytes / 2**20,
                total / 2**20,
            )
            return total
        return self.memory_budget_bytes

    def check_device(self, tensor: torch.Tensor, what: str) -> None:
        """Warn when a tensor lives on a different device than this context."""
        if tensor.device.type != self.device.type:
            logger.warning(
                "%s is on %s but the context device is %s",
                what,
                tensor.device,
                self.device,
            )

    def cancel(self) -> None:
        """Request cancellation of the run using this context."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def check_cancelled(self) -> None:
        """Raise RunCancelledError if cancellation was requested."""
        if self._cancel_event.is_set():
            raise RunCancelledError("Depth map run cancelled")
