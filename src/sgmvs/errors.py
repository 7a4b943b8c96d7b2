"""Exception types raised by the depth map pipeline."""


class DepthMapConfigError(ValueError):
    """Invalid sizing or mismatched inputs, detected before any kernel runs."""


class DeviceMemoryError(RuntimeError):
    """Allocation on the compute device failed for one batch of work.

    Batches completed before the failure are left intact; callers may retry
    with a smaller cell size.
    """


class RunCancelledError(RuntimeError):
    """The run was cancelled through its DeviceContext."""


def check_same_shape(stage: str, **maps) -> None:
    """Raise DepthMapConfigError unless all tensors share one shape.

    Args:
        stage: Stage name, included in the error message.
        **maps: Named tensors (or objects with a ``shape``) to compare.

    Raises:
        DepthMapConfigError: If any two shapes differ.
    """
    shapes = {name: tuple(m.shape) for name, m in maps.items()}
    if len(set(shapes.values())) > 1:
        details = ", ".join(f"{name}={shape}" for name, shape in shapes.items())
        raise DepthMapConfigError(f"{stage}: mismatched map shapes ({details})")
