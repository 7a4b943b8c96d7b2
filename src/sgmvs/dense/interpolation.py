"""Sub-sample parabola fitting on non-uniform abscissae."""

import torch


def fit_parabola(
    x: torch.Tensor,
    y: torch.Tensor,
) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """Vertex of the parabola through three points, element-wise.

    Abscissae need not be evenly spaced. The fit is done relative to the
    middle point: with u = x - x1,
    a = ((y2 - y1) / (x2 - x1) - (y1 - y0) / (x1 - x0)) / (x2 - x0),
    b = (y1 - y0) / (x1 - x0) - a * u0,
    vertex at u* = -b / (2a), y* = y1 - b^2 / (4a).

    Args:
        x: Abscissae, shape (3, ...), float32. x1 must lie between x0 and x2.
        y: Ordinates, shape (3, ...), float32.

    Returns:
        vertex_x: Shape (...), float32. x1 where the fit is invalid.
        vertex_y: Shape (...), float32. y1 where the fit is invalid.
        valid: Shape (...), bool. True where the parabola opens upwards
            (a minimum exists) and x1 is strictly between x0 and x2.
    """
    x0, x1, x2 = x[0], x[1], x[2]
    y0, y1, y2 = y[0], y[1], y[2]

    u0 = x0 - x1
    u2 = x2 - x1
    ordered = u0 * u2 < 0
    one = torch.ones_like(u0)
    u0_safe = torch.where(ordered, u0, -one)
    u2_safe = torch.where(ordered, u2, one)

    slope_left = (y1 - y0) / -u0_safe
    slope_right = (y2 - y1) / u2_safe
    a = (slope_right - slope_left) / (u2_safe - u0_safe)
    b = slope_left - a * u0_safe

    valid = ordered & (a > 0) & torch.isfinite(a) & torch.isfinite(b)
    a_safe = torch.where(valid, a, one)
    u_star = -b / (2.0 * a_safe)
    y_star = y1 - b * b / (4.0 * a_safe)

    # Vertex stays inside the bracket
    lo = torch.minimum(u0_safe, u2_safe)
    hi = torch.maximum(u0_safe, u2_safe)
    u_star = torch.maximum(torch.minimum(u_star, hi), lo)

    vertex_x = torch.where(valid, x1 + u_star, x1)
    vertex_y = torch.where(valid, y_star, y1)
    return vertex_x, vertex_y, valid
