"""
Fixed-resolution numerical helpers

Composite Simpson quadrature and bisection with a fixed number of steps.
Neither is adaptive: the panel count and the tolerance bound the accuracy.
"""

import math

import numpy as np

SIMPSON_PANELS = 128
BISECTION_TOLERANCE = 1.0e-5


def simpson_weights(panels):
    if panels <= 0 or panels % 2 != 0:
        raise ValueError(f"Simpson's rule needs a positive even panel count, got {panels}")
    w = np.ones(panels + 1)
    w[1:-1:2] = 4.0
    w[2:-1:2] = 2.0
    return w


def composite_simpson(f, panels, a, b):
    """
    Integrate f over [a, b] with the composite Simpson rule.

    f is called once with an array of nodes. a and b may be arrays, in which
    case the nodes get an extra trailing axis of length panels + 1 and one
    integral is returned per (a, b) pair.
    """
    w = simpson_weights(panels)
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    t = np.linspace(0.0, 1.0, panels + 1)
    x = a[..., None] + (b - a)[..., None] * t
    step = (b - a) / panels
    result = step / 3.0 * np.sum(f(x) * w, axis=-1)
    return result[()]


def bisection_steps(lo, hi, tolerance):
    """Number of halvings that shrink [lo, hi] below tolerance."""
    return max(0, math.ceil(math.log2((hi - lo) / tolerance)))


def bisect_increasing(f, target, lo, hi, tolerance=BISECTION_TOLERANCE):
    """
    Solve f(x) = target for a non-decreasing f on [lo, hi].

    Vectorised over target. Runs a fixed number of steps so that the final
    bracket is narrower than tolerance, then returns the root of the chord
    through its ends, which is exact when f is linear inside the bracket.
    """
    target = np.asarray(target, dtype=float)
    a = np.full(target.shape, float(lo))
    b = np.full(target.shape, float(hi))
    c = 0.5 * (a + b)
    for _ in range(bisection_steps(lo, hi, tolerance)):
        below = f(c) < target
        a = np.where(below, c, a)
        b = np.where(below, b, c)
        c = 0.5 * (a + b)
    fa = f(a)
    span = f(b) - fa
    with np.errstate(divide="ignore", invalid="ignore"):
        t = np.where(span > 0.0, (target - fa) / span, 0.5)
    return (a + np.clip(t, 0.0, 1.0) * (b - a))[()]
