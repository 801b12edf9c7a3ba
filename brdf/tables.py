"""
Tabulated albedo grids

Grid2D holds E(alpha, cosTheta) (or any other function on a rectangle),
Grid1D holds E_avg(alpha). Axis i maps integer index [0, N-1] linearly onto
a real interval, [0, 1] unless told otherwise. Lookups are (bi)linear with the
query clamped to the stored domain, so there is no extrapolation.

Tables are stored as numpy .npz archives: the grid kind, the float64 values
and the axis bounds, which round-trips every value bit for bit.
"""

from pathlib import Path

import numpy as np


class TableError(ValueError):
    """A stored table does not match what the caller asked for."""


class LinearTransform:
    """Affine map of [a, b] onto [c, d]."""

    def __init__(self, a, b, c, d):
        self.a, self.b, self.c, self.d = float(a), float(b), float(c), float(d)

    def __call__(self, x):
        return self.c + (np.asarray(x, dtype=float) - self.a) * (self.d - self.c) / (self.b - self.a)

    def inverse(self):
        return LinearTransform(self.c, self.d, self.a, self.b)


def _lerp_coords(x, size, lo, hi):
    """Clamped continuous index -> (lower index, upper index, fraction)."""
    pos = (np.clip(np.asarray(x, dtype=float), lo, hi) - lo) / (hi - lo) * (size - 1)
    i0 = np.minimum(np.floor(pos).astype(np.intp), size - 2)
    frac = pos - i0
    return i0, i0 + 1, frac


class _Grid:
    kind = None
    ndim = None

    def __init__(self, values, bounds=None):
        values = np.array(values, dtype=np.float64)
        if values.ndim != self.ndim:
            raise TableError(f"{type(self).__name__} needs a {self.ndim}D array, got shape {values.shape}")
        if min(values.shape) < 2:
            raise TableError(f"{type(self).__name__} needs at least 2 samples per axis, got {values.shape}")
        if bounds is None:
            bounds = [(0.0, 1.0)] * self.ndim
        bounds = np.array(bounds, dtype=np.float64).reshape(self.ndim, 2)
        values.flags.writeable = False
        bounds.flags.writeable = False
        self.values = values
        self.bounds = bounds

    @property
    def shape(self):
        return self.values.shape

    def axis(self, i):
        """Coordinates of the samples along axis i."""
        lo, hi = self.bounds[i]
        return np.linspace(lo, hi, self.values.shape[i])

    def index_transform(self, i):
        lo, hi = self.bounds[i]
        return LinearTransform(0, self.values.shape[i] - 1, lo, hi)

    def save(self, path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            np.savez(f, kind=np.array(self.kind), values=self.values, bounds=self.bounds)

    @classmethod
    def load(cls, path, shape=None, bounds=None):
        """
        Load a table written by save().

        shape and bounds, when given, are the caller's expectations; a table
        that disagrees raises TableError instead of being resampled.
        """
        with np.load(Path(path), allow_pickle=False) as data:
            kind = str(data["kind"])
            values = data["values"]
            stored_bounds = data["bounds"]
        if kind != cls.kind:
            raise TableError(f"{path}: expected a {cls.kind} table, found {kind}")
        if shape is not None and tuple(values.shape) != tuple(shape):
            raise TableError(f"{path}: expected shape {tuple(shape)}, found {values.shape}")
        if bounds is not None and not np.array_equal(np.reshape(bounds, stored_bounds.shape), stored_bounds):
            raise TableError(f"{path}: expected bounds {np.asarray(bounds).tolist()}, found {stored_bounds.tolist()}")
        return cls(values, stored_bounds)

    def __eq__(self, other):
        return (type(self) is type(other)
                and np.array_equal(self.values, other.values)
                and np.array_equal(self.bounds, other.bounds))

    def __repr__(self):
        return f"{type(self).__name__}(shape={self.shape}, bounds={self.bounds.tolist()})"


class Grid2D(_Grid):
    """Dense W x H table, e.g. specular albedo over (alpha, cosTheta)."""

    kind = "grid2d"
    ndim = 2

    @classmethod
    def build(cls, width, height, fn, bounds=None):
        """Tabulate fn(x, y) at every grid node."""
        grid = cls(np.zeros((width, height)), bounds)
        xs, ys = grid.axis(0), grid.axis(1)
        values = np.empty((width, height))
        for i, x in enumerate(xs):
            for j, y in enumerate(ys):
                values[i, j] = fn(x, y)
        return cls(values, grid.bounds)

    @property
    def alpha_size(self):
        return self.values.shape[0]

    @property
    def cos_theta_size(self):
        return self.values.shape[1]

    def get(self, i, j):
        return float(self.values[i, j])

    def sample(self, x, y):
        """Bilinear lookup, vectorised over broadcastable x and y."""
        x, y = np.broadcast_arrays(np.asarray(x, dtype=float), np.asarray(y, dtype=float))
        w, h = self.values.shape
        i0, i1, fx = _lerp_coords(x, w, *self.bounds[0])
        j0, j1, fy = _lerp_coords(y, h, *self.bounds[1])
        v = self.values
        top = v[i0, j0] * (1.0 - fy) + v[i0, j1] * fy
        bottom = v[i1, j0] * (1.0 - fy) + v[i1, j1] * fy
        return (top * (1.0 - fx) + bottom * fx)[()]


class Grid1D(_Grid):
    """Dense length-W table, e.g. hemispherical average albedo over alpha."""

    kind = "grid1d"
    ndim = 1

    @classmethod
    def build(cls, width, fn, bounds=None):
        grid = cls(np.zeros(width), bounds)
        return cls([fn(x) for x in grid.axis(0)], grid.bounds)

    @property
    def alpha_size(self):
        return self.values.shape[0]

    def get(self, i):
        return float(self.values[i])

    def sample(self, x):
        i0, i1, f = _lerp_coords(x, self.values.shape[0], *self.bounds[0])
        v = self.values
        return (v[i0] * (1.0 - f) + v[i1] * f)[()]
