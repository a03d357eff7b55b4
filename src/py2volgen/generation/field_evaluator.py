"""
Field Evaluator - procedural scalar fields sampled on the voxel grid.

Two fields are built in:

* Radial falloff: brightest at the grid center, falling off linearly with the
  normalized Euclidean distance and clamped at zero. Useful as a quick sanity
  pattern.
* Mandelbulb: escape-time fractal of power ``n``. The returned escape
  fraction is ``i / max_iterations`` for a point that leaves the bailout
  radius after iteration ``i`` and 1.0 for a point that never escapes.

Both fields produce a value in [0, 1] which is scaled by the maximum of the
output sample type and truncated to an integer.

The scalar functions (``radial_falloff``, ``mandelbulb``) define the field.
``FieldEvaluator.sample_row`` evaluates a whole grid row with numpy using the
same formulas, which is what the streaming writer uses.
"""

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from py2volgen.models.volume import VolumeDimensions, SampleFormat, FieldKind

# Mandelbulb sample coordinates span [-COORD_HALF_RANGE, +COORD_HALF_RANGE]
COORD_HALF_RANGE = 1.125


@dataclass
class MandelbulbParameters:
    """Iteration settings for the Mandelbulb field."""
    power: int = 8
    bailout: float = 4.0
    max_iterations: Optional[int] = None  # None -> maximum of the sample type

    def resolve_max_iterations(self, sample_format: SampleFormat) -> int:
        if self.max_iterations is None:
            return sample_format.max_value
        return int(self.max_iterations)


def normalized_coordinate(index: float, extent: int) -> float:
    """Map a voxel index onto [-1.125, 1.125] using (extent - 1) as the span.

    A single-voxel axis maps to the center (0.0).
    """
    if extent <= 1:
        return 0.0
    return 2.0 * COORD_HALF_RANGE * float(index) / (extent - 1) - COORD_HALF_RANGE


def radial_falloff(x: float, y: float, z: float, dims: VolumeDimensions) -> float:
    """Radial falloff field value in [0, 1] for voxel (x, y, z)."""
    dx = 0.5 - float(x) / dims.x
    dy = 0.5 - float(y) / dims.y
    dz = 0.5 - float(z) / dims.z
    distance = math.sqrt(dx * dx + dy * dy + dz * dz)
    return max(0.0, (0.5 - distance) * 2.0)


def mandelbulb(sx: float, sy: float, sz: float,
               power: int = 8, max_iterations: int = 255,
               bailout: float = 4.0) -> float:
    """Escape fraction of the Mandelbulb iteration started at (sx, sy, sz).

    Args:
        sx, sy, sz: Sample point (the constant added each iteration)
        power: Exponent ``n`` of the spherical power map
        max_iterations: Iteration limit
        bailout: Escape radius

    Returns:
        ``i / max_iterations`` when the iterate escapes after step ``i``,
        1.0 when it stays bounded for all iterations.
    """
    fx = fy = fz = 0.0
    r = 0.0
    for i in range(max_iterations):
        r_n = r ** power
        theta = math.atan2(math.sqrt(fx * fx + fy * fy), fz) * power
        phi = math.atan2(fy, fx) * power
        fx, fy, fz = (
            sx + r_n * math.sin(theta) * math.cos(phi),
            sy + r_n * math.sin(theta) * math.sin(phi),
            sz + r_n * math.cos(theta),
        )
        r = math.sqrt(fx * fx + fy * fy + fz * fz)
        if r > bailout:
            return float(i) / max_iterations
    return 1.0


def mandelbulb_array(sx: np.ndarray, sy, sz, power: int = 8,
                     max_iterations: int = 255, bailout: float = 4.0) -> np.ndarray:
    """Vectorized :func:`mandelbulb` over arrays of sample points."""
    sx, sy, sz = np.broadcast_arrays(
        np.asarray(sx, dtype=np.float64),
        np.asarray(sy, dtype=np.float64),
        np.asarray(sz, dtype=np.float64),
    )
    shape = sx.shape
    result = np.ones(sx.size, dtype=np.float64)

    # Only points that have not escaped are kept in the working arrays
    active = np.arange(sx.size)
    cx, cy, cz = sx.ravel().copy(), sy.ravel().copy(), sz.ravel().copy()
    fx = np.zeros(sx.size)
    fy = np.zeros(sx.size)
    fz = np.zeros(sx.size)
    r = np.zeros(sx.size)

    for i in range(max_iterations):
        r_n = r ** power
        theta = np.arctan2(np.sqrt(fx * fx + fy * fy), fz) * power
        phi = np.arctan2(fy, fx) * power
        sin_theta = np.sin(theta)
        fx, fy, fz = (
            cx + r_n * sin_theta * np.cos(phi),
            cy + r_n * sin_theta * np.sin(phi),
            cz + r_n * np.cos(theta),
        )
        r = np.sqrt(fx * fx + fy * fy + fz * fz)

        escaped = r > bailout
        if escaped.any():
            result[active[escaped]] = float(i) / max_iterations
            keep = ~escaped
            active = active[keep]
            cx, cy, cz = cx[keep], cy[keep], cz[keep]
            fx, fy, fz, r = fx[keep], fy[keep], fz[keep], r[keep]
            if active.size == 0:
                break

    return result.reshape(shape)


class FieldEvaluator:
    """Samples one of the built-in fields on a fixed voxel grid.

    The evaluator is stateless apart from its configuration, so rows (or
    segments of a row) may be evaluated concurrently.
    """

    def __init__(self, kind: FieldKind, dims: VolumeDimensions,
                 sample_format: SampleFormat,
                 mandelbulb_params: Optional[MandelbulbParameters] = None):
        self.kind = kind
        self.dims = dims
        self.sample_format = sample_format
        self.mandelbulb_params = mandelbulb_params or MandelbulbParameters()
        self.max_iterations = self.mandelbulb_params.resolve_max_iterations(sample_format)

    def field_value(self, x: int, y: int, z: int) -> float:
        """Unscaled field value in [0, 1] at voxel (x, y, z)."""
        if self.kind is FieldKind.MANDELBULB:
            return mandelbulb(
                normalized_coordinate(x, self.dims.x),
                normalized_coordinate(y, self.dims.y),
                normalized_coordinate(z, self.dims.z),
                power=self.mandelbulb_params.power,
                max_iterations=self.max_iterations,
                bailout=self.mandelbulb_params.bailout,
            )
        return radial_falloff(x, y, z, self.dims)

    def sample(self, x: int, y: int, z: int) -> int:
        """Field value at voxel (x, y, z) scaled to the sample range."""
        return int(self.field_value(x, y, z) * self.sample_format.max_value)

    def sample_row(self, y: int, z: int, x_start: int = 0,
                   x_stop: Optional[int] = None) -> np.ndarray:
        """Evaluate voxels [x_start, x_stop) of row (y, z).

        Returns:
            Array of the sample dtype with one value per x.
        """
        if x_stop is None:
            x_stop = self.dims.x
        xs = np.arange(x_start, x_stop, dtype=np.float64)
        max_value = self.sample_format.max_value

        if self.kind is FieldKind.MANDELBULB:
            if self.dims.x > 1:
                sx = 2.0 * COORD_HALF_RANGE * xs / (self.dims.x - 1) - COORD_HALF_RANGE
            else:
                sx = np.zeros_like(xs)
            values = mandelbulb_array(
                sx,
                normalized_coordinate(y, self.dims.y),
                normalized_coordinate(z, self.dims.z),
                power=self.mandelbulb_params.power,
                max_iterations=self.max_iterations,
                bailout=self.mandelbulb_params.bailout,
            )
        else:
            dx = 0.5 - xs / self.dims.x
            dy = 0.5 - float(y) / self.dims.y
            dz = 0.5 - float(z) / self.dims.z
            distance = np.sqrt(dx * dx + dy * dy + dz * dz)
            values = np.maximum(0.0, (0.5 - distance) * 2.0)

        return (values * max_value).astype(self.sample_format.dtype)
