"""Volume description models.

Dimensions, sample format and field selection are fixed at the start of a
generation run and shared by every stage of the pipeline.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

import numpy as np

from py2volgen.core.errors import ValidationError


@dataclass(frozen=True)
class VolumeDimensions:
    """Voxel counts per axis (x, y, z)."""
    x: int
    y: int
    z: int

    def __post_init__(self):
        for axis, value in zip('xyz', (self.x, self.y, self.z)):
            if int(value) != value or value <= 0:
                raise ValidationError(
                    f"Volume dimension {axis} must be a positive integer, got {value}",
                    field_name=axis
                )

    @classmethod
    def from_sequence(cls, values) -> 'VolumeDimensions':
        values = tuple(int(v) for v in values)
        if len(values) != 3:
            raise ValidationError(f"Expected three dimensions, got {len(values)}",
                                  field_name='dimensions')
        return cls(*values)

    @property
    def volume(self) -> int:
        return self.x * self.y * self.z

    @property
    def max_dimension(self) -> int:
        return max(self.x, self.y, self.z)

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.x, self.y, self.z)

    def array_shape(self) -> Tuple[int, int, int]:
        """Numpy shape of the volume; x varies fastest so the order is (z, y, x)."""
        return (self.z, self.y, self.x)


class SampleFormat(Enum):
    """Unsigned integer sample formats supported by the generator."""
    UINT8 = 8
    UINT16 = 16

    @classmethod
    def from_bit_width(cls, bit_width: int) -> 'SampleFormat':
        try:
            return cls(int(bit_width))
        except ValueError:
            raise ValidationError(
                f"Invalid bit width {bit_width}; supported widths are 8 and 16",
                field_name='bit_width'
            )

    @property
    def bit_width(self) -> int:
        return self.value

    @property
    def bytes_per_sample(self) -> int:
        return self.value // 8

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(np.uint8) if self is SampleFormat.UINT8 else np.dtype(np.uint16)

    @property
    def max_value(self) -> int:
        return int(np.iinfo(self.dtype).max)


class FieldKind(Enum):
    """Built-in scalar fields."""
    RADIAL_FALLOFF = "radial"
    MANDELBULB = "mandelbulb"
