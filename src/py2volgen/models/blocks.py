"""Container block models.

A container is an ordered sequence of blocks. The block variants form a closed
set (``ContainerBlock``); each is an independent dataclass that knows how to
write itself into a zarr group and feed its bytes to the container checksum
through ``write_to(group, digest)``. Payload blocks (raster and TOC) hold
their LOD levels as arrays of bricks, see :class:`BrickLevel`.
"""

import json
import math
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, List, Optional, Tuple, Union

import numpy as np

from py2volgen.storage.zarr_compat import create_array, DEFAULT_COMPRESSOR


class CompressionScheme(Enum):
    NONE = "none"
    BLOSC_ZSTD = "blosc-zstd"


class ChecksumSemantics(Enum):
    NONE = "none"
    MD5 = "md5"


class DomainSemantics(Enum):
    X = "x"
    Y = "y"
    Z = "z"


@dataclass
class GlobalHeader:
    """Container-wide settings."""
    checksum_semantics: ChecksumSemantics = ChecksumSemantics.MD5
    format_version: str = "1.0"
    byte_order: str = sys.byteorder

    def to_dict(self) -> dict:
        return {
            'checksum_semantics': self.checksum_semantics.value,
            'format_version': self.format_version,
            'byte_order': self.byte_order,
        }


def _write_header(group, attrs: dict, digest) -> None:
    """Store block attributes and add their canonical JSON to the digest."""
    group.attrs.update(attrs)
    if digest is not None:
        digest.update(json.dumps(attrs, sort_keys=True).encode('utf-8'))


def _write_array(group, name: str, data: np.ndarray, digest) -> None:
    data = np.ascontiguousarray(data)
    array = create_array(group, name, data.shape, data.dtype)
    array[...] = data
    if digest is not None:
        digest.update(data.tobytes())


@dataclass
class BrickLevel:
    """One LOD level stored as a grid of overlapping cubic bricks.

    ``bricks`` has shape (nbz, nby, nbx, B, B, B). Each brick holds
    ``B - 2 * overlap`` interior voxels per axis surrounded by ``overlap``
    voxels copied from its neighbours (edge-clamped at the volume border).
    ``shape`` is the (z, y, x) size of the level itself.
    """
    shape: Tuple[int, int, int]
    bricks: Any
    brick_size: int
    overlap: int

    @property
    def interior_size(self) -> int:
        return self.brick_size - 2 * self.overlap

    @property
    def grid(self) -> Tuple[int, int, int]:
        return tuple(int(n) for n in self.bricks.shape[:3])

    @property
    def brick_count(self) -> int:
        nbz, nby, nbx = self.grid
        return nbz * nby * nbx

    def expected_grid(self) -> Tuple[int, int, int]:
        s = self.interior_size
        return tuple(int(math.ceil(d / s)) for d in self.shape)

    def interior_extent(self, k: int, j: int, i: int) -> Tuple[int, int, int]:
        """Number of real (non padding) interior voxels in brick (k, j, i)."""
        s = self.interior_size
        return tuple(min(s, d - idx * s) for d, idx in zip(self.shape, (k, j, i)))

    def interior(self, brick: np.ndarray, k: int, j: int, i: int) -> np.ndarray:
        """Interior voxels of ``brick`` that belong to the level."""
        o = self.overlap
        ez, ey, ex = self.interior_extent(k, j, i)
        return brick[o:o + ez, o:o + ey, o:o + ex]

    def iter_bricks(self) -> Iterator[Tuple[int, int, int, np.ndarray]]:
        """Yield (k, j, i, brick) reading one z-plane of bricks at a time."""
        nbz, nby, nbx = self.grid
        for k in range(nbz):
            plane = np.asarray(self.bricks[k])
            for j in range(nby):
                for i in range(nbx):
                    yield k, j, i, plane[j, i]

    def reassemble(self) -> np.ndarray:
        """Dense (z, y, x) array of the level rebuilt from brick interiors."""
        out = None
        s = self.interior_size
        for k, j, i, brick in self.iter_bricks():
            if out is None:
                out = np.zeros(self.shape, dtype=brick.dtype)
            part = self.interior(brick, k, j, i)
            out[k * s:k * s + part.shape[0],
                j * s:j * s + part.shape[1],
                i * s:i * s + part.shape[2]] = part
        return out


def _write_levels(group, levels: List[BrickLevel], compression: CompressionScheme,
                  digest) -> None:
    compressor = DEFAULT_COMPRESSOR if compression is CompressionScheme.BLOSC_ZSTD else None
    for n, level in enumerate(levels):
        b = level.brick_size
        array = create_array(group, f"lod_{n}", level.bricks.shape, level.bricks.dtype,
                             chunks=(1, 1, 1, b, b, b), compressor=compressor)
        array.attrs['level_shape'] = [int(v) for v in level.shape]
        for k in range(level.grid[0]):
            plane = np.ascontiguousarray(np.asarray(level.bricks[k]))
            array[k] = plane
            if digest is not None:
                digest.update(plane.tobytes())


@dataclass
class DataBlock:
    """Generic block without payload."""
    block_id: str = ""
    compression: CompressionScheme = CompressionScheme.NONE

    block_type = "data"

    def write_to(self, group, digest=None) -> None:
        _write_header(group, {
            'block_id': self.block_id,
            'block_type': self.block_type,
            'compression': self.compression.value,
        }, digest)


@dataclass
class RasterBlock:
    """Flat-raster sourced bricked volume with an explicit LOD descriptor."""
    block_id: str = ""
    compression: CompressionScheme = CompressionScheme.NONE
    domain_semantics: List[DomainSemantics] = field(default_factory=list)
    domain_size: List[int] = field(default_factory=list)
    lod_dec_factor: List[int] = field(default_factory=list)
    lod_groups: List[int] = field(default_factory=list)
    lod_level_count: List[int] = field(default_factory=list)
    brick_size: List[int] = field(default_factory=list)
    brick_overlap: List[int] = field(default_factory=list)
    element_bit_size: int = 0
    element_mantissa: int = 0
    element_signed: bool = False
    element_is_float: bool = False
    transformation: List[List[float]] = field(default_factory=list)
    levels: List[BrickLevel] = field(default_factory=list)

    block_type = "raster"

    def set_type_to_scalar(self, bit_size: int, mantissa: int, signed: bool) -> None:
        self.element_bit_size = int(bit_size)
        self.element_mantissa = int(mantissa)
        self.element_signed = bool(signed)
        self.element_is_float = False

    def set_scale_only_transformation(self, scale) -> None:
        """Homogeneous 4x4 transform with ``scale`` on the diagonal."""
        matrix = np.eye(4)
        matrix[0, 0], matrix[1, 1], matrix[2, 2] = (float(s) for s in scale)
        self.transformation = matrix.tolist()

    @property
    def scale(self) -> Tuple[float, float, float]:
        if not self.transformation:
            return ()
        return tuple(self.transformation[i][i] for i in range(3))

    @property
    def sample_dtype(self) -> np.dtype:
        return np.dtype(f"uint{self.element_bit_size}")

    def verify(self) -> Tuple[bool, str]:
        """Check the descriptor and the stored levels for consistency.

        Returns:
            (True, "") when consistent, otherwise (False, reason)
        """
        expected_semantics = [DomainSemantics.X, DomainSemantics.Y, DomainSemantics.Z]
        if self.domain_semantics != expected_semantics:
            return False, "domain semantics must be X, Y, Z"
        if len(self.domain_size) != 3 or any(s <= 0 for s in self.domain_size):
            return False, f"invalid domain size {self.domain_size}"
        if len(self.lod_dec_factor) != 3 or any(f != 2 for f in self.lod_dec_factor):
            return False, f"unsupported LOD decimation factors {self.lod_dec_factor}"
        if len(self.lod_groups) != 3 or any(g != 0 for g in self.lod_groups):
            return False, "all axes must belong to LOD group 0"
        if len(self.lod_level_count) != 1 or self.lod_level_count[0] < 1:
            return False, f"invalid LOD level count {self.lod_level_count}"
        if self.element_bit_size not in (8, 16) or self.element_signed or self.element_is_float:
            return False, f"unsupported scalar type ({self.element_bit_size} bit)"
        if len(self.brick_size) != 3 or len(set(self.brick_size)) != 1:
            return False, f"bricks must be cubic, got {self.brick_size}"
        if len(self.brick_overlap) != 3 or len(set(self.brick_overlap)) != 1:
            return False, f"brick overlap must be uniform, got {self.brick_overlap}"
        if self.brick_size[0] <= 2 * self.brick_overlap[0]:
            return False, (f"brick size {self.brick_size[0]} must exceed twice "
                           f"the overlap {self.brick_overlap[0]}")
        if len(self.scale) != 3 or any(s <= 0 for s in self.scale):
            return False, f"invalid scale transformation {self.scale}"
        if len(self.levels) != self.lod_level_count[0]:
            return False, (f"descriptor declares {self.lod_level_count[0]} LOD levels "
                           f"but {len(self.levels)} are stored")

        x, y, z = self.domain_size
        expected_shape = (z, y, x)
        for n, level in enumerate(self.levels):
            if tuple(level.shape) != expected_shape:
                return False, f"LOD {n} has shape {level.shape}, expected {expected_shape}"
            if level.brick_size != self.brick_size[0] or level.overlap != self.brick_overlap[0]:
                return False, f"LOD {n} brick layout does not match the descriptor"
            if level.grid != level.expected_grid():
                return False, f"LOD {n} brick grid {level.grid} != {level.expected_grid()}"
            if tuple(level.bricks.shape[3:]) != (level.brick_size,) * 3:
                return False, f"LOD {n} bricks have shape {tuple(level.bricks.shape[3:])}"
            if np.dtype(level.bricks.dtype) != self.sample_dtype:
                return False, f"LOD {n} stores {level.bricks.dtype}, expected {self.sample_dtype}"
            expected_shape = tuple((d + 1) // 2 for d in expected_shape)

        return True, ""

    def write_to(self, group, digest=None) -> None:
        _write_header(group, {
            'block_id': self.block_id,
            'block_type': self.block_type,
            'compression': self.compression.value,
            'domain_semantics': [d.value for d in self.domain_semantics],
            'domain_size': [int(v) for v in self.domain_size],
            'lod_dec_factor': [int(v) for v in self.lod_dec_factor],
            'lod_groups': [int(v) for v in self.lod_groups],
            'lod_level_count': [int(v) for v in self.lod_level_count],
            'brick_size': [int(v) for v in self.brick_size],
            'brick_overlap': [int(v) for v in self.brick_overlap],
            'element_bit_size': self.element_bit_size,
            'element_mantissa': self.element_mantissa,
            'element_signed': self.element_signed,
            'element_is_float': self.element_is_float,
            'transformation': self.transformation,
        }, digest)
        _write_levels(group, self.levels, self.compression, digest)


@dataclass
class TOCBlock:
    """Bricked LOD hierarchy built directly from a flat raw file."""
    block_id: str = ""
    compression: CompressionScheme = CompressionScheme.NONE
    domain_size: Tuple[int, int, int] = (0, 0, 0)
    component_count: int = 1
    element_bit_size: int = 0
    voxel_spacing: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    brick_size: int = 0
    brick_overlap: int = 0
    levels: List[BrickLevel] = field(default_factory=list)

    block_type = "toc"

    @property
    def lod_level_count(self) -> int:
        return len(self.levels)

    def write_to(self, group, digest=None) -> None:
        _write_header(group, {
            'block_id': self.block_id,
            'block_type': self.block_type,
            'compression': self.compression.value,
            'domain_size': [int(v) for v in self.domain_size],
            'component_count': self.component_count,
            'element_bit_size': self.element_bit_size,
            'voxel_spacing': [float(v) for v in self.voxel_spacing],
            'brick_size': self.brick_size,
            'brick_overlap': self.brick_overlap,
            'lod_level_count': self.lod_level_count,
        }, digest)
        _write_levels(group, self.levels, self.compression, digest)


@dataclass
class Histogram1DBlock:
    block_id: str = "1D Histogram"
    compression: CompressionScheme = CompressionScheme.NONE
    histogram: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.uint64))

    block_type = "histogram_1d"

    def write_to(self, group, digest=None) -> None:
        _write_header(group, {
            'block_id': self.block_id,
            'block_type': self.block_type,
            'compression': self.compression.value,
            'bucket_count': int(len(self.histogram)),
        }, digest)
        _write_array(group, 'histogram', self.histogram.astype(np.uint64), digest)


@dataclass
class Histogram2DBlock:
    """Joint histogram of value (rows) against gradient magnitude (columns)."""
    block_id: str = "2D Histogram"
    compression: CompressionScheme = CompressionScheme.NONE
    histogram: np.ndarray = field(default_factory=lambda: np.zeros((0, 0), dtype=np.uint64))
    max_gradient: float = 0.0
    value_range: Tuple[float, float] = (0.0, 0.0)

    block_type = "histogram_2d"

    def write_to(self, group, digest=None) -> None:
        _write_header(group, {
            'block_id': self.block_id,
            'block_type': self.block_type,
            'compression': self.compression.value,
            'max_gradient': float(self.max_gradient),
            'value_range': [float(v) for v in self.value_range],
        }, digest)
        _write_array(group, 'histogram', self.histogram.astype(np.uint64), digest)


@dataclass
class MaxMinBlock:
    """Global and per-brick min/max values used to skip empty regions."""
    block_id: str = "Brick Max/Min Values"
    compression: CompressionScheme = CompressionScheme.NONE
    value_count: int = 1
    global_min: float = math.inf
    global_max: float = -math.inf
    brick_values: List[List[float]] = field(default_factory=list)

    block_type = "max_min"

    def start_new_value(self) -> None:
        """Begin the entry of the next brick."""
        self.brick_values.append([math.inf, -math.inf])

    def merge_data(self, min_value: float, max_value: float) -> None:
        """Merge a min/max pair into the current brick and the global value."""
        if not self.brick_values:
            self.start_new_value()
        current = self.brick_values[-1]
        current[0] = min(current[0], float(min_value))
        current[1] = max(current[1], float(max_value))
        self.global_min = min(self.global_min, float(min_value))
        self.global_max = max(self.global_max, float(max_value))

    @property
    def global_value(self) -> Tuple[float, float]:
        return self.global_min, self.global_max

    def write_to(self, group, digest=None) -> None:
        _write_header(group, {
            'block_id': self.block_id,
            'block_type': self.block_type,
            'compression': self.compression.value,
            'value_count': self.value_count,
            'global_min': float(self.global_min),
            'global_max': float(self.global_max),
        }, digest)
        values = np.asarray(self.brick_values, dtype=np.float64).reshape(-1, 2)
        _write_array(group, 'brick_min_max', values, digest)


@dataclass
class KeyValuePairBlock:
    block_id: str = "Metadata"
    compression: CompressionScheme = CompressionScheme.NONE
    pairs: List[Tuple[str, str]] = field(default_factory=list)

    block_type = "key_value"

    def add_pair(self, key: str, value: str) -> None:
        self.pairs.append((str(key), str(value)))

    def get(self, key: str) -> Optional[str]:
        for k, v in self.pairs:
            if k == key:
                return v
        return None

    def write_to(self, group, digest=None) -> None:
        _write_header(group, {
            'block_id': self.block_id,
            'block_type': self.block_type,
            'compression': self.compression.value,
            'pairs': [[k, v] for k, v in self.pairs],
        }, digest)


ContainerBlock = Union[DataBlock, RasterBlock, TOCBlock, Histogram1DBlock,
                       Histogram2DBlock, MaxMinBlock, KeyValuePairBlock]
