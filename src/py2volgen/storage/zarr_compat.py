"""Zarr v2/v3 compatibility helpers for the container and the brick staging store.

In zarr v2 stores are ``DirectoryStore`` objects and arrays take a single
numcodecs ``compressor``; zarr v3 uses ``LocalStore`` and a ``compressors``
list of codecs. Everything that creates stores or arrays goes through here.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import zarr

logger = logging.getLogger(__name__)

ZARR_VERSION = tuple(int(x) for x in zarr.__version__.split('.')[:2] if x.isdigit())
ZARR_3_AVAILABLE = ZARR_VERSION >= (3, 0)

if ZARR_3_AVAILABLE:
    from zarr.codecs import BloscCodec
    Blosc = None
else:
    from numcodecs import Blosc
    BloscCodec = None

DEFAULT_COMPRESSOR = 'zstd'
DEFAULT_COMPRESSION_LEVEL = 3


def create_zarr_store(path: Union[str, Path]):
    """Create a zarr store compatible with both zarr v2 and v3.

    In zarr v2: Uses DirectoryStore
    In zarr v3: Uses LocalStore (DirectoryStore was removed)
    """
    if ZARR_3_AVAILABLE:
        return zarr.storage.LocalStore(str(path))
    return zarr.DirectoryStore(str(path))


def open_group(path: Union[str, Path], mode: str = 'w'):
    """Open (or create with ``mode='w'``) the root group of a directory store."""
    return zarr.open_group(store=create_zarr_store(path), mode=mode)


def create_array(group, name: str, shape: Tuple[int, ...], dtype,
                 chunks: Optional[Tuple[int, ...]] = None,
                 compressor: Optional[str] = None,
                 compression_level: int = DEFAULT_COMPRESSION_LEVEL):
    """Create a chunked array in ``group``.

    Args:
        group: Parent zarr group
        name: Array name
        shape: Array shape
        dtype: Numpy dtype
        chunks: Chunk shape (defaults to the full shape)
        compressor: Blosc codec name (e.g. 'zstd') or None for no compression
        compression_level: Blosc compression level
    """
    shape = tuple(int(s) for s in shape)
    chunks = tuple(max(1, int(c)) for c in (chunks or shape))

    if ZARR_3_AVAILABLE:
        compressors = None
        if compressor:
            compressors = BloscCodec(cname=compressor, clevel=compression_level)
        return group.create_array(
            name=name,
            shape=shape,
            dtype=dtype,
            chunks=chunks,
            compressors=compressors,
            fill_value=0,
        )

    return group.create_dataset(
        name,
        shape=shape,
        dtype=dtype,
        chunks=chunks,
        compressor=Blosc(cname=compressor, clevel=compression_level) if compressor else None,
        fill_value=0,
    )
