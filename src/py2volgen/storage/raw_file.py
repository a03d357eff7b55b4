"""Headerless raw volume file used as the backing store during generation.

Samples are packed row-major with x varying fastest, then y, then z, in the
host byte order. The file is pre-sized on creation and then filled strictly
sequentially with ``append_row``.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)


class RawVolumeFile:
    """Append-only writer and memory-mapped reader for a flat raw volume."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._handle = None
        self._read_only = True
        self.bytes_written = 0

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    @property
    def size(self) -> int:
        """Current size of the file on disk in bytes (0 if missing)."""
        try:
            return self.path.stat().st_size
        except FileNotFoundError:
            return 0

    def create(self, size_bytes: int) -> bool:
        """Create (or truncate) the file and reserve ``size_bytes``.

        The file is left open for writing at offset 0.
        """
        self.close()
        try:
            if self.path.parent and not self.path.parent.exists():
                self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = open(self.path, 'w+b')
            self._handle.truncate(int(size_bytes))
            self._handle.seek(0)
        except OSError as e:
            logger.error(f"Failed to create raw file {self.path}: {e}")
            self._handle = None
            return False

        self._read_only = False
        self.bytes_written = 0
        logger.debug(f"Created raw file {self.path} ({size_bytes:,} bytes reserved)")
        return True

    def open(self, read_only: bool = True) -> bool:
        """Open an existing raw file, positioned at offset 0."""
        self.close()
        try:
            self._handle = open(self.path, 'rb' if read_only else 'r+b')
        except OSError as e:
            logger.error(f"Failed to open raw file {self.path}: {e}")
            self._handle = None
            return False
        self._read_only = read_only
        return True

    def append_row(self, data: Union[bytes, np.ndarray]) -> None:
        """Write one row of samples at the current position."""
        if self._handle is None or self._read_only:
            raise IOError(f"Raw file {self.path} is not open for writing")
        if isinstance(data, np.ndarray):
            data = data.tobytes()
        self._handle.write(data)
        self.bytes_written += len(data)

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def delete(self) -> bool:
        """Close and remove the file. Returns False if removal failed."""
        self.close()
        try:
            os.remove(self.path)
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning(f"Could not delete raw file {self.path}: {e}")
            return False
        logger.debug(f"Deleted raw file {self.path}")
        return True

    def memmap(self, dtype, shape: Tuple[int, int, int],
               mode: str = 'r') -> np.memmap:
        """Read-only view of the file as an array of ``shape`` (z, y, x)."""
        return np.memmap(self.path, dtype=np.dtype(dtype), mode=mode, shape=tuple(shape))

    def __enter__(self) -> 'RawVolumeFile':
        return self

    def __exit__(self, exc_type, exc, tb) -> Optional[bool]:
        self.close()
        return None
