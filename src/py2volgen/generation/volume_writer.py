"""
Streaming Volume Writer - fills the raw backing file one grid row at a time.

Rows are produced in (z, y) order with x varying fastest and appended to the
backing store, so no more than a row of samples is held in memory. The x
samples of a row are independent and may be split across a thread pool; a
row is only written after all of its segments have been computed.

Progress goes through an injected reporter. During the first half of the
volume the elapsed time is reported, at the midpoint slice the elapsed time
is recorded, and for the second half the remaining time is estimated as
``2 * elapsed_at_midpoint - elapsed_now`` (never below zero). The estimate
assumes every slice costs about the same and is only meant for display.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

import numpy as np

from py2volgen.core.errors import GenerationIntegrityError, ErrorCodes
from py2volgen.generation.field_evaluator import FieldEvaluator
from py2volgen.storage.raw_file import RawVolumeFile

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    """Format seconds as H:MM:SS."""
    total = max(0, int(seconds))
    hours = total // 3600
    mins = (total // 60) % 60
    secs = total % 60
    return f"{hours}:{mins:02d}:{secs:02d}"


class LoggingProgressReporter:
    """Reports generation progress through a logger."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def report_elapsed(self, fraction: float, seconds: float) -> None:
        self.log.info(f"Generating data {100.0 * fraction:.3f}% completed "
                      f"(Elapsed Time {format_duration(seconds)})")

    def report_remaining(self, fraction: float, seconds: float) -> None:
        self.log.info(f"Generating data {100.0 * fraction:.3f}% completed "
                      f"(Remaining Time {format_duration(seconds)})")


class NullProgressReporter:
    """Discards progress updates."""

    def report_elapsed(self, fraction: float, seconds: float) -> None:
        pass

    def report_remaining(self, fraction: float, seconds: float) -> None:
        pass


class StreamingVolumeWriter:
    """Evaluates a field over the full grid and streams it into a raw file."""

    def __init__(self, evaluator: FieldEvaluator, progress=None,
                 clock: Callable[[], float] = time.monotonic,
                 row_workers: int = 1):
        """
        Args:
            evaluator: Field evaluator bound to the volume dimensions
            progress: Reporter with report_elapsed/report_remaining
                (defaults to LoggingProgressReporter)
            clock: Monotonic time source in seconds
            row_workers: Number of threads evaluating segments of a row
        """
        self.evaluator = evaluator
        self.progress = progress if progress is not None else LoggingProgressReporter()
        self.clock = clock
        self.row_workers = max(1, int(row_workers))

    @property
    def expected_bytes(self) -> int:
        dims = self.evaluator.dims
        return dims.volume * self.evaluator.sample_format.bytes_per_sample

    def write(self, raw_file: RawVolumeFile) -> int:
        """Generate the whole volume into ``raw_file``.

        Returns:
            Number of bytes written

        Raises:
            GenerationIntegrityError: If the byte count does not match the volume
        """
        dims = self.evaluator.dims
        start_bytes = raw_file.bytes_written

        if self.row_workers > 1:
            with ThreadPoolExecutor(max_workers=self.row_workers) as pool:
                self._write_slices(raw_file, pool)
        else:
            self._write_slices(raw_file, None)

        written = raw_file.bytes_written - start_bytes
        if written != self.expected_bytes:
            raise GenerationIntegrityError(
                f"Wrote {written} bytes, expected {self.expected_bytes}",
                error_code=ErrorCodes.SIZE_MISMATCH,
                context={'dimensions': dims.as_tuple()}
            )

        logger.info(f"Generated {dims.x}x{dims.y}x{dims.z} volume "
                    f"({written:,} bytes) into {raw_file.path}")
        return written

    def _write_slices(self, raw_file: RawVolumeFile,
                      pool: Optional[ThreadPoolExecutor]) -> None:
        dims = self.evaluator.dims
        half = dims.z // 2
        halfway_seconds = 0.0
        start = self.clock()

        for z in range(dims.z):
            elapsed = self.clock() - start
            fraction = z / dims.z

            if z < half:
                self.progress.report_elapsed(fraction, elapsed)
            elif z > half:
                remaining = max(0.0, 2.0 * halfway_seconds - elapsed)
                self.progress.report_remaining(fraction, remaining)
            else:
                halfway_seconds = elapsed

            for y in range(dims.y):
                raw_file.append_row(self._evaluate_row(y, z, pool))

    def _evaluate_row(self, y: int, z: int,
                      pool: Optional[ThreadPoolExecutor]) -> np.ndarray:
        if pool is None:
            return self.evaluator.sample_row(y, z)

        bounds = np.linspace(0, self.evaluator.dims.x, self.row_workers + 1).astype(int)
        futures = [
            pool.submit(self.evaluator.sample_row, y, z, int(lo), int(hi))
            for lo, hi in zip(bounds[:-1], bounds[1:]) if hi > lo
        ]
        return np.concatenate([f.result() for f in futures])
