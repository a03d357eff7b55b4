"""
Container Assembler - end-to-end build of a synthetic volume container.

The build is a linear sequence of stages::

    Init -> BackingStoreCreated -> FieldGenerated
         -> PayloadFlat | PayloadBricked -> Verified -> HistogramsComputed
         -> AccelerationStored -> MetadataStored -> Finalized
    (any stage) -> Failed

Each stage returns a :class:`StageResult`. A failed result carries the typed
error and the cleanup the failure requires (close the container, delete the
raw intermediate unless the caller asked to keep it); the driver applies that
cleanup and stops. The temporary brick staging store is removed however the
build ends.

When the output path does not carry the container extension the raw file is
the deliverable and the build stops after the field has been generated.
"""

import logging
import shutil
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional, Union

from py2volgen.config import GenerationConfig, get_default_generation_config
from py2volgen.core.error_formatting import log_error
from py2volgen.core.errors import (
    AssemblyError, DerivedDataError, ErrorCodes, GenerationIntegrityError,
    ResourceCreationError, ValidationError, VolumeGenError, wrap_external_error
)
from py2volgen.generation.brick_planner import BrickPlan, plan_bricks
from py2volgen.generation.field_evaluator import FieldEvaluator, MandelbulbParameters
from py2volgen.generation.volume_writer import StreamingVolumeWriter
from py2volgen.models.blocks import (
    ChecksumSemantics, CompressionScheme, DataBlock, DomainSemantics, GlobalHeader,
    Histogram1DBlock, Histogram2DBlock, KeyValuePairBlock, MaxMinBlock,
    RasterBlock, TOCBlock
)
from py2volgen.models.volume import FieldKind, SampleFormat, VolumeDimensions
from py2volgen.processing.bricking import BrickingEngine, combine_average, simple_max_min
from py2volgen.processing.histograms import HistogramEngine
from py2volgen.storage.container import VolumeContainer, is_container_path
from py2volgen.storage.raw_file import RawVolumeFile

logger = logging.getLogger(__name__)


class BuildState(Enum):
    """States of the container build."""
    INIT = "Init"
    BACKING_STORE_CREATED = "BackingStoreCreated"
    FIELD_GENERATED = "FieldGenerated"
    PAYLOAD_FLAT = "PayloadFlat"
    PAYLOAD_BRICKED = "PayloadBricked"
    VERIFIED = "Verified"
    HISTOGRAMS_COMPUTED = "HistogramsComputed"
    ACCELERATION_STORED = "AccelerationStored"
    METADATA_STORED = "MetadataStored"
    FINALIZED = "Finalized"
    FAILED = "Failed"


@dataclass
class GenerationRequest:
    """Parameters of one generation run."""
    output_path: Path
    dimensions: VolumeDimensions
    bit_width: int = 8
    use_mandelbulb: bool = False
    brick_size: int = 64
    use_toc_block: bool = False
    keep_raw: bool = False

    def __post_init__(self):
        self.output_path = Path(self.output_path)
        if not isinstance(self.dimensions, VolumeDimensions):
            self.dimensions = VolumeDimensions.from_sequence(self.dimensions)

    @property
    def sample_format(self) -> SampleFormat:
        return SampleFormat.from_bit_width(self.bit_width)

    @property
    def field_kind(self) -> FieldKind:
        return FieldKind.MANDELBULB if self.use_mandelbulb else FieldKind.RADIAL_FALLOFF

    @property
    def is_container(self) -> bool:
        return is_container_path(self.output_path)

    @property
    def raw_path(self) -> Path:
        """Raw intermediate: the output itself, or its .raw sibling for containers."""
        if self.is_container:
            return self.output_path.with_suffix('.raw')
        return self.output_path


@dataclass
class StageResult:
    """Outcome of one pipeline stage."""
    state: BuildState
    error: Optional[VolumeGenError] = None
    close_container: bool = False
    delete_raw: bool = False
    done: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, state: BuildState, done: bool = False) -> 'StageResult':
        return cls(state=state, done=done)

    @classmethod
    def failure(cls, error: VolumeGenError, close_container: bool = False,
                delete_raw: bool = False) -> 'StageResult':
        return cls(state=BuildState.FAILED, error=error,
                   close_container=close_container, delete_raw=delete_raw)


@dataclass
class BuildOutcome:
    """Result of :meth:`ContainerAssembler.build`."""
    success: bool
    state: BuildState
    error: Optional[VolumeGenError] = None
    container_path: Optional[Path] = None
    raw_path: Optional[Path] = None
    checksum: Optional[str] = None
    history: List[BuildState] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.success


@dataclass
class _BuildContext:
    request: GenerationRequest
    temp_path: Path
    state: BuildState = BuildState.INIT
    plan: Optional[BrickPlan] = None
    raw_file: Optional[RawVolumeFile] = None
    container: Optional[VolumeContainer] = None
    payload: Optional[Union[RasterBlock, TOCBlock]] = None
    max_min: Optional[MaxMinBlock] = None
    histogram_1d: Optional[Histogram1DBlock] = None
    histogram_2d: Optional[Histogram2DBlock] = None
    history: List[BuildState] = field(default_factory=list)


class ContainerAssembler:
    """Builds the raw intermediate and, for container outputs, the container.

    One assembler drives one build at a time; it owns the raw file and the
    container handle for the duration of :meth:`build`.
    """

    def __init__(self, config: Optional[GenerationConfig] = None,
                 bricking_engine: Optional[BrickingEngine] = None,
                 histogram_engine: Optional[HistogramEngine] = None,
                 progress=None,
                 container_factory: Callable[[Path], VolumeContainer] = VolumeContainer,
                 clock: Callable[[], float] = time.monotonic):
        """
        Args:
            config: Generation settings (defaults when omitted)
            bricking_engine: Bricking collaborator
            histogram_engine: Histogram collaborator
            progress: Progress reporter for the field writer
            container_factory: Callable creating a container for a path
            clock: Time source handed to the field writer
        """
        self.config = config or GenerationConfig.from_dict(get_default_generation_config())
        self.bricking_engine = bricking_engine or BrickingEngine(self.config.memory_budget_bytes)
        self.histogram_engine = histogram_engine or HistogramEngine(self.config.gradient_bins)
        self.progress = progress
        self.container_factory = container_factory
        self.clock = clock

    def build(self, request: GenerationRequest) -> BuildOutcome:
        """Run every stage of the build for ``request``."""
        output = request.output_path
        ctx = _BuildContext(request=request,
                            temp_path=output.with_name(output.name + self.config.temp_suffix))
        stages = [
            self._validate_request,
            self._create_backing_store,
            self._generate_field,
            self._open_container,
            self._build_payload,
            self._verify_payload,
            self._append_payload,
            self._release_raw,
            self._compute_histograms,
            self._store_derived_blocks,
            self._store_metadata,
            self._finalize,
        ]

        try:
            for stage in stages:
                try:
                    result = stage(ctx)
                except VolumeGenError as e:
                    result = StageResult.failure(e, close_container=True, delete_raw=True)

                if not result.ok:
                    return self._fail(ctx, result)

                if result.state != ctx.state:
                    ctx.history.append(result.state)
                ctx.state = result.state
                if result.done:
                    break
        finally:
            if ctx.container is not None and ctx.container.is_open and not ctx.container.is_finalized:
                ctx.container.close()
            if ctx.raw_file is not None:
                ctx.raw_file.close()
            shutil.rmtree(ctx.temp_path, ignore_errors=True)

        return BuildOutcome(
            success=True,
            state=ctx.state,
            container_path=output if request.is_container else None,
            raw_path=request.raw_path if ctx.raw_file and ctx.raw_file.path.exists() else None,
            checksum=ctx.container.checksum if ctx.container else None,
            history=list(ctx.history),
        )

    def _fail(self, ctx: _BuildContext, result: StageResult) -> BuildOutcome:
        log_error(result.error, logger=logger)
        if result.close_container and ctx.container is not None:
            ctx.container.close()
        if ctx.raw_file is not None:
            if result.delete_raw and not ctx.request.keep_raw:
                ctx.raw_file.delete()
            else:
                ctx.raw_file.close()
        ctx.history.append(BuildState.FAILED)
        ctx.state = BuildState.FAILED
        return BuildOutcome(success=False, state=BuildState.FAILED, error=result.error,
                            raw_path=ctx.request.raw_path if ctx.request.raw_path.exists() else None,
                            history=list(ctx.history))

    # ---- Stages ----

    def _validate_request(self, ctx: _BuildContext) -> StageResult:
        request = ctx.request
        try:
            request.sample_format
            if request.is_container:
                ctx.plan = plan_bricks(request.dimensions, request.brick_size,
                                       flat_raster=not request.use_toc_block,
                                       default_overlap=self.config.default_overlap)
                size, overlap = ctx.plan.brick_size[0], ctx.plan.brick_overlap[0]
                if size <= 2 * overlap:
                    raise ValidationError(
                        f"Brick size {size} must exceed twice the brick overlap {overlap}",
                        field_name='brick_size'
                    )
        except ValidationError as e:
            return StageResult.failure(e)
        return StageResult.success(BuildState.INIT)

    def _create_backing_store(self, ctx: _BuildContext) -> StageResult:
        request = ctx.request
        logger.info("Generating dummy data")
        ctx.raw_file = RawVolumeFile(request.raw_path)
        size = request.dimensions.volume * request.sample_format.bytes_per_sample
        if not ctx.raw_file.create(size):
            return StageResult.failure(ResourceCreationError(
                f"Failed to create {request.raw_path} file.",
                file_path=request.raw_path,
                error_code=ErrorCodes.RAW_CREATE_FAILED
            ))
        return StageResult.success(BuildState.BACKING_STORE_CREATED)

    def _generate_field(self, ctx: _BuildContext) -> StageResult:
        request = ctx.request
        evaluator = FieldEvaluator(
            request.field_kind, request.dimensions, request.sample_format,
            MandelbulbParameters(power=self.config.mandelbulb_power,
                                 bailout=self.config.mandelbulb_bailout,
                                 max_iterations=self.config.mandelbulb_max_iterations)
        )
        writer = StreamingVolumeWriter(evaluator, progress=self.progress, clock=self.clock,
                                       row_workers=self.config.row_workers)
        try:
            writer.write(ctx.raw_file)
        except GenerationIntegrityError as e:
            return StageResult.failure(e, delete_raw=True)
        except OSError as e:
            return StageResult.failure(
                wrap_external_error(e, f"Failed to write {request.raw_path}",
                                    GenerationIntegrityError),
                delete_raw=True
            )
        finally:
            ctx.raw_file.close()

        return StageResult.success(BuildState.FIELD_GENERATED, done=not request.is_container)

    def _open_container(self, ctx: _BuildContext) -> StageResult:
        path = ctx.request.output_path
        logger.info(f"Preparing creation of container {path}")
        ctx.container = self.container_factory(path)
        if not ctx.container.open():
            return StageResult.failure(ResourceCreationError(
                f"Failed to create container {path}",
                file_path=path,
                error_code=ErrorCodes.CONTAINER_CREATE_FAILED
            ), delete_raw=True)

        ctx.container.set_global_header(GlobalHeader(checksum_semantics=ChecksumSemantics.MD5))

        for block in (DataBlock(block_id="Test Block 1", compression=CompressionScheme.NONE),
                      DataBlock(block_id="Test Block 2")):
            if not ctx.container.add_block(block):
                return StageResult.failure(
                    AssemblyError(f"Failed to add block '{block.block_id}'",
                                  block_id=block.block_id,
                                  error_code=ErrorCodes.ADD_BLOCK_FAILED),
                    close_container=True, delete_raw=True
                )
        return StageResult.success(ctx.state)

    def _build_payload(self, ctx: _BuildContext) -> StageResult:
        ctx.max_min = MaxMinBlock(value_count=1)
        if ctx.request.use_toc_block:
            return self._build_toc_payload(ctx)
        return self._build_raster_payload(ctx)

    def _bricking_failure(self) -> StageResult:
        return StageResult.failure(
            GenerationIntegrityError("Failed to subdivide the volume into bricks",
                                     error_code=ErrorCodes.BRICKING_FAILED),
            close_container=True, delete_raw=True
        )

    def _build_toc_payload(self, ctx: _BuildContext) -> StageResult:
        request = ctx.request
        fmt = request.sample_format
        block = TOCBlock(block_id="Test TOC Volume 1", compression=CompressionScheme.NONE)

        ok = self.bricking_engine.subdivide_flat_file_into_bricks(
            block, request.raw_path, ctx.temp_path, fmt.dtype, 1,
            request.dimensions.as_tuple(), (1.0, 1.0, 1.0),
            ctx.plan.brick_size[0], ctx.plan.brick_overlap[0],
            self.config.allow_compression, True,
            self.config.memory_budget_bytes, ctx.max_min,
            self._report_bricking
        )
        if not ok:
            return self._bricking_failure()

        ctx.payload = block
        return StageResult.success(BuildState.PAYLOAD_BRICKED)

    def _build_raster_payload(self, ctx: _BuildContext) -> StageResult:
        request = ctx.request
        dims = request.dimensions
        fmt = request.sample_format
        plan = ctx.plan

        block = RasterBlock(block_id="Test Volume 1", compression=CompressionScheme.NONE)
        block.domain_semantics = [DomainSemantics.X, DomainSemantics.Y, DomainSemantics.Z]
        block.domain_size = list(dims.as_tuple())
        block.lod_dec_factor = list(plan.decimation_factor)
        block.lod_groups = [0, 0, 0]
        block.lod_level_count = [plan.lod_level_count]
        block.set_type_to_scalar(fmt.bit_width, fmt.bit_width, False)
        block.brick_size = list(plan.brick_size)
        block.brick_overlap = list(plan.brick_overlap)
        block.set_scale_only_transformation(plan.scale)

        if not ctx.raw_file.open(read_only=True):
            return StageResult.failure(ResourceCreationError(
                f"Failed to open {request.raw_path}",
                file_path=request.raw_path,
                error_code=ErrorCodes.RAW_OPEN_FAILED
            ), close_container=True, delete_raw=True)

        try:
            ok = self.bricking_engine.flat_data_to_bricked_lod(
                block, ctx.raw_file, ctx.temp_path,
                partial(combine_average, dtype=fmt.dtype),
                partial(simple_max_min, dtype=fmt.dtype),
                ctx.max_min, self._report_bricking
            )
        finally:
            ctx.raw_file.close()

        if not ok:
            return self._bricking_failure()

        ctx.payload = block
        return StageResult.success(BuildState.PAYLOAD_FLAT)

    def _verify_payload(self, ctx: _BuildContext) -> StageResult:
        if isinstance(ctx.payload, RasterBlock):
            ok, reason = ctx.payload.verify()
            if not ok:
                return StageResult.failure(ValidationError(
                    f"Verify failed with the following reason: {reason}",
                    reason=reason,
                    error_code=ErrorCodes.VERIFY_FAILED
                ), close_container=True, delete_raw=True)
        return StageResult.success(BuildState.VERIFIED)

    def _append_payload(self, ctx: _BuildContext) -> StageResult:
        if not ctx.container.add_block(ctx.payload):
            return StageResult.failure(AssemblyError(
                "AddDataBlock failed!",
                block_id=ctx.payload.block_id,
                error_code=ErrorCodes.ADD_BLOCK_FAILED
            ), close_container=True, delete_raw=True)
        return StageResult.success(ctx.state)

    def _release_raw(self, ctx: _BuildContext) -> StageResult:
        if not ctx.request.keep_raw:
            ctx.raw_file.delete()
        return StageResult.success(ctx.state)

    def _compute_histograms(self, ctx: _BuildContext) -> StageResult:
        ctx.histogram_1d = Histogram1DBlock()
        ctx.histogram_2d = Histogram2DBlock()

        logger.info("Computing 1D Histogram...")
        if not self.histogram_engine.compute_1d(ctx.histogram_1d, ctx.payload, 0):
            return StageResult.failure(DerivedDataError(
                "Computation of 1D Histogram failed!",
                block_name='1D Histogram',
                error_code=ErrorCodes.HISTOGRAM_1D_FAILED
            ), close_container=True)
        self.histogram_engine.compress(ctx.histogram_1d, self.config.max_histogram_buckets)

        logger.info("Computing 2D Histogram...")
        if not self.histogram_engine.compute_2d(ctx.histogram_2d, ctx.payload, 0,
                                                len(ctx.histogram_1d.histogram),
                                                ctx.max_min.global_max):
            return StageResult.failure(DerivedDataError(
                "Computation of 2D Histogram failed!",
                block_name='2D Histogram',
                error_code=ErrorCodes.HISTOGRAM_2D_FAILED
            ), close_container=True)
        return StageResult.success(BuildState.HISTOGRAMS_COMPUTED)

    def _add_or_fail(self, ctx: _BuildContext, block) -> Optional[StageResult]:
        if ctx.container.add_block(block):
            return None
        return StageResult.failure(AssemblyError(
            f"Failed to add block '{block.block_id}'",
            block_id=block.block_id,
            error_code=ErrorCodes.ADD_BLOCK_FAILED
        ), close_container=True)

    def _store_derived_blocks(self, ctx: _BuildContext) -> StageResult:
        logger.info("Storing histogram data...")
        for block in (ctx.histogram_1d, ctx.histogram_2d):
            failed = self._add_or_fail(ctx, block)
            if failed:
                return failed

        logger.info("Storing acceleration data...")
        failed = self._add_or_fail(ctx, ctx.max_min)
        if failed:
            return failed
        return StageResult.success(BuildState.ACCELERATION_STORED)

    def _store_metadata(self, ctx: _BuildContext) -> StageResult:
        logger.info("Storing metadata...")
        metadata = KeyValuePairBlock()
        metadata.add_pair("Data Source", self.config.data_source)
        metadata.add_pair("Description", self.config.description)
        metadata.add_pair("Source Endianess", "little" if sys.byteorder == "little" else "big")
        metadata.add_pair("Source Type", "integer")
        metadata.add_pair("Source Bit width", str(ctx.request.sample_format.bit_width))

        failed = self._add_or_fail(ctx, metadata)
        if failed:
            return failed
        return StageResult.success(BuildState.METADATA_STORED)

    def _finalize(self, ctx: _BuildContext) -> StageResult:
        path = ctx.request.output_path
        logger.info("Writing container and computing checksum...")
        if not ctx.container.create():
            return StageResult.failure(ResourceCreationError(
                f"Failed to create container {path}",
                file_path=path,
                error_code=ErrorCodes.CONTAINER_CREATE_FAILED
            ), close_container=True)
        ctx.container.close()
        logger.info(f"Successfully created container {path}")
        return StageResult.success(BuildState.FINALIZED)

    @staticmethod
    def _report_bricking(fraction: float, message: str) -> None:
        logger.info(f"{message} ({100.0 * fraction:.1f}%)")


def create_volume_container(output_path: Union[str, Path], dimensions,
                            bit_width: int = 8, use_mandelbulb: bool = False,
                            brick_size: int = 64, use_toc_block: bool = False,
                            keep_raw: bool = False,
                            config: Optional[GenerationConfig] = None) -> bool:
    """Generate a synthetic volume and package it.

    Returns:
        True if the raw file (and, for container outputs, the container) was
        written successfully
    """
    try:
        request = GenerationRequest(
            output_path=Path(output_path),
            dimensions=dimensions,
            bit_width=bit_width,
            use_mandelbulb=use_mandelbulb,
            brick_size=brick_size,
            use_toc_block=use_toc_block,
            keep_raw=keep_raw,
        )
    except ValidationError as e:
        log_error(e, logger=logger)
        return False
    return ContainerAssembler(config=config).build(request).success
