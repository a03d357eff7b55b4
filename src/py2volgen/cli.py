"""
Command-Line Interface - Argument Parsing and Entry Point

This module provides the command-line interface for the synthetic volume
generator. It handles:
- Command-line argument parsing
- Argument validation
- Loading the generation config
- Running the container build and mapping its outcome to an exit code

Usage:
    python -m py2volgen volume.zarr --size 128 128 128
    python -m py2volgen volume.raw --size 256 256 64 --bits 16 --mandelbulb
    python -m py2volgen --help
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import List, Optional

from py2volgen.config import load_generation_config
from py2volgen.core.error_formatting import format_error
from py2volgen.core.errors import ConfigurationError, ValidationError
from py2volgen.generation.container_assembler import ContainerAssembler, GenerationRequest
from py2volgen.generation.volume_writer import LoggingProgressReporter


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        args: List of arguments to parse. If None, uses sys.argv[1:]

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="py2volgen",
        description="Synthetic Volume Container Generator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s volume.zarr
  %(prog)s volume.zarr --size 256 256 128 --bits 16 --mandelbulb
  %(prog)s volume.zarr --toc --brick-size 32 --keep-raw
  %(prog)s volume.raw --size 64 64 64

Outputs ending in .zarr are packaged as a container, any other
path receives the raw volume only.
        """
    )

    parser.add_argument(
        "output",
        type=str,
        help="Output path (.zarr for a container, anything else for raw data)"
    )

    # Volume layout
    parser.add_argument(
        "--size",
        type=int,
        nargs=3,
        default=[128, 128, 128],
        metavar=("X", "Y", "Z"),
        help="Volume size in voxels (default: 128 128 128)"
    )

    parser.add_argument(
        "--bits",
        type=int,
        default=8,
        choices=[8, 16],
        help="Bits per sample (default: 8)"
    )

    parser.add_argument(
        "--mandelbulb",
        action="store_true",
        help="Generate a Mandelbulb fractal instead of the radial falloff"
    )

    # Container layout
    parser.add_argument(
        "--brick-size",
        type=int,
        default=64,
        help="Brick edge length in voxels including overlap (default: 64)"
    )

    parser.add_argument(
        "--toc",
        action="store_true",
        help="Store the volume as a bricked TOC block instead of a flat raster block"
    )

    parser.add_argument(
        "--keep-raw",
        action="store_true",
        help="Keep the intermediate raw file next to the container"
    )

    # Settings
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Generation config YAML (default: packaged generation_config.yaml)"
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Threads per row during field generation (overrides the config)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set logging level (default: INFO)"
    )

    return parser.parse_args(args)


def validate_args(args: argparse.Namespace) -> bool:
    """Validate parsed command-line arguments.

    Args:
        args: Parsed arguments from parse_args()

    Returns:
        True if arguments are valid, False otherwise
    """
    if any(d <= 0 for d in args.size):
        print(f"Error: Volume size must be positive, got {' '.join(map(str, args.size))}")
        return False

    if args.brick_size <= 0:
        print(f"Error: Brick size must be positive, got {args.brick_size}")
        return False

    if args.workers is not None and args.workers <= 0:
        print(f"Error: Worker count must be positive, got {args.workers}")
        return False

    if args.config:
        config_path = Path(args.config)
        if not config_path.is_file():
            print(f"Error: Config file not found: {args.config}")
            return False

    output = Path(args.output)
    if output.parent != Path('.') and not output.parent.exists():
        print(f"Error: Output directory does not exist: {output.parent}")
        return False

    return True


def setup_logging(level: str):
    """Configure application logging.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    numeric_level = getattr(logging, level.upper(), None)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for the generator.

    Args:
        args: Command-line arguments. If None, uses sys.argv[1:]

    Returns:
        Exit code (0 = success, 1 = error)
    """
    parsed_args = parse_args(args)

    setup_logging(parsed_args.log_level)

    logger = logging.getLogger(__name__)
    logger.debug(f"Arguments: {vars(parsed_args)}")

    if not validate_args(parsed_args):
        return 1

    try:
        config = load_generation_config(parsed_args.config)
        if parsed_args.workers is not None:
            config.row_workers = parsed_args.workers

        request = GenerationRequest(
            output_path=Path(parsed_args.output),
            dimensions=parsed_args.size,
            bit_width=parsed_args.bits,
            use_mandelbulb=parsed_args.mandelbulb,
            brick_size=parsed_args.brick_size,
            use_toc_block=parsed_args.toc,
            keep_raw=parsed_args.keep_raw,
        )
    except (ConfigurationError, ValidationError) as e:
        print(f"Error: {format_error(e, 'user')}")
        return 1

    logger.info(f"Generating {'x'.join(map(str, parsed_args.size))} "
                f"{parsed_args.bits}-bit volume -> {request.output_path}")

    try:
        assembler = ContainerAssembler(config=config,
                                       progress=LoggingProgressReporter(logger))
        outcome = assembler.build(request)
    except Exception as e:
        logger.exception(f"Fatal error during generation: {e}")
        print(f"Error: {e}")
        return 1

    if not outcome.success:
        print(f"Error: {format_error(outcome.error, 'user')}")
        return 1

    logger.info(f"Generation finished ({outcome.state.value})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
