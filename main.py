#!/usr/bin/env python3
"""
Command-line front end for the LUT video transformer.

Crops a video to a centered square, optionally mirrors it and grades it with
a .cube LUT, showing progress in the terminal.
"""

import argparse
import logging
import sys
import time
from typing import List, Optional

from assets import AssetResolver
from config import LutOptions, PackingMode, TransformRequest
from errors import TransformError
from rich_console import (
    console,
    create_progress,
    print_banner,
    print_completion_summary,
    print_config_summary,
    print_error,
    print_phase,
    setup_rich_logging,
)
from transformer import ErrorEvent, VideoTransformer, iter_transform_events

__version__ = "1.0.0"

logger = logging.getLogger(__name__)

# Suggested fixes shown under an error, by error code
ERROR_HINTS = {
    "ASSET_NOT_FOUND": "Check the LUT key and the --assets directories",
    "MISSING_OR_INVALID_SIZE": "The .cube file needs a positive LUT_3D_SIZE line",
    "SAMPLE_COUNT_MISMATCH": "The .cube file must contain N^3 RGB rows for LUT_3D_SIZE N",
    "MALFORMED_LINE": "Each .cube data row needs three numbers separated by spaces",
    "MALFORMED_NUMBER": "Check the .cube row at the reported line for a non-numeric value",
    "INVALID_DIMENSIONS": "The input video reports a zero or invalid frame size",
    "IO_FAILURE": "Make sure ffmpeg/ffprobe are installed and the input is readable",
    "NO_VIDEO_TRACK": "The input file has no video stream",
    "INVALID_ARGUMENT": "Intensity must be 0..1 and the crop no larger than the video",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Crop a video to a square, mirror it and apply a .cube LUT."
    )
    parser.add_argument("input_path", help="Path to input video")
    parser.add_argument("-o", "--output", dest="output_path", default=None,
                        help="Output MP4 path (default: a new file in the temp directory)")
    parser.add_argument("--lut", dest="lut_asset", default=None,
                        help="LUT asset key, e.g. luts/film.cube")
    parser.add_argument("--assets", nargs="+", default=None, metavar="DIR",
                        help="Directories searched for LUT assets (default: current directory)")
    parser.add_argument("--intensity", type=float, default=None,
                        help="LUT strength from 0.0 to 1.0 (default: 1.0)")
    parser.add_argument("--flip", action="store_true", help="Mirror the output horizontally")
    parser.add_argument("--crop-size", type=int, default=None,
                        help="Output edge length in pixels (default: shorter source side)")
    parser.add_argument("--packing", choices=[m.value for m in PackingMode],
                        default=PackingMode.INTEGER_ARGB.value,
                        help="LUT sample packing (default: argb)")
    parser.add_argument("--no-intensity", action="store_true",
                        help="Disable intensity blending (always full strength)")
    parser.add_argument("--no-hw", action="store_true", help="Disable hardware encoding")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


def run(args: argparse.Namespace) -> int:
    """Run one export from parsed arguments; returns the process exit status."""
    options = LutOptions(
        intensity_enabled=not args.no_intensity,
        packing_mode=PackingMode(args.packing),
    )
    try:
        request = TransformRequest(
            input_path=args.input_path,
            lut_asset=args.lut_asset,
            flip_horizontally=args.flip,
            crop_square_size=args.crop_size,
            intensity=args.intensity,
            output_path=args.output_path,
        )
    except ValueError as e:
        print_error(f"Invalid arguments: {e}", code="INVALID_ARGUMENT")
        return 1

    print_config_summary(request, options)

    transformer = VideoTransformer(
        assets=AssetResolver(args.assets),
        options=options,
        use_hw_encoding=not args.no_hw,
    )
    started = time.monotonic()
    output_path: Optional[str] = None

    print_phase(1, 1, "Transforming video")
    try:
        with transformer, create_progress() as progress:
            task = progress.add_task("Exporting", total=1.0)
            for event in iter_transform_events(transformer, request):
                if isinstance(event, ErrorEvent):
                    progress.stop()
                    logger.debug(f"Error details: {event.details}")
                    print_error(event.message, hint=ERROR_HINTS.get(event.code), code=event.code)
                    return 1
                progress.update(task, completed=event.progress)
                if event.output_path is not None:
                    output_path = event.output_path
    except TransformError as e:
        print_error(e.message, hint=ERROR_HINTS.get(e.code), code=e.code)
        return 1
    except KeyboardInterrupt:
        console.print("\n[warning]Cancelled[/]")
        return 130

    print_completion_summary(output_path, elapsed=time.monotonic() - started)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_rich_logging(args.verbose)
    print_banner(__version__)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
