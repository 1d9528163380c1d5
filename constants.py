"""
Constants for the LUT video transformer.

Centralized definitions for .cube parsing, sample packing, crop geometry and
export progress reporting.
"""

from typing import Tuple


# =============================================================================
# .cube Parsing
# =============================================================================

# Lines starting with any of these (case-insensitive) carry no color data
CUBE_SKIP_PREFIXES: Tuple[str, ...] = ("#", "TITLE", "DOMAIN_MIN", "DOMAIN_MAX")

CUBE_SIZE_KEYWORD = "LUT_3D_SIZE"

# Components per data line (red, green, blue)
CUBE_COMPONENTS = 3


# =============================================================================
# Axis Order Policy (shared by parser and packer)
# =============================================================================

# .cube files enumerate triples with blue slowest and red fastest
CUBE_FILE_AXES: Tuple[str, str, str] = ("b", "g", "r")

# In-memory tables are addressed samples[r, g, b]; packing walks this order
LUT_STORAGE_AXES: Tuple[str, str, str] = ("r", "g", "b")

# Transpose that turns a (file0, file1, file2, channel) array into storage order
STORAGE_FROM_FILE_AXES: Tuple[int, int, int, int] = tuple(
    CUBE_FILE_AXES.index(axis) for axis in LUT_STORAGE_AXES
) + (3,)


# =============================================================================
# Intensity & Packing
# =============================================================================

INTENSITY_MIN = 0.0
INTENSITY_MAX = 1.0

CHANNEL_MAX = 255
OPAQUE_ALPHA = 0xFF
FLOAT_ALPHA = 1.0

# Float RGBA packing emits four components per sample
RGBA_COMPONENTS = 4


# =============================================================================
# Export
# =============================================================================

OUTPUT_PREFIX = "transformed_"
OUTPUT_EXTENSION = ".mp4"

# Max seconds to wait for a previous export to acknowledge cancellation
CANCEL_TIMEOUT_S = 5.0


# =============================================================================
# Progress Reporting
# =============================================================================

# Progress reported once setup (LUT, probe, geometry) is done
SETUP_PROGRESS = 0.1

# Frame-based progress never reaches 1.0 before the encoder finishes
PROGRESS_CAP = 0.99

# Time-based estimate used when the frame count is unknown
ESTIMATED_PROGRESS_START = 0.1
ESTIMATED_PROGRESS_END = 0.9
ESTIMATED_PROGRESS_DURATION_S = 15.0

# Minimum seconds between two progress notifications
PROGRESS_UPDATE_INTERVAL_S = 0.2
