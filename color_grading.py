"""
Color grading module for the LUT video transformer.

Packs LutTables into the sample buffers expected by color-cube samplers
(32-bit ARGB integers or float RGBA quadruples) and applies a packed LUT to
RGB frames with tri-linear interpolation.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from config import LutOptions, PackingMode
from constants import (
    CHANNEL_MAX,
    FLOAT_ALPHA,
    INTENSITY_MAX,
    OPAQUE_ALPHA,
    RGBA_COMPONENTS,
)
from cube_parser import parse_cube
from errors import InvalidArgumentError
from lut_table import LutTable

logger = logging.getLogger(__name__)

# Frame rows graded per pass
GRADE_BAND_ROWS = 256


@dataclass(frozen=True, eq=False)
class PackedLut:
    """
    Sampler-ready LUT buffer.

    Attributes:
        buffer: 1-D array in storage order (red slowest, blue fastest);
                uint32 ARGB per sample or float32 RGBA components
        dimension: Per-axis resolution N
        mode: Encoding of the buffer
    """

    buffer: np.ndarray
    dimension: int
    mode: PackingMode

    @property
    def sample_count(self) -> int:
        return self.dimension ** 3


def quantize_channel(values: np.ndarray) -> np.ndarray:
    """
    Convert normalized channel values to 8-bit integers.

    Rounds half-up (floor(x * 255 + 0.5)) and clamps to [0, 255], so values
    pushed outside [0, 1] by a LUT or by blending are clamped, never rejected.
    """
    scaled = np.floor(np.asarray(values, dtype=np.float64) * CHANNEL_MAX + 0.5)
    return np.clip(scaled, 0, CHANNEL_MAX).astype(np.uint32)


def pack_argb(red: float, green: float, blue: float) -> int:
    """Pack one normalized RGB color into an opaque 0xAARRGGBB integer."""
    r8, g8, b8 = quantize_channel(np.array([red, green, blue]))
    return int((OPAQUE_ALPHA << 24) | (int(r8) << 16) | (int(g8) << 8) | int(b8))


def pack_samples(table: LutTable,
                 mode: PackingMode = PackingMode.INTEGER_ARGB) -> PackedLut:
    """
    Pack a LutTable for a tri-linear color-cube sampler.

    The buffer walks the table in its storage order, samples[r, g, b] with red
    slowest, so no axis transposition happens here.

    Args:
        table: LUT to pack
        mode: INTEGER_ARGB (one uint32 per sample) or FLOAT_RGBA (four float32)

    Returns:
        PackedLut with the flat buffer and the cube dimension
    """
    samples = table.samples.reshape(-1, 3)

    if mode is PackingMode.INTEGER_ARGB:
        channels = quantize_channel(samples)
        buffer = (
            np.uint32(OPAQUE_ALPHA << 24)
            | (channels[:, 0] << 16)
            | (channels[:, 1] << 8)
            | channels[:, 2]
        ).astype(np.uint32)
    elif mode is PackingMode.FLOAT_RGBA:
        rgba = np.empty((samples.shape[0], RGBA_COMPONENTS), dtype=np.float32)
        rgba[:, :3] = samples
        rgba[:, 3] = FLOAT_ALPHA
        buffer = rgba.reshape(-1)
    else:
        raise InvalidArgumentError(f"Unknown packing mode: {mode!r}")

    buffer.setflags(write=False)
    return PackedLut(buffer=buffer, dimension=table.size, mode=mode)


def unpack_samples(packed: PackedLut) -> np.ndarray:
    """
    Read a packed buffer back into normalized RGB samples.

    Returns:
        float32 array (N, N, N, 3) indexed [r, g, b]; integer buffers come back
        quantized to multiples of 1/255
    """
    n = packed.dimension
    if packed.mode is PackingMode.INTEGER_ARGB:
        argb = np.asarray(packed.buffer, dtype=np.uint32)
        channels = np.stack([(argb >> 16) & 0xFF, (argb >> 8) & 0xFF, argb & 0xFF], axis=-1)
        samples = channels.astype(np.float32) / np.float32(CHANNEL_MAX)
    else:
        samples = np.asarray(packed.buffer, dtype=np.float32).reshape(-1, RGBA_COMPONENTS)[:, :3]
    return samples.reshape(n, n, n, 3)


def prepare_lut(text: str, intensity: Optional[float] = None,
                options: Optional[LutOptions] = None,
                source: Optional[str] = None) -> PackedLut:
    """
    Parse, blend and pack a .cube LUT in one step.

    Args:
        text: .cube file contents
        intensity: LUT strength (0.0 to 1.0); None means full strength
        options: Intensity/packing configuration (defaults to LutOptions())
        source: Name of the LUT for error messages

    Returns:
        PackedLut ready for LutGrader or an external sampler

    Raises:
        InvalidArgumentError: on bad intensity, or intensity given while
                              intensity control is disabled
        LutParseError: if the .cube text is invalid
    """
    options = options or LutOptions()

    if not options.intensity_enabled:
        if intensity is not None and intensity != INTENSITY_MAX:
            raise InvalidArgumentError(
                f"Intensity control is disabled; got intensity {intensity}"
            )
        intensity = None

    table = parse_cube(text, intensity=intensity, source=source)
    packed = pack_samples(table, options.packing_mode)
    effective = INTENSITY_MAX if intensity is None else intensity
    logger.debug(
        f"Prepared LUT {source or ''} ({packed.dimension}³, {options.packing_mode.value}, "
        f"intensity={effective:.2f})"
    )
    return packed


def _apply_trilinear(frame: np.ndarray, cube: np.ndarray) -> np.ndarray:
    """Tri-linear lookup of RGB uint8 pixels in a (N, N, N, 3) cube indexed [r, g, b]."""
    size = cube.shape[0]
    if size == 1:
        color = quantize_channel(cube[0, 0, 0]).astype(np.uint8)
        return np.broadcast_to(color, frame.shape).copy()

    # Pixel values -> lattice coordinates
    coords = frame.astype(np.float32) * np.float32((size - 1) / CHANNEL_MAX)
    lo = np.clip(np.floor(coords).astype(np.intp), 0, size - 2)
    hi = lo + 1
    frac = coords - lo

    lo_r, lo_g, lo_b = lo[..., 0], lo[..., 1], lo[..., 2]
    hi_r, hi_g, hi_b = hi[..., 0], hi[..., 1], hi[..., 2]
    d_r = frac[..., 0:1]
    d_g = frac[..., 1:2]
    d_b = frac[..., 2:3]

    # 8 lattice corners around each pixel
    c000 = cube[lo_r, lo_g, lo_b]
    c001 = cube[lo_r, lo_g, hi_b]
    c010 = cube[lo_r, hi_g, lo_b]
    c011 = cube[lo_r, hi_g, hi_b]
    c100 = cube[hi_r, lo_g, lo_b]
    c101 = cube[hi_r, lo_g, hi_b]
    c110 = cube[hi_r, hi_g, lo_b]
    c111 = cube[hi_r, hi_g, hi_b]

    c00 = c000 * (1 - d_b) + c001 * d_b
    c01 = c010 * (1 - d_b) + c011 * d_b
    c10 = c100 * (1 - d_b) + c101 * d_b
    c11 = c110 * (1 - d_b) + c111 * d_b

    c0 = c00 * (1 - d_g) + c01 * d_g
    c1 = c10 * (1 - d_g) + c11 * d_g

    result = c0 * (1 - d_r) + c1 * d_r
    return quantize_channel(result).astype(np.uint8)


class LutGrader:
    """
    Applies a packed LUT to video frames.

    Usage:
        grader = LutGrader(prepare_lut(text))
        if grader.is_active:
            frame = grader.grade(frame)
    """

    def __init__(self, packed: Optional[PackedLut] = None):
        self.packed = packed
        # Decode once; every frame samples the same cube
        self.cube = unpack_samples(packed) if packed is not None else None
        if self.is_active:
            logger.debug(f"LUT grading active ({packed.dimension}³, {packed.mode.value})")

    @property
    def is_active(self) -> bool:
        """Check if a LUT will be applied."""
        return self.cube is not None

    def grade(self, frame: np.ndarray) -> np.ndarray:
        """
        Apply the LUT to a frame.

        Args:
            frame: RGB uint8 numpy array (H, W, 3)

        Returns:
            Color-graded RGB uint8 numpy array
        """
        if not self.is_active:
            return frame

        # Row bands bound the memory used by the 8-corner gathers
        result = np.empty(frame.shape, dtype=np.uint8)
        for top in range(0, frame.shape[0], GRADE_BAND_ROWS):
            bottom = top + GRADE_BAND_ROWS
            result[top:bottom] = _apply_trilinear(frame[top:bottom], self.cube)
        return result
