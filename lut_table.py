"""
Dense 3D color lookup table and intensity blending.

Tables are addressed samples[r, g, b] and are read-only once built; blending
always produces a new table.
"""

import logging
import math
from dataclasses import dataclass

import numpy as np

from constants import INTENSITY_MIN, INTENSITY_MAX
from errors import InvalidArgumentError

logger = logging.getLogger(__name__)


def identity_axis(size: int) -> np.ndarray:
    """Normalized lattice coordinates 0..1 for one axis (0.0 for a 1-entry axis)."""
    if size > 1:
        return np.arange(size, dtype=np.float32) / np.float32(size - 1)
    return np.zeros(1, dtype=np.float32)


def identity_samples(size: int) -> np.ndarray:
    """
    Build the identity color mapping.

    Returns:
        float32 array of shape (size, size, size, 3) where
        samples[r, g, b] == (r, g, b) / (size - 1)
    """
    axis = identity_axis(size)
    r, g, b = np.meshgrid(axis, axis, axis, indexing="ij")
    return np.stack([r, g, b], axis=-1)


def validate_intensity(intensity: float) -> float:
    """Return intensity as float, or raise InvalidArgumentError if outside [0, 1]."""
    try:
        value = float(intensity)
    except (TypeError, ValueError) as e:
        raise InvalidArgumentError(f"Intensity must be a number, got {intensity!r}") from e
    if not math.isfinite(value) or not INTENSITY_MIN <= value <= INTENSITY_MAX:
        raise InvalidArgumentError(
            f"Intensity must be between {INTENSITY_MIN} and {INTENSITY_MAX}, got {intensity}"
        )
    return value


@dataclass(frozen=True, eq=False)
class LutTable:
    """
    Validated N x N x N table of RGB samples.

    Attributes:
        size: Per-axis resolution N
        samples: float32 array (N, N, N, 3), indexed [r, g, b], not clamped
    """

    size: int
    samples: np.ndarray

    def __post_init__(self):
        if not isinstance(self.size, (int, np.integer)) or self.size <= 0:
            raise InvalidArgumentError(f"LUT size must be a positive integer, got {self.size!r}")

        samples = np.array(self.samples, dtype=np.float32)
        expected = (self.size, self.size, self.size, 3)
        if samples.shape != expected:
            raise InvalidArgumentError(
                f"LUT samples must have shape {expected}, got {samples.shape}"
            )
        samples.setflags(write=False)
        object.__setattr__(self, "size", int(self.size))
        object.__setattr__(self, "samples", samples)

    @classmethod
    def identity(cls, size: int) -> "LutTable":
        return cls(size, identity_samples(size))

    @property
    def triple_count(self) -> int:
        """Number of RGB entries (N³)."""
        return self.size ** 3

    def sample(self, r: int, g: int, b: int) -> tuple:
        """Return the (red, green, blue) entry stored at lattice coordinate (r, g, b)."""
        red, green, blue = self.samples[r, g, b]
        return float(red), float(green), float(blue)

    def __repr__(self) -> str:
        return f"LutTable(size={self.size})"


def blend_intensity(table: LutTable, intensity: float) -> LutTable:
    """
    Blend a LUT toward the identity transform.

    Each channel becomes identity * (1 - intensity) + stored * intensity, so
    intensity 1.0 keeps the LUT as-is and 0.0 leaves colors untouched.

    Args:
        table: Parsed LUT
        intensity: Strength of the LUT effect (0.0 to 1.0)

    Returns:
        New LutTable (the same table when intensity is 1.0)
    """
    intensity = validate_intensity(intensity)
    if intensity == INTENSITY_MAX:
        return table

    weight = np.float32(intensity)
    identity = identity_samples(table.size)
    blended = identity * (np.float32(1.0) - weight) + table.samples * weight
    logger.debug(f"Blended {table.size}³ LUT at intensity {intensity:.2f}")
    return LutTable(table.size, blended)
