"""
Square crop and horizontal flip geometry.

Computes the centered square crop of a source frame and the affine transform
that moves the crop to the origin of a side x side output, optionally mirrored
about the output's vertical centerline.
"""

import logging
import math
from dataclasses import dataclass, field
from numbers import Real
from typing import Optional, Tuple

import cv2
import numpy as np

from errors import InvalidDimensionsError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AffineTransform:
    """
    2D affine transform: x' = a*x + c*y + tx, y' = b*x + d*y + ty.
    """

    a: float = 1.0
    b: float = 0.0
    c: float = 0.0
    d: float = 1.0
    tx: float = 0.0
    ty: float = 0.0

    @classmethod
    def identity(cls) -> "AffineTransform":
        return cls()

    @classmethod
    def translation(cls, tx: float, ty: float) -> "AffineTransform":
        return cls(tx=float(tx), ty=float(ty))

    @classmethod
    def scale(cls, sx: float, sy: float) -> "AffineTransform":
        return cls(a=float(sx), d=float(sy))

    def concat(self, other: "AffineTransform") -> "AffineTransform":
        """Return the transform that applies self first, then other."""
        return AffineTransform(
            a=other.a * self.a + other.c * self.b,
            b=other.b * self.a + other.d * self.b,
            c=other.a * self.c + other.c * self.d,
            d=other.b * self.c + other.d * self.d,
            tx=other.a * self.tx + other.c * self.ty + other.tx,
            ty=other.b * self.tx + other.d * self.ty + other.ty,
        )

    def apply(self, x: float, y: float) -> Tuple[float, float]:
        return (self.a * x + self.c * y + self.tx, self.b * x + self.d * y + self.ty)

    @property
    def matrix(self) -> np.ndarray:
        """2x3 float64 matrix in OpenCV layout."""
        return np.array([[self.a, self.c, self.tx],
                         [self.b, self.d, self.ty]], dtype=np.float64)


@dataclass(frozen=True)
class CropGeometry:
    """
    Result of compute_crop_geometry().

    Attributes:
        side: Edge length of the square output
        offset_x: Left edge of the crop in the source frame (may be fractional)
        offset_y: Top edge of the crop in the source frame (may be fractional)
        flip_horizontally: Whether the output is mirrored
        transform: Source -> output mapping in edge coordinates
    """

    side: int
    offset_x: float
    offset_y: float
    flip_horizontally: bool = False
    transform: AffineTransform = field(default_factory=AffineTransform.identity)

    @property
    def render_size(self) -> Tuple[int, int]:
        return (self.side, self.side)

    @property
    def crop_rect(self) -> Tuple[float, float, int, int]:
        """(x, y, width, height) of the crop within the source frame."""
        return (self.offset_x, self.offset_y, self.side, self.side)

    def pixel_matrix(self) -> np.ndarray:
        """
        Transform matrix for pixel-center sampling (cv2.warpAffine).

        The geometric transform treats pixel i as the span [i, i+1); OpenCV
        addresses pixel centers, so the matrix is shifted by half a pixel on
        both sides. With flipping this maps source column offset_x + i to
        output column side - 1 - i.
        """
        half = AffineTransform.translation(0.5, 0.5)
        back = AffineTransform.translation(-0.5, -0.5)
        return half.concat(self.transform).concat(back).matrix


def _validate_dimension(name: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidDimensionsError(f"{name} must be a number, got {value!r}")
    value = float(value)
    if not math.isfinite(value) or value <= 0:
        raise InvalidDimensionsError(f"{name} must be positive and finite, got {value}")
    return value


def compute_crop_geometry(source_width: float, source_height: float,
                          requested_side: Optional[int] = None,
                          flip_horizontally: bool = False) -> CropGeometry:
    """
    Compute the centered square crop and its output transform.

    Args:
        source_width: Display width of the source frame
        source_height: Display height of the source frame
        requested_side: Output edge length; None or non-positive means the
                        smaller source dimension
        flip_horizontally: Mirror the output about its vertical centerline

    Returns:
        CropGeometry with sub-pixel offsets and the composed transform

    Raises:
        InvalidDimensionsError: if a source dimension is non-positive or non-finite
    """
    width = _validate_dimension("source_width", source_width)
    height = _validate_dimension("source_height", source_height)

    if requested_side is not None and requested_side > 0:
        side = int(requested_side)
    else:
        side = int(min(width, height))

    offset_x = (width - side) / 2
    offset_y = (height - side) / 2

    # Crop first: move the crop rectangle to the origin
    transform = AffineTransform.translation(-offset_x, -offset_y)
    if flip_horizontally:
        # Then mirror: x -> side - x
        mirror = AffineTransform.scale(-1.0, 1.0).concat(AffineTransform.translation(side, 0.0))
        transform = transform.concat(mirror)

    logger.debug(
        f"Crop geometry: {width:g}x{height:g} -> {side}x{side} at "
        f"({offset_x:g}, {offset_y:g}){' flipped' if flip_horizontally else ''}"
    )
    return CropGeometry(
        side=side,
        offset_x=offset_x,
        offset_y=offset_y,
        flip_horizontally=flip_horizontally,
        transform=transform,
    )


def crop_frame(frame: np.ndarray, geometry: CropGeometry) -> np.ndarray:
    """
    Render the square crop of a frame.

    Args:
        frame: Source RGB uint8 numpy array (H, W, 3)
        geometry: Result of compute_crop_geometry() for this frame size

    Returns:
        RGB uint8 numpy array (side, side, 3)
    """
    return cv2.warpAffine(
        np.ascontiguousarray(frame),
        geometry.pixel_matrix(),
        geometry.render_size,
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_REPLICATE,
    )
