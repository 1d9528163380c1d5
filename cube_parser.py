"""
.cube LUT parser.

Converts the text of a .cube file into a LutTable. The parser never touches the
filesystem; callers hand it the file contents (see assets.AssetResolver).
"""

import logging
from enum import Enum
from typing import List, NamedTuple, Optional

import numpy as np

from constants import (
    CUBE_COMPONENTS,
    CUBE_SIZE_KEYWORD,
    CUBE_SKIP_PREFIXES,
    STORAGE_FROM_FILE_AXES,
)
from errors import (
    MalformedLineError,
    MalformedNumberError,
    MissingOrInvalidSizeError,
    SampleCountMismatchError,
)
from lut_table import LutTable, blend_intensity, validate_intensity

logger = logging.getLogger(__name__)


class LineKind(Enum):
    SKIP = "skip"
    SIZE = "size"
    DATA = "data"


class ParsedLine(NamedTuple):
    kind: LineKind
    size: Optional[int] = None
    values: Optional[List[float]] = None


def classify_line(line: str, line_number: Optional[int] = None) -> ParsedLine:
    """
    Classify one line of a .cube file.

    Args:
        line: Raw line (surrounding whitespace is ignored)
        line_number: 1-based line number used in error messages

    Returns:
        ParsedLine describing a skipped line, a size declaration or RGB data

    Raises:
        MalformedNumberError: if a size or color token is not a number
        MalformedLineError: if a data line has fewer than three tokens
    """
    line = line.strip()
    upper = line.upper()

    if not line or any(upper.startswith(prefix) for prefix in CUBE_SKIP_PREFIXES):
        return ParsedLine(LineKind.SKIP)

    parts = line.split()

    if upper.startswith(CUBE_SIZE_KEYWORD):
        # Size is the last token, e.g. "LUT_3D_SIZE 33"
        token = parts[-1]
        try:
            return ParsedLine(LineKind.SIZE, size=int(token))
        except ValueError:
            raise MalformedNumberError(
                f"{CUBE_SIZE_KEYWORD} value {token!r} is not an integer", line_number
            ) from None

    if len(parts) < CUBE_COMPONENTS:
        raise MalformedLineError(
            f"expected {CUBE_COMPONENTS} color values, got {len(parts)}: {line!r}", line_number
        )

    values = []
    for token in parts[:CUBE_COMPONENTS]:
        try:
            values.append(float(token))
        except ValueError:
            raise MalformedNumberError(f"invalid color value {token!r}", line_number) from None
    return ParsedLine(LineKind.DATA, values=values)


def parse_cube(text: str, intensity: Optional[float] = None,
               source: Optional[str] = None) -> LutTable:
    """
    Parse the contents of a .cube file into a LutTable.

    Triples in the file are listed blue-slowest, red-fastest; the returned
    table is addressed samples[r, g, b] regardless of that order.

    Args:
        text: Full .cube file contents
        intensity: Optional LUT strength (0.0 to 1.0); blends toward identity
        source: Name of the LUT used in error messages (e.g. the asset key)

    Returns:
        Parsed (and optionally blended) LutTable

    Raises:
        InvalidArgumentError: if intensity is outside [0, 1]
        MissingOrInvalidSizeError: if LUT_3D_SIZE is absent or non-positive
        SampleCountMismatchError: if the value count differs from size³ * 3
        MalformedNumberError, MalformedLineError: on unparsable lines
    """
    if intensity is not None:
        intensity = validate_intensity(intensity)

    size = 0
    raw_values: List[float] = []

    for line_number, line in enumerate(text.splitlines(), start=1):
        parsed = classify_line(line, line_number)
        if parsed.kind is LineKind.SIZE:
            size = parsed.size
        elif parsed.kind is LineKind.DATA:
            raw_values.extend(parsed.values)

    if size <= 0:
        where = f" in {source}" if source else ""
        raise MissingOrInvalidSizeError(f"{CUBE_SIZE_KEYWORD} not found or is invalid{where}")

    if len(raw_values) != size ** 3 * CUBE_COMPONENTS:
        raise SampleCountMismatchError(size, len(raw_values), source)

    # (b, g, r, channel) in file order -> (r, g, b, channel) in storage order
    file_order = np.array(raw_values, dtype=np.float32).reshape(size, size, size, CUBE_COMPONENTS)
    table = LutTable(size, file_order.transpose(STORAGE_FROM_FILE_AXES))
    logger.debug(f"Parsed LUT{' ' + source if source else ''} ({size}³)")

    if intensity is not None:
        table = blend_intensity(table, intensity)
    return table
