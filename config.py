"""
Configuration models for the LUT video transformer.

LutOptions selects between the two observed platform behaviors (intensity
blending on/off, integer ARGB vs float RGBA samples). TransformRequest is the
caller-facing request and accepts the camelCase keys used on the channel.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, ValidationError

from errors import InvalidArgumentError


class PackingMode(str, Enum):
    """Sample buffer encodings understood by color-cube samplers."""

    INTEGER_ARGB = "argb"
    FLOAT_RGBA = "rgba_float"


class LutOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    intensity_enabled: bool = True
    packing_mode: PackingMode = PackingMode.INTEGER_ARGB


class TransformRequest(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    input_path: str = Field(alias="inputPath", min_length=1)
    lut_asset: Optional[str] = Field(default=None, alias="lutAsset")
    flip_horizontally: bool = Field(default=False, alias="flipHorizontally")
    crop_square_size: Optional[PositiveInt] = Field(default=None, alias="cropSquareSize")
    intensity: Optional[float] = Field(default=None, ge=0.0, le=1.0, allow_inf_nan=False)
    output_path: Optional[str] = Field(default=None, alias="outputPath")

    @classmethod
    def from_arguments(cls, arguments: Dict[str, Any]) -> "TransformRequest":
        """
        Build a request from channel-style arguments.

        Raises:
            InvalidArgumentError: if any field is missing or out of range
        """
        try:
            return cls.model_validate(arguments)
        except ValidationError as e:
            fields = ", ".join(
                ".".join(str(part) for part in err["loc"]) for err in e.errors()
            )
            raise InvalidArgumentError(
                f"Invalid transform request ({fields})",
                details=e.errors(include_url=False),
            ) from e
