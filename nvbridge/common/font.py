"""
Font descriptor parsing and formatting.

Descriptors follow the `family:attr:attr...` grammar used by the core's
`guifont` option. Attributes are `h<points>` (height), `b` (bold),
`l` (light) and `i` (italic), in any order and separated by `:`.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Optional

from nvbridge.common.errors import FontSpecError

__all__ = ["FontSpec", "fontSpec_parse", "fontSpec_format", "FONT_DELIMITER"]

FONT_DELIMITER: str = ":"

_HEIGHT_PATTERN = re.compile(r"^\d+(?:\.\d+)?(?:[eE][-+]?\d+)?$")


@dataclass(frozen=True)
class FontSpec:
    """
    Immutable font descriptor.

    A forced spec carries the verbatim text in `raw` and is re-emitted
    unchanged by `format`; its other fields are best-effort only.
    """

    family: str = ""
    height_pt: Optional[float] = None
    bold: bool = False
    light: bool = False
    italic: bool = False
    raw: Optional[str] = None

    def __post_init__(self) -> None:
        """
        Validate structured specs.

        Raises:
            FontSpecError: If fields cannot be expressed in the grammar.
        """
        if self.raw is not None:
            return
        if FONT_DELIMITER in self.family:
            raise FontSpecError(f"Font family may not contain '{FONT_DELIMITER}': {self.family!r}")
        if self.bold and self.light:
            raise FontSpecError("Font weight cannot be both bold and light")
        if self.height_pt is not None and not heightValue_isValid(self.height_pt):
            raise FontSpecError(f"Font height must be a positive number: {self.height_pt!r}")
        if not self.family and not self._attributes_present():
            raise FontSpecError("Font descriptor needs a family or at least one attribute")

    def _attributes_present(self) -> bool:
        return self.height_pt is not None or self.bold or self.light or self.italic

    @property
    def forced(self) -> bool:
        return self.raw is not None

    @classmethod
    def parse(cls, text: str, force: bool = False) -> "FontSpec":
        return fontSpec_parse(text, force=force)

    def format(self) -> str:
        return fontSpec_format(self)

    def __str__(self) -> str:
        return fontSpec_format(self)


def heightValue_isValid(value: float) -> bool:
    """
    Check a height is a finite positive number (booleans excluded).

    Args:
        value: Candidate height.

    Returns:
        True when usable as a point size.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def fontSpec_parse(text: str, force: bool = False) -> FontSpec:
    """
    Parse a font descriptor.

    Args:
        text: Descriptor such as `Fira Code:h11:b`.
        force: Accept text that fails the grammar, storing it verbatim.

    Returns:
        Parsed FontSpec.

    Raises:
        FontSpecError: If text fails the grammar and force is False.
    """
    try:
        return _strict_parse(text)
    except FontSpecError:
        if not force:
            raise
        return FontSpec(family=text.split(FONT_DELIMITER, 1)[0], raw=text)


def _strict_parse(text: str) -> FontSpec:
    family, _, attributes = text.partition(FONT_DELIMITER)
    tokens = attributes.split(FONT_DELIMITER) if attributes else []

    height: Optional[float] = None
    bold = False
    light = False
    italic = False
    for token in tokens:
        if token == "b":
            bold, light = True, False
        elif token == "l":
            light, bold = True, False
        elif token == "i":
            italic = True
        elif token.startswith("h"):
            height = heightToken_parse(token[1:])
        else:
            raise FontSpecError(f"Unknown font attribute {token!r} in {text!r}")

    return FontSpec(family=family, height_pt=height, bold=bold, light=light, italic=italic)


def heightToken_parse(token: str) -> float:
    """
    Parse the number following `h`.

    Args:
        token: Height text without the `h` prefix.

    Returns:
        Height in points; integral values come back as int.

    Raises:
        FontSpecError: If the number is malformed or not positive.
    """
    if not _HEIGHT_PATTERN.match(token):
        raise FontSpecError(f"Invalid font height {token!r}")
    value = float(token)
    if not heightValue_isValid(value):
        raise FontSpecError(f"Font height must be positive: {token!r}")
    if value.is_integer() and "e" not in token.lower() and "." not in token:
        return int(value)
    return value


def fontSpec_format(spec: FontSpec) -> str:
    """
    Serialize a FontSpec back to descriptor text.

    Args:
        spec: Font spec to format.

    Returns:
        Descriptor text; forced specs return their verbatim text.
    """
    if spec.raw is not None:
        return spec.raw

    parts: list[str] = [spec.family]
    if spec.height_pt is not None:
        parts.append(f"h{heightValue_format(spec.height_pt)}")
    if spec.bold:
        parts.append("b")
    if spec.light:
        parts.append("l")
    if spec.italic:
        parts.append("i")
    return FONT_DELIMITER.join(parts)


def heightValue_format(value: float) -> str:
    """Shortest text that parses back to the same height"""
    if isinstance(value, int) or value.is_integer():
        return str(int(value))
    return repr(float(value))
