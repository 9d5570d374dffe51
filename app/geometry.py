"""Decoding of the grower API's polygon text format.

Shapes arrive as ``((lon,lat),(lon,lat),...)``. The format has no holes, so
every decoded polygon is a single exterior ring in GeoJSON order::

    >>> decode_polygon("((-89.64,44.30),(-89.63,44.30),(-89.63,44.31))")
    [[[-89.64, 44.3], [-89.63, 44.3], [-89.63, 44.31]]]
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from app.errors import PolygonDecodeError

logger = logging.getLogger(__name__)

Ring = list[list[float]]

_OPEN = "(("
_CLOSE = "))"
_PAIR_SEP = "),("


def _parse_coordinate(text: str, raw: str) -> float:
    try:
        value = float(text)
    except ValueError:
        raise PolygonDecodeError(f"Non-numeric coordinate {text!r} in {raw!r}") from None
    if not math.isfinite(value):
        raise PolygonDecodeError(f"Non-finite coordinate {text!r} in {raw!r}")
    return value


def parse_polygon(polygon_text: str) -> list[Ring]:
    """Parse ``((lon,lat),...)`` into ``[[[lon, lat], ...]]``.

    Raises:
        PolygonDecodeError: on anything that is not a balanced, numeric
            coordinate-pair sequence.
    """
    if not isinstance(polygon_text, str):
        raise PolygonDecodeError(f"Polygon value must be a string, got {type(polygon_text).__name__}")

    raw = polygon_text.strip()
    if not raw.startswith(_OPEN) or not raw.endswith(_CLOSE) or len(raw) < len(_OPEN) + len(_CLOSE) + 1:
        raise PolygonDecodeError(f"Polygon value must be wrapped in '((' and '))': {polygon_text!r}")

    body = raw[len(_OPEN):-len(_CLOSE)]
    ring: Ring = []
    for pair in body.split(_PAIR_SEP):
        if "(" in pair or ")" in pair:
            raise PolygonDecodeError(f"Unbalanced parentheses in {polygon_text!r}")
        parts = pair.split(",")
        if len(parts) != 2:
            raise PolygonDecodeError(f"Expected 'lon,lat' but got {pair!r} in {polygon_text!r}")
        lon = _parse_coordinate(parts[0].strip(), polygon_text)
        lat = _parse_coordinate(parts[1].strip(), polygon_text)
        ring.append([lon, lat])

    return [ring]


def decode_polygon(polygon_text: Optional[str]) -> Optional[list[Ring]]:
    """Total variant of :func:`parse_polygon`: logs and returns None on bad input."""
    if polygon_text is None:
        return None
    try:
        return parse_polygon(polygon_text)
    except PolygonDecodeError as e:
        logger.warning("Skipping undecodable polygon: %s", e)
        return None
