from __future__ import annotations

import math
from typing import Any

from shared.constants import CIRCLE_SEGMENTS
from shared.errors import InvalidArgumentError

# Нестандартная геометрия «окружность»: {"type": "Circle", "center": [x, y], "radius": r}
CIRCLE_TYPE = 'Circle'


def circle_params(geometry: dict[str, Any]) -> tuple[float, float, float]:
    """
    Centre and radius of a Circle geometry.

    Raises:
        InvalidArgumentError: If the centre is not an (x, y) pair or the
            radius is missing, negative or not finite.
    """
    center = geometry.get('center')
    radius = geometry.get('radius')
    try:
        cx, cy = (float(c) for c in center)  # type: ignore[union-attr]
        r = float(radius)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        msg = f'Circle needs a center [x, y] and a radius, got center={center!r} radius={radius!r}'
        raise InvalidArgumentError(msg) from e
    if not all(math.isfinite(v) for v in (cx, cy, r)) or r < 0:
        msg = f'Circle center and radius must be finite, radius >= 0: {center!r}, {radius!r}'
        raise InvalidArgumentError(msg)
    return cx, cy, r


def _walk_positions(coords: Any) -> list[tuple[float, float]]:
    if (
        isinstance(coords, (list, tuple))
        and len(coords) >= 2
        and all(isinstance(c, (int, float)) for c in coords[:2])
    ):
        return [(float(coords[0]), float(coords[1]))]
    out: list[tuple[float, float]] = []
    for item in coords or ():
        out.extend(_walk_positions(item))
    return out


def geometry_bbox(geometry: dict[str, Any] | None) -> tuple[float, float, float, float] | None:
    """
    Bounding box (min_x, min_y, max_x, max_y) of a GeoJSON geometry.

    Returns None for empty or missing geometries.
    """
    if not geometry:
        return None
    gtype = geometry.get('type')
    if gtype == CIRCLE_TYPE:
        cx, cy, r = circle_params(geometry)
        return (cx - r, cy - r, cx + r, cy + r)
    if gtype == 'GeometryCollection':
        boxes = [
            b for g in geometry.get('geometries', ()) if (b := geometry_bbox(g)) is not None
        ]
        if not boxes:
            return None
        return (
            min(b[0] for b in boxes),
            min(b[1] for b in boxes),
            max(b[2] for b in boxes),
            max(b[3] for b in boxes),
        )
    positions = _walk_positions(geometry.get('coordinates'))
    if not positions:
        return None
    xs = [p[0] for p in positions]
    ys = [p[1] for p in positions]
    return (min(xs), min(ys), max(xs), max(ys))


def circle_to_polygon(
    center: tuple[float, float] | list[float],
    radius: float,
    segments: int = CIRCLE_SEGMENTS,
) -> dict[str, Any]:
    """Approximate a circle by a closed GeoJSON Polygon ring."""
    cx, cy = float(center[0]), float(center[1])
    ring = []
    for i in range(segments):
        angle = 2 * math.pi * i / segments
        ring.append([cx + radius * math.cos(angle), cy + radius * math.sin(angle)])
    ring.append(list(ring[0]))
    return {'type': 'Polygon', 'coordinates': [ring]}
