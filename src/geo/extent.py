"""Ground extent of a printed page and scale/resolution helpers."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from functools import lru_cache

from pyproj import CRS
from pyproj.exceptions import CRSError

from domain.models import PageSize, PrintExtent
from shared.constants import INCHES_PER_METER, METERS_PER_DEGREE
from shared.errors import InvalidArgumentError

logger = logging.getLogger(__name__)

# Единицы осей, которые считаются угловыми
_ANGULAR_UNITS = ('degree', 'degree minute second', 'grad', 'radian')


def _require_positive(name: str, value: float) -> float:
    try:
        fv = float(value)
    except (TypeError, ValueError) as e:
        msg = f'{name} must be a number, got {value!r}'
        raise InvalidArgumentError(msg) from e
    if not math.isfinite(fv) or fv <= 0:
        msg = f'{name} must be a finite positive number, got {value!r}'
        raise InvalidArgumentError(msg)
    return fv


def _require_finite(name: str, value: float) -> float:
    try:
        fv = float(value)
    except (TypeError, ValueError) as e:
        msg = f'{name} must be a number, got {value!r}'
        raise InvalidArgumentError(msg) from e
    if not math.isfinite(fv):
        msg = f'{name} must be finite, got {value!r}'
        raise InvalidArgumentError(msg)
    return fv


def compute_extent(
    page_size: PageSize | Sequence[float],
    center: Sequence[float],
    scale: float,
    meters_per_unit: float = 1.0,
) -> PrintExtent:
    """
    Compute the ground rectangle covered by the map area of a printed page.

    Page size is in millimetres, so one side covers
    ``dimension / 1000 * scale`` metres on the ground, converted to map
    units with *meters_per_unit*. The rectangle is centred on *center*.

    Raises:
        InvalidArgumentError: on non-finite or non-positive inputs.
    """
    if isinstance(page_size, PageSize):
        width, height = page_size.width, page_size.height
    else:
        if len(page_size) != 2:
            msg = f'page_size must be (width, height), got {page_size!r}'
            raise InvalidArgumentError(msg)
        width, height = page_size
    if len(center) != 2:
        msg = f'center must be (x, y), got {center!r}'
        raise InvalidArgumentError(msg)

    width = _require_positive('page width', width)
    height = _require_positive('page height', height)
    scale = _require_positive('scale', scale)
    meters_per_unit = _require_positive('meters_per_unit', meters_per_unit)
    cx = _require_finite('center x', center[0])
    cy = _require_finite('center y', center[1])

    half_w = width * scale / 1000 / 2 / meters_per_unit
    half_h = height * scale / 1000 / 2 / meters_per_unit
    return PrintExtent(
        min_x=cx - half_w,
        min_y=cy - half_h,
        max_x=cx + half_w,
        max_y=cy + half_h,
    )


@lru_cache(maxsize=32)
def meters_per_unit(projection: str) -> float:
    """
    Metres per map unit of *projection* (e.g. 1.0 for EPSG:3857).

    Geographic CRSs use the length of one degree on the sphere,
    the same convention as OpenLayers.
    """
    try:
        crs = CRS.from_user_input(projection)
    except CRSError as e:
        msg = f'Unknown projection: {projection}'
        raise InvalidArgumentError(msg, str(e)) from e

    if not crs.axis_info:
        logger.debug('CRS %s has no axis info, assuming metres', projection)
        return 1.0
    axis = crs.axis_info[0]
    if crs.is_geographic or axis.unit_name in _ANGULAR_UNITS:
        return METERS_PER_DEGREE
    return float(axis.unit_conversion_factor)


def resolution_from_scale(scale: float, dpi: float, mpu: float = 1.0) -> float:
    """Map units per output pixel for a given scale denominator."""
    scale = _require_positive('scale', scale)
    dpi = _require_positive('dpi', dpi)
    return scale / (mpu * INCHES_PER_METER * dpi)


def scale_from_resolution(resolution: float, dpi: float, mpu: float = 1.0) -> float:
    resolution = _require_positive('resolution', resolution)
    dpi = _require_positive('dpi', dpi)
    return resolution * mpu * INCHES_PER_METER * dpi
