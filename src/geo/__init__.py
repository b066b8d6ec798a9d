"""Geo module - print extent and unit helpers."""

from .extent import (
    compute_extent,
    meters_per_unit,
    resolution_from_scale,
    scale_from_resolution,
)

__all__ = [
    'compute_extent',
    'meters_per_unit',
    'resolution_from_scale',
    'scale_from_resolution',
]
