"""
Per-layer customizers used while encoding a print spec.

A customizer gets every printable layer together with the print context
and returns either the (possibly rewritten) layer or ``SKIP``.
Customizers never touch the network.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum
from typing import TYPE_CHECKING, Protocol
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from domain.models import Layer, TileLayer, VectorLayer, WmsLayer
from geo.geometry import geometry_bbox
from shared.constants import ACCESS_TOKEN_PARAM_DEFAULT
from shared.errors import InvalidArgumentError

if TYPE_CHECKING:
    from domain.models import EncodeContext, Feature

logger = logging.getLogger(__name__)


class _Skip(Enum):
    SKIP = 'skip'


SKIP = _Skip.SKIP


class Customizer(Protocol):
    def adjust_layer(self, layer: Layer, context: EncodeContext) -> Layer | _Skip: ...

    def keep_feature(
        self, feature: Feature, layer: VectorLayer, context: EncodeContext
    ) -> bool: ...


class BaseCustomizer:
    """No-op customizer; optionally drops layers by name."""

    def __init__(self, skip_layers: Iterable[str] = ()) -> None:
        self.skip_layers = frozenset(skip_layers)

    def adjust_layer(self, layer: Layer, context: EncodeContext) -> Layer | _Skip:
        if layer.name is not None and layer.name in self.skip_layers:
            logger.debug('Layer %s skipped by name', layer.name)
            return SKIP
        return layer

    def keep_feature(
        self, feature: Feature, layer: VectorLayer, context: EncodeContext
    ) -> bool:
        return True


class ExtentCustomizer(BaseCustomizer):
    """
    Restricts output to the print extent.

    WMS requests get their ``BBOX`` clipped to the extent (or set to it),
    vector features entirely outside the extent are dropped.
    """

    def adjust_layer(self, layer: Layer, context: EncodeContext) -> Layer | _Skip:
        adjusted = super().adjust_layer(layer, context)
        if not isinstance(adjusted, WmsLayer):
            return adjusted

        params = dict(adjusted.params)
        bbox_key = next((k for k in params if k.upper() == 'BBOX'), 'BBOX')
        raw = params.get(bbox_key)
        if raw:
            try:
                parts = tuple(float(v) for v in str(raw).split(','))
            except ValueError as e:
                msg = f'WMS layer {adjusted.name!r} has a malformed BBOX {raw!r}'
                raise InvalidArgumentError(msg) from e
            if len(parts) != 4:
                msg = f'WMS layer {adjusted.name!r} BBOX needs 4 numbers, got {raw!r}'
                raise InvalidArgumentError(msg)
            bbox = context.extent.clip(parts)  # type: ignore[arg-type]
        else:
            bbox = context.extent.as_list()
        params[bbox_key] = ','.join(repr(float(v)) for v in bbox)
        return adjusted.model_copy(update={'params': params})

    def keep_feature(
        self, feature: Feature, layer: VectorLayer, context: EncodeContext
    ) -> bool:
        bbox = geometry_bbox(feature.geometry)
        if bbox is None:
            return True
        return context.extent.intersects(bbox)


def _with_query_param(url: str, key: str, value: str) -> str:
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != key]
    query.append((key, value))
    # Фигурные скобки шаблонов {z}/{x}/{y} должны остаться как есть
    encoded = urlencode(query, quote_via=quote, safe='{}')
    return urlunsplit((parts.scheme, parts.netloc, parts.path, encoded, parts.fragment))


class TokenCustomizer(BaseCustomizer):
    """Appends an access token to the source URLs of tile, WMS and vector layers."""

    def __init__(
        self,
        token: str,
        param: str = ACCESS_TOKEN_PARAM_DEFAULT,
        skip_layers: Iterable[str] = (),
    ) -> None:
        super().__init__(skip_layers)
        self.token = token
        self.param = param

    def adjust_layer(self, layer: Layer, context: EncodeContext) -> Layer | _Skip:
        adjusted = super().adjust_layer(layer, context)
        if isinstance(adjusted, (TileLayer, WmsLayer)):
            return adjusted.model_copy(
                update={'url': _with_query_param(adjusted.url, self.param, self.token)}
            )
        if isinstance(adjusted, VectorLayer) and adjusted.url:
            return adjusted.model_copy(
                update={'url': _with_query_param(adjusted.url, self.param, self.token)}
            )
        return adjusted


class ChainCustomizer:
    """Applies several customizers in order; the first ``SKIP`` wins."""

    def __init__(self, *customizers: Customizer) -> None:
        self.customizers = customizers

    def adjust_layer(self, layer: Layer, context: EncodeContext) -> Layer | _Skip:
        current: Layer | _Skip = layer
        for customizer in self.customizers:
            current = customizer.adjust_layer(current, context)
            if current is SKIP:
                return SKIP
        return current

    def keep_feature(
        self, feature: Feature, layer: VectorLayer, context: EncodeContext
    ) -> bool:
        return all(c.keep_feature(feature, layer, context) for c in self.customizers)
