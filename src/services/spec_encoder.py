"""
Encoding of a map view into a MapFish Print request.

Only descriptions are serialized: remote sources (tile templates, WMS
endpoints, GeoJSON urls) are passed to the print service untouched and
fetched there, so unreachable resources surface as server-side failures.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from domain.models import (
    EncodeContext,
    Layer,
    MapAttributes,
    PrintAttributes,
    PrintSpec,
    TileLayer,
    VectorLayer,
    WmsLayer,
)
from geo.geometry import CIRCLE_TYPE, circle_params, circle_to_polygon
from services.customizers import SKIP, BaseCustomizer
from shared.constants import MFP_STYLE_PROPERTY, PRINT_LAYOUT_DEFAULT
from shared.errors import UnsupportedLayerError

if TYPE_CHECKING:
    from domain.models import (
        CircleStyle,
        ColorValue,
        Feature,
        MapView,
        PrintExtent,
        Stroke,
        Style,
        TextStyle,
    )
    from services.customizers import Customizer

logger = logging.getLogger(__name__)

_POINT_TYPES = ('Point', 'MultiPoint')
_LINE_TYPES = ('LineString', 'MultiLineString')
_POLYGON_TYPES = ('Polygon', 'MultiPolygon')

_HEX_RE = re.compile(r'^#([0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$')
_RGBA_RE = re.compile(
    r'^rgba?\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*(?:,\s*([\d.]+)\s*)?\)$'
)
_FONT_RE = re.compile(
    r'^(?:(italic|oblique|normal)\s+)?'
    r'(?:(bold|bolder|lighter|normal|\d{3})\s+)?'
    r'(\d+(?:\.\d+)?)(px|pt)\s+(.+)$'
)


def encode_color(value: ColorValue) -> tuple[str, float]:
    """
    Convert a colour to MapFish ``(#rrggbb, opacity)``.

    Accepts ``#rgb``, ``#rrggbb``, ``#rrggbbaa``, ``rgb()/rgba()`` strings
    and ``[r, g, b(, a)]`` sequences. Anything else (CSS names) is passed
    through with full opacity.
    """
    if isinstance(value, (tuple, list)):
        r, g, b = (int(round(c)) for c in value[:3])
        alpha = float(value[3]) if len(value) > 3 else 1.0
        return f'#{r:02x}{g:02x}{b:02x}', alpha

    text = value.strip()
    m = _HEX_RE.match(text)
    if m:
        digits = m.group(1)
        if len(digits) == 3:
            digits = ''.join(ch * 2 for ch in digits)
        alpha = int(digits[6:8], 16) / 255 if len(digits) == 8 else 1.0
        return f'#{digits[:6].lower()}', alpha
    m = _RGBA_RE.match(text)
    if m:
        r, g, b = (int(m.group(i)) for i in (1, 2, 3))
        alpha = float(m.group(4)) if m.group(4) is not None else 1.0
        return f'#{r:02x}{g:02x}{b:02x}', alpha
    return text, 1.0


def encode_font(font: str) -> dict[str, str]:
    m = _FONT_RE.match(font.strip())
    if not m:
        return {'fontFamily': font}
    style, weight, size, unit, family = m.groups()
    out = {
        'fontFamily': family,
        'fontSize': f'{size}{unit}',
        'fontWeight': weight or 'normal',
    }
    if style:
        out['fontStyle'] = style
    return out


def _param_str(value: str | float | bool) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def _normalize_geometry(geometry: dict[str, Any] | None) -> dict[str, Any] | None:
    """Окружности заменяются многоугольниками: в GeoJSON их нет."""
    if not geometry:
        return geometry
    gtype = geometry.get('type')
    if gtype == CIRCLE_TYPE:
        cx, cy, radius = circle_params(geometry)
        return circle_to_polygon((cx, cy), radius)
    if gtype == 'GeometryCollection':
        return {
            'type': 'GeometryCollection',
            'geometries': [_normalize_geometry(g) for g in geometry.get('geometries', ())],
        }
    return geometry


def _geometry_types(geometry: dict[str, Any]) -> set[str]:
    if geometry.get('type') == 'GeometryCollection':
        out: set[str] = set()
        for g in geometry.get('geometries', ()):
            out |= _geometry_types(g)
        return out
    return {str(geometry.get('type'))}


def _stroke_props(stroke: Stroke) -> dict[str, Any]:
    color, opacity = encode_color(stroke.color)
    out: dict[str, Any] = {
        'strokeColor': color,
        'strokeOpacity': opacity,
        'strokeWidth': stroke.width,
    }
    if stroke.line_cap:
        out['strokeLinecap'] = stroke.line_cap
    if stroke.line_join:
        out['strokeLinejoin'] = stroke.line_join
    if stroke.line_dash:
        out['strokeDashstyle'] = ' '.join(f'{d:g}' for d in stroke.line_dash)
    return out


def _fill_props(color_value: ColorValue) -> dict[str, Any]:
    color, opacity = encode_color(color_value)
    return {'fillColor': color, 'fillOpacity': opacity}


def _point_symbolizer(image: CircleStyle) -> dict[str, Any]:
    out: dict[str, Any] = {
        'type': 'point',
        'graphicName': 'circle',
        'pointRadius': image.radius,
    }
    if image.fill is not None:
        out.update(_fill_props(image.fill.color))
    else:
        out['fillOpacity'] = 0.0
    if image.stroke is not None:
        out.update(_stroke_props(image.stroke))
    else:
        out['strokeOpacity'] = 0.0
    return out


def _text_symbolizer(text: TextStyle, properties: dict[str, Any]) -> dict[str, Any] | None:
    label = text.text
    if label is None and text.label_property:
        raw = properties.get(text.label_property)
        label = None if raw is None else str(raw)
    if not label:
        return None
    out: dict[str, Any] = {'type': 'text', 'label': label}
    out.update(encode_font(text.font))
    # В MapFish ось Y подписи направлена вверх, на экране вниз
    out['labelXOffset'] = text.offset_x
    out['labelYOffset'] = -text.offset_y
    if text.fill is not None:
        color, opacity = encode_color(text.fill.color)
        out['fontColor'] = color
        out['fontOpacity'] = opacity
    if text.stroke is not None:
        color, opacity = encode_color(text.stroke.color)
        out['haloColor'] = color
        out['haloOpacity'] = opacity
        out['haloRadius'] = text.stroke.width
    return out


def encode_symbolizers(
    style: Style,
    geometry_types: set[str],
    properties: dict[str, Any] | None = None,
) -> list[dict[str, Any]]:
    """MapFish style v2 symbolizers for the given geometry types, in a fixed order."""
    symbolizers: list[dict[str, Any]] = []
    if geometry_types & set(_POLYGON_TYPES) and (style.fill or style.stroke):
        polygon: dict[str, Any] = {'type': 'polygon'}
        if style.fill is not None:
            polygon.update(_fill_props(style.fill.color))
        else:
            polygon['fillOpacity'] = 0.0
        if style.stroke is not None:
            polygon.update(_stroke_props(style.stroke))
        else:
            polygon['strokeOpacity'] = 0.0
        symbolizers.append(polygon)
    if geometry_types & set(_LINE_TYPES) and style.stroke is not None:
        symbolizers.append({'type': 'line', **_stroke_props(style.stroke)})
    if geometry_types & set(_POINT_TYPES) and style.image is not None:
        symbolizers.append(_point_symbolizer(style.image))
    if style.text is not None:
        text = _text_symbolizer(style.text, properties or {})
        if text is not None:
            symbolizers.append(text)
    return symbolizers


class MapSpecEncoder:
    """Serializes the layers of a :class:`MapView` into ``attributes.map``."""

    def __init__(self) -> None:
        self._encoders: dict[
            type[Layer],
            Callable[[Any, EncodeContext, Customizer], dict[str, Any]],
        ] = {
            TileLayer: self._encode_tile_layer,
            WmsLayer: self._encode_wms_layer,
            VectorLayer: self._encode_vector_layer,
        }

    def encode_map(
        self,
        view: MapView,
        extent: PrintExtent,
        customizer: Customizer | None = None,
        *,
        use_extent: bool = False,
    ) -> MapAttributes:
        """
        Encode *view* for printing over *extent*.

        Args:
            view: Map snapshot; layers are encoded in their given order.
            extent: Ground rectangle of the printed page.
            customizer: Per-layer strategy; defaults to the no-op customizer.
            use_extent: Emit ``extent`` instead of ``center``.

        Raises:
            UnsupportedLayerError: If a layer type has no serialization rule.
        """
        customizer = customizer or BaseCustomizer()
        context = EncodeContext(
            extent=extent,
            scale=view.scale,
            dpi=view.dpi,
            projection=view.projection,
            resolution=view.resolution,
        )

        layers: list[dict[str, Any]] = []
        for layer in view.layers:
            if not layer.visible or layer.opacity <= 0:
                logger.debug('Layer %s is hidden, not printed', layer.name or layer.type)
                continue
            adjusted = customizer.adjust_layer(layer, context)
            if adjusted is SKIP:
                continue
            encoder = self._encoders.get(type(adjusted))
            if encoder is None:
                raise UnsupportedLayerError(adjusted.type, adjusted.name)
            layers.append(encoder(adjusted, context, customizer))

        return MapAttributes(
            dpi=view.dpi,
            scale=view.scale,
            rotation=view.rotation,
            projection=view.projection,
            center=None if use_extent else [float(view.center[0]), float(view.center[1])],
            extent=extent.as_list() if use_extent else None,
            layers=layers,
        )

    def build_spec(
        self,
        view: MapView,
        extent: PrintExtent,
        customizer: Customizer | None = None,
        *,
        layout: str = PRINT_LAYOUT_DEFAULT,
        output_format: str = 'pdf',
        datasource: list[dict[str, Any]] | None = None,
        use_extent: bool = False,
    ) -> PrintSpec:
        map_attrs = self.encode_map(view, extent, customizer, use_extent=use_extent)
        spec = PrintSpec(
            attributes=PrintAttributes(map=map_attrs, datasource=datasource or []),
            format=output_format,
            layout=layout,
        )
        logger.debug('Print spec: %s', spec.to_json())
        return spec

    # ------------------------------------------------------------------
    # Layer rules
    # ------------------------------------------------------------------

    @staticmethod
    def _common(layer: Layer, encoded: dict[str, Any]) -> dict[str, Any]:
        encoded['opacity'] = layer.opacity
        if layer.name:
            encoded['name'] = layer.name
        return encoded

    def _encode_tile_layer(
        self, layer: TileLayer, context: EncodeContext, customizer: Customizer
    ) -> dict[str, Any]:
        return self._common(
            layer,
            {
                'type': 'osm',
                'baseURL': layer.url,
                'imageExtension': layer.image_extension,
                'customParams': dict(sorted(layer.custom_params.items())),
            },
        )

    def _encode_wms_layer(
        self, layer: WmsLayer, context: EncodeContext, customizer: Customizer
    ) -> dict[str, Any]:
        params = {k.upper(): v for k, v in layer.params.items()}
        wms_layers = _param_str(params.pop('LAYERS', ''))
        image_format = _param_str(params.pop('FORMAT', 'image/png'))
        styles = _param_str(params.pop('STYLES', ''))
        version = _param_str(params.pop('VERSION', '1.3.0'))
        encoded: dict[str, Any] = {
            'type': 'wms',
            'baseURL': layer.url,
            'imageFormat': image_format,
            'layers': [name for name in wms_layers.split(',') if name],
            'styles': styles.split(','),
            'customParams': {k: _param_str(v) for k, v in sorted(params.items())},
            'version': version,
            'useNativeAngle': True,
        }
        if layer.server_type:
            encoded['serverType'] = layer.server_type
        return self._common(layer, encoded)

    def _encode_vector_layer(
        self, layer: VectorLayer, context: EncodeContext, customizer: Customizer
    ) -> dict[str, Any]:
        rules: dict[str, dict[str, Any]] = {}
        style_ids: dict[str, str] = {}
        features: list[dict[str, Any]] = []

        for feature in layer.features:
            if not customizer.keep_feature(feature, layer, context):
                continue
            features.append(self._encode_feature(feature, layer, rules, style_ids))

        geo_json: dict[str, Any] | str
        if layer.url and not layer.features:
            # Удалённый GeoJSON: стиль слоя применяется ко всем объектам
            geo_json = layer.url
            if layer.style is not None:
                symbolizers = encode_symbolizers(
                    layer.style, set(_POINT_TYPES + _LINE_TYPES + _POLYGON_TYPES)
                )
                if symbolizers:
                    rules['*'] = {'symbolizers': symbolizers}
        else:
            geo_json = {'type': 'FeatureCollection', 'features': features}

        encoded: dict[str, Any] = {
            'type': 'geojson',
            'geoJson': geo_json,
            'style': {'version': '2', **rules},
        }
        return self._common(layer, encoded)

    @staticmethod
    def _encode_feature(
        feature: Feature,
        layer: VectorLayer,
        rules: dict[str, dict[str, Any]],
        style_ids: dict[str, str],
    ) -> dict[str, Any]:
        geometry = _normalize_geometry(feature.geometry)
        properties = dict(feature.properties)
        style = feature.style or layer.style
        if style is not None and geometry:
            symbolizers = encode_symbolizers(style, _geometry_types(geometry), properties)
            if symbolizers:
                key = json.dumps(symbolizers, sort_keys=True)
                style_id = style_ids.setdefault(key, str(len(style_ids) + 1))
                rules[f"[{MFP_STYLE_PROPERTY} = '{style_id}']"] = {
                    'symbolizers': symbolizers,
                }
                properties[MFP_STYLE_PROPERTY] = style_id

        encoded: dict[str, Any] = {
            'type': 'Feature',
            'geometry': geometry,
            'properties': properties,
        }
        if feature.id is not None:
            encoded['id'] = feature.id
        return encoded
