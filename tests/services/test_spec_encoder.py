"""Tests for map spec encoding."""

import json

import pytest

from domain.models import MapView, PrintExtent, Style
from geo.extent import compute_extent
from services.customizers import SKIP, BaseCustomizer
from services.spec_encoder import (
    MapSpecEncoder,
    encode_color,
    encode_font,
    encode_symbolizers,
)
from shared.errors import InvalidArgumentError, UnsupportedLayerError

CENTER = (796612, 5836960)
EXTENT = compute_extent((254, 675), CENTER, 50000)

ROADS = {
    'type': 'wms',
    'name': 'roads',
    'url': 'https://wms.example.com/ows',
    'params': {'LAYERS': 'roads,rivers', 'FORMAT': 'image/jpeg', 'TRANSPARENT': True},
    'server_type': 'mapserver',
}

POINTS = {
    'type': 'geojson',
    'name': 'poi',
    'style': {
        'image': {'radius': 6, 'fill': {'color': '#f00'}},
        'text': {'label_property': 'name', 'font': 'bold 12px Arial', 'offset_y': 10},
    },
    'features': [
        {'type': 'Feature', 'id': 1, 'geometry': {'type': 'Point', 'coordinates': [796000, 5836000]}, 'properties': {'name': 'A'}},
        {'type': 'Feature', 'id': 2, 'geometry': {'type': 'Point', 'coordinates': [797000, 5837000]}, 'properties': {'name': 'B'}},
    ],
}


def make_view(layers, **kwargs):
    return MapView.model_validate({'center': CENTER, 'layers': layers, **kwargs})


def encode(layers, **kwargs):
    return MapSpecEncoder().encode_map(make_view(layers), EXTENT, **kwargs)


class TestEncodeMap:
    def test_map_attributes(self):
        attrs = MapSpecEncoder().encode_map(
            make_view([], scale=25000, dpi=300, rotation=15), EXTENT
        )

        assert attrs.scale == 25000
        assert attrs.dpi == 300
        assert attrs.rotation == 15
        assert attrs.projection == 'EPSG:3857'
        assert attrs.center == [796612.0, 5836960.0]
        assert attrs.extent is None

    def test_use_extent(self):
        attrs = encode([], use_extent=True)

        assert attrs.center is None
        assert attrs.extent == EXTENT.as_list()

    def test_layer_order_is_preserved(self):
        layers = encode([{'type': 'osm', 'name': 'base'}, ROADS, POINTS]).layers

        assert [layer['name'] for layer in layers] == ['base', 'roads', 'poi']

    def test_hidden_layers_are_skipped(self):
        layers = encode(
            [
                {'type': 'osm', 'name': 'base'},
                {'type': 'osm', 'name': 'hidden', 'visible': False},
                {'type': 'osm', 'name': 'transparent', 'opacity': 0},
            ]
        ).layers

        assert [layer['name'] for layer in layers] == ['base']

    def test_unsupported_layer(self):
        with pytest.raises(UnsupportedLayerError) as exc:
            encode([{'type': 'osm'}, {'type': 'vectortile', 'name': 'mvt'}])

        assert exc.value.layer_type == 'vectortile'
        assert exc.value.code == 'UNSUPPORTED_LAYER'
        assert 'mvt' in exc.value.message

    def test_customizer_can_skip(self):
        class DropWms(BaseCustomizer):
            def adjust_layer(self, layer, context):
                return SKIP if layer.type == 'wms' else layer

        layers = encode([{'type': 'osm'}, ROADS], customizer=DropWms()).layers

        assert [layer['type'] for layer in layers] == ['osm']

    def test_customizer_sees_context(self):
        seen = []

        class Spy(BaseCustomizer):
            def adjust_layer(self, layer, context):
                seen.append(context)
                return layer

        encode([{'type': 'osm'}], customizer=Spy())

        assert seen[0].extent == EXTENT
        assert seen[0].scale == 50000
        assert seen[0].dpi == 254


class TestLayerRules:
    def test_tile_layer(self):
        (layer,) = encode([{'type': 'osm', 'name': 'base', 'opacity': 0.5}]).layers

        assert layer == {
            'type': 'osm',
            'baseURL': 'https://tile.openstreetmap.org/{z}/{x}/{y}.png',
            'imageExtension': 'png',
            'customParams': {},
            'opacity': 0.5,
            'name': 'base',
        }

    def test_wms_layer(self):
        (layer,) = encode([ROADS]).layers

        assert layer['type'] == 'wms'
        assert layer['baseURL'] == 'https://wms.example.com/ows'
        assert layer['layers'] == ['roads', 'rivers']
        assert layer['imageFormat'] == 'image/jpeg'
        assert layer['customParams'] == {'TRANSPARENT': 'true'}
        assert layer['version'] == '1.3.0'
        assert layer['serverType'] == 'mapserver'
        assert layer['useNativeAngle'] is True

    def test_vector_layer_shares_style_rules(self):
        (layer,) = encode([POINTS]).layers

        features = layer['geoJson']['features']
        assert [f['id'] for f in features] == [1, 2]
        assert {f['properties']['_mfp_style'] for f in features} == {'1', '2'}
        assert layer['style']['version'] == '2'
        rule = layer['style']["[_mfp_style = '1']"]
        point, text = rule['symbolizers']
        assert point['type'] == 'point'
        assert point['fillColor'] == '#ff0000'
        assert text['label'] == 'A'
        assert text['labelYOffset'] == -10

    def test_identical_styles_are_deduplicated(self):
        layer_def = {
            'type': 'geojson',
            'style': {'stroke': {'color': '#0000ff', 'width': 2}},
            'features': [
                {'geometry': {'type': 'LineString', 'coordinates': [[0, 0], [1, 1]]}},
                {'geometry': {'type': 'LineString', 'coordinates': [[2, 2], [3, 3]]}},
            ],
        }
        (layer,) = encode([layer_def]).layers

        rules = [k for k in layer['style'] if k != 'version']
        assert rules == ["[_mfp_style = '1']"]

    def test_circle_becomes_polygon(self):
        layer_def = {
            'type': 'geojson',
            'style': {'fill': {'color': 'rgba(0, 128, 0, 0.5)'}},
            'features': [{'geometry': {'type': 'Circle', 'center': list(CENTER), 'radius': 500}}],
        }
        (layer,) = encode([layer_def]).layers

        feature = layer['geoJson']['features'][0]
        assert feature['geometry']['type'] == 'Polygon'
        assert len(feature['geometry']['coordinates'][0]) == 65
        polygon = layer['style']["[_mfp_style = '1']"]['symbolizers'][0]
        assert polygon['fillColor'] == '#008000'
        assert polygon['fillOpacity'] == 0.5

    @pytest.mark.parametrize(
        'geometry',
        [
            {'type': 'Circle', 'center': [0, 0]},
            {'type': 'Circle', 'radius': 10},
            {'type': 'Circle', 'center': [0, 0], 'radius': -1},
        ],
    )
    def test_malformed_circle_is_invalid_argument(self, geometry):
        layer_def = {'type': 'geojson', 'features': [{'geometry': geometry}]}

        with pytest.raises(InvalidArgumentError):
            encode([layer_def])

    def test_remote_geojson(self):
        layer_def = {
            'type': 'geojson',
            'url': 'https://data.example.com/parcels.geojson',
            'style': {'stroke': {'color': '#333333'}},
        }
        (layer,) = encode([layer_def]).layers

        assert layer['geoJson'] == 'https://data.example.com/parcels.geojson'
        types = [s['type'] for s in layer['style']['*']['symbolizers']]
        assert types == ['polygon', 'line']


class TestBuildSpec:
    def test_spec_is_deterministic(self):
        encoder = MapSpecEncoder()
        layers = [{'type': 'osm'}, ROADS, POINTS]

        first = encoder.build_spec(make_view(layers), EXTENT, layout='A4 portrait').to_json()
        second = encoder.build_spec(make_view(layers), EXTENT, layout='A4 portrait').to_json()

        assert first == second

    def test_spec_is_json_serializable(self):
        spec = MapSpecEncoder().build_spec(
            make_view([POINTS]),
            EXTENT,
            layout='A4 portrait',
            output_format='png',
            datasource=[{'title': 'Legend'}],
        )

        data = json.loads(spec.to_json())
        assert data['layout'] == 'A4 portrait'
        assert data['format'] == 'png'
        assert data['attributes']['datasource'] == [{'title': 'Legend'}]
        assert 'extent' not in data['attributes']['map']


class TestEncodeColor:
    @pytest.mark.parametrize(
        ('value', 'expected'),
        [
            ('#abc', ('#aabbcc', 1.0)),
            ('#AABBCC', ('#aabbcc', 1.0)),
            ('#ff000080', ('#ff0000', 128 / 255)),
            ('rgb(255, 0, 0)', ('#ff0000', 1.0)),
            ('rgba(0,0,255,0.25)', ('#0000ff', 0.25)),
            ((0, 255, 0, 0.3), ('#00ff00', 0.3)),
            ('red', ('red', 1.0)),
        ],
    )
    def test_colors(self, value, expected):
        color, opacity = encode_color(value)
        assert color == expected[0]
        assert opacity == pytest.approx(expected[1])


class TestEncodeFont:
    def test_full_font(self):
        assert encode_font('italic bold 12px Arial') == {
            'fontFamily': 'Arial',
            'fontSize': '12px',
            'fontWeight': 'bold',
            'fontStyle': 'italic',
        }

    def test_size_and_family(self):
        assert encode_font('10px sans-serif') == {
            'fontFamily': 'sans-serif',
            'fontSize': '10px',
            'fontWeight': 'normal',
        }

    def test_unparsed_font(self):
        assert encode_font('Helvetica') == {'fontFamily': 'Helvetica'}


class TestEncodeSymbolizers:
    def test_text_without_label_is_dropped(self):
        style = Style.model_validate({'text': {'label_property': 'name'}})
        assert encode_symbolizers(style, {'Point'}, {}) == []

    def test_line_dash(self):
        style = Style.model_validate({'stroke': {'color': '#000', 'width': 3, 'line_dash': [4, 2]}})
        (line,) = encode_symbolizers(style, {'LineString'})

        assert line['strokeDashstyle'] == '4 2'
        assert line['strokeWidth'] == 3
