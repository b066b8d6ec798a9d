"""Tests for per-layer print customizers."""

import pytest

from domain.models import (
    EncodeContext,
    Feature,
    PrintExtent,
    TileLayer,
    VectorLayer,
    WmsLayer,
)
from services.customizers import (
    SKIP,
    BaseCustomizer,
    ChainCustomizer,
    ExtentCustomizer,
    TokenCustomizer,
)
from shared.errors import InvalidArgumentError

CONTEXT = EncodeContext(
    extent=PrintExtent(min_x=0, min_y=0, max_x=100, max_y=50),
    scale=50000,
    dpi=254,
    projection='EPSG:3857',
)


def wms(**params):
    return WmsLayer(name='roads', url='https://wms.example.com/ows', params=params)


class TestBaseCustomizer:
    def test_passes_layers_through(self):
        layer = TileLayer(name='base')
        assert BaseCustomizer().adjust_layer(layer, CONTEXT) is layer

    def test_skips_by_name(self):
        customizer = BaseCustomizer(skip_layers=['base'])

        assert customizer.adjust_layer(TileLayer(name='base'), CONTEXT) is SKIP
        assert customizer.adjust_layer(TileLayer(name='other'), CONTEXT) is not SKIP


class TestExtentCustomizer:
    def test_sets_missing_bbox(self):
        adjusted = ExtentCustomizer().adjust_layer(wms(LAYERS='roads'), CONTEXT)

        assert adjusted.params['BBOX'] == '0.0,0.0,100.0,50.0'
        assert adjusted.params['LAYERS'] == 'roads'

    def test_clips_existing_bbox(self):
        adjusted = ExtentCustomizer().adjust_layer(wms(bbox='-50,10,60,200'), CONTEXT)

        assert adjusted.params == {'bbox': '0.0,10.0,60.0,50.0'}

    @pytest.mark.parametrize('bbox', ['a,b,c,d', '1,2,3'])
    def test_malformed_bbox_is_invalid_argument(self, bbox):
        with pytest.raises(InvalidArgumentError) as exc:
            ExtentCustomizer().adjust_layer(wms(BBOX=bbox), CONTEXT)

        assert 'roads' in exc.value.message

    def test_leaves_tile_layers_alone(self):
        layer = TileLayer()
        assert ExtentCustomizer().adjust_layer(layer, CONTEXT) is layer

    def test_drops_features_outside_extent(self):
        customizer = ExtentCustomizer()
        layer = VectorLayer()
        inside = Feature(geometry={'type': 'Point', 'coordinates': [10, 10]})
        outside = Feature(geometry={'type': 'Point', 'coordinates': [500, 10]})
        crossing = Feature(geometry={'type': 'LineString', 'coordinates': [[-10, 10], [10, 10]]})
        empty = Feature()

        assert customizer.keep_feature(inside, layer, CONTEXT)
        assert not customizer.keep_feature(outside, layer, CONTEXT)
        assert customizer.keep_feature(crossing, layer, CONTEXT)
        assert customizer.keep_feature(empty, layer, CONTEXT)


class TestTokenCustomizer:
    def test_tile_template_braces_survive(self):
        layer = TileLayer(url='https://tiles.example.com/{z}/{x}/{y}.png')

        adjusted = TokenCustomizer('abc').adjust_layer(layer, CONTEXT)

        assert adjusted.url == 'https://tiles.example.com/{z}/{x}/{y}.png?access_token=abc'

    def test_existing_query_is_kept_and_token_replaced(self):
        layer = wms()
        layer = layer.model_copy(update={'url': 'https://wms.example.com/ows?map=roads&key=old'})

        adjusted = TokenCustomizer('new', param='key').adjust_layer(layer, CONTEXT)

        assert adjusted.url == 'https://wms.example.com/ows?map=roads&key=new'

    def test_inline_vector_layer_untouched(self):
        layer = VectorLayer()
        assert TokenCustomizer('abc').adjust_layer(layer, CONTEXT) is layer

    def test_remote_vector_layer(self):
        layer = VectorLayer(url='https://data.example.com/a.geojson')

        adjusted = TokenCustomizer('abc').adjust_layer(layer, CONTEXT)

        assert adjusted.url.endswith('?access_token=abc')


class TestChainCustomizer:
    def test_applies_in_order(self):
        chain = ChainCustomizer(ExtentCustomizer(), TokenCustomizer('abc'))

        adjusted = chain.adjust_layer(wms(), CONTEXT)

        assert adjusted.params['BBOX'] == '0.0,0.0,100.0,50.0'
        assert adjusted.url.endswith('access_token=abc')

    def test_skip_wins(self):
        chain = ChainCustomizer(BaseCustomizer(skip_layers=['roads']), TokenCustomizer('abc'))
        assert chain.adjust_layer(wms(), CONTEXT) is SKIP

    def test_keep_feature_requires_all(self):
        chain = ChainCustomizer(BaseCustomizer(), ExtentCustomizer())
        outside = Feature(geometry={'type': 'Point', 'coordinates': [500, 10]})

        assert not chain.keep_feature(outside, VectorLayer(), CONTEXT)
