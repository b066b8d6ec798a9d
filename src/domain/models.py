from __future__ import annotations

import json
from typing import Annotated, Any, ClassVar, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializeAsAny,
    field_validator,
)

from shared.constants import (
    HTTP_TIMEOUT_DEFAULT,
    OSM_TILE_URL_DEFAULT,
    POLL_INTERVAL_MS_DEFAULT,
    POLL_TIMEOUT_MS_DEFAULT,
    PRINT_CANCEL_PATH,
    PRINT_DPI_DEFAULT,
    PRINT_LAYOUT_DEFAULT,
    PRINT_PAGE_SIZE_DEFAULT_MM,
    PRINT_PROJECTION_DEFAULT,
    PRINT_SCALE_DEFAULT,
    PRINT_SERVICE_URL_DEFAULT,
    PRINT_STATUS_CANCELLED,
    PRINT_STATUS_ERROR,
    OutputFormat,
    default_output_format,
)

# Цвет: '#rrggbb', 'rgba(r, g, b, a)' или [r, g, b(, a)]
ColorValue = str | tuple[float, ...]


# ---------------------------------------------------------------------------
# Geometry of the printed page
# ---------------------------------------------------------------------------


class PageSize(BaseModel):
    """Size of the map area on the printed page, in millimetres."""

    model_config = ConfigDict(frozen=True)

    width: float
    height: float

    @classmethod
    def of(cls, value: PageSize | tuple[float, float] | list[float]) -> PageSize:
        if isinstance(value, PageSize):
            return value
        width, height = value
        return cls(width=width, height=height)


class PrintExtent(BaseModel):
    """Axis-aligned ground rectangle covered by the printed page."""

    model_config = ConfigDict(frozen=True)

    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> tuple[float, float]:
        return ((self.min_x + self.max_x) / 2, (self.min_y + self.max_y) / 2)

    @property
    def aspect(self) -> float:
        return self.width / self.height

    def as_list(self) -> list[float]:
        return [self.min_x, self.min_y, self.max_x, self.max_y]

    def intersects(self, bbox: tuple[float, float, float, float]) -> bool:
        min_x, min_y, max_x, max_y = bbox
        return not (
            max_x < self.min_x
            or min_x > self.max_x
            or max_y < self.min_y
            or min_y > self.max_y
        )

    def clip(self, bbox: tuple[float, float, float, float]) -> list[float]:
        """Intersection of *bbox* with this extent (bbox is returned as-is if disjoint)."""
        if not self.intersects(bbox):
            return list(bbox)
        min_x, min_y, max_x, max_y = bbox
        return [
            max(min_x, self.min_x),
            max(min_y, self.min_y),
            min(max_x, self.max_x),
            min(max_y, self.max_y),
        ]


# ---------------------------------------------------------------------------
# Styles
# ---------------------------------------------------------------------------


class Fill(BaseModel):
    model_config = ConfigDict(frozen=True)

    color: ColorValue = '#ffffff'


class Stroke(BaseModel):
    model_config = ConfigDict(frozen=True)

    color: ColorValue = '#000000'
    width: float = 1.25
    line_cap: str | None = None
    line_join: str | None = None
    line_dash: tuple[float, ...] | None = None


class CircleStyle(BaseModel):
    """Point marker drawn as a circle."""

    model_config = ConfigDict(frozen=True)

    radius: float = 5.0
    fill: Fill | None = None
    stroke: Stroke | None = None


class TextStyle(BaseModel):
    """
    Label drawn next to a feature.

    Either a literal ``text`` or the name of the feature property
    (``label_property``) that holds the label.
    """

    model_config = ConfigDict(frozen=True)

    text: str | None = None
    label_property: str | None = None
    font: str = '10px sans-serif'
    offset_x: float = 0.0
    offset_y: float = 0.0
    fill: Fill | None = None
    stroke: Stroke | None = None


class Style(BaseModel):
    model_config = ConfigDict(frozen=True)

    fill: Fill | None = None
    stroke: Stroke | None = None
    image: CircleStyle | None = None
    text: TextStyle | None = None


class Feature(BaseModel):
    """GeoJSON feature with an optional feature-level style override."""

    model_config = ConfigDict(frozen=True)

    type: Literal['Feature'] = 'Feature'
    id: str | int | None = None
    geometry: dict[str, Any] | None = None
    properties: dict[str, Any] = Field(default_factory=dict)
    style: Style | None = None


# ---------------------------------------------------------------------------
# Layers
# ---------------------------------------------------------------------------


class Layer(BaseModel):
    """
    Layer descriptor as captured from the map view.

    Unknown layer types are kept (extra keys allowed) so that the encoder
    can report them explicitly instead of failing at parse time.
    """

    model_config = ConfigDict(frozen=True, extra='allow')

    type: str
    name: str | None = None
    opacity: float = 1.0
    visible: bool = True


class TileLayer(Layer):
    """XYZ tile source; ``osm`` without url means the public OSM tiles."""

    type: Literal['osm', 'xyz'] = 'osm'
    url: str = OSM_TILE_URL_DEFAULT
    image_extension: str = 'png'
    custom_params: dict[str, str] = Field(default_factory=dict)


class WmsLayer(Layer):
    type: Literal['wms'] = 'wms'
    url: str
    params: dict[str, str | int | float | bool] = Field(default_factory=dict)
    server_type: str | None = None


class VectorLayer(Layer):
    """Inline GeoJSON features and/or a remote GeoJSON url (never fetched here)."""

    type: Literal['geojson'] = 'geojson'
    features: tuple[Feature, ...] = ()
    url: str | None = None
    style: Style | None = None


LAYER_TYPES: dict[str, type[Layer]] = {
    'osm': TileLayer,
    'xyz': TileLayer,
    'wms': WmsLayer,
    'geojson': VectorLayer,
}


def parse_layer(data: Layer | dict[str, Any]) -> Layer:
    """Build the concrete layer model for a raw descriptor, dispatching on ``type``."""
    if isinstance(data, Layer):
        return data
    layer_cls = LAYER_TYPES.get(str(data.get('type')), Layer)
    return layer_cls.model_validate(data)


class MapView(BaseModel):
    """Snapshot of the interactive map at the moment the user asks to print."""

    model_config = ConfigDict(frozen=True)

    center: tuple[float, float]
    scale: float = Field(default=PRINT_SCALE_DEFAULT, gt=0)
    resolution: float | None = None
    dpi: int = Field(default=PRINT_DPI_DEFAULT, gt=0)
    rotation: float = 0.0
    projection: str = PRINT_PROJECTION_DEFAULT
    layers: tuple[SerializeAsAny[Layer], ...] = ()

    @field_validator('layers', mode='before')
    @classmethod
    def parse_layers(cls, v: Any) -> tuple[Layer, ...]:
        return tuple(parse_layer(item) for item in v or ())


class EncodeContext(BaseModel):
    """What a customizer may look at when adjusting a layer."""

    model_config = ConfigDict(frozen=True)

    extent: PrintExtent
    scale: float
    dpi: int
    projection: str
    resolution: float | None = None


# ---------------------------------------------------------------------------
# Wire request
# ---------------------------------------------------------------------------


class MapAttributes(BaseModel):
    dpi: int
    scale: float
    rotation: float = 0.0
    projection: str
    center: list[float] | None = None
    extent: list[float] | None = None
    layers: list[dict[str, Any]] = Field(default_factory=list)


class PrintAttributes(BaseModel):
    model_config = ConfigDict(extra='allow')

    map: MapAttributes
    datasource: list[dict[str, Any]] = Field(default_factory=list)


class PrintSpec(BaseModel):
    attributes: PrintAttributes
    format: str = default_output_format().value
    layout: str = PRINT_LAYOUT_DEFAULT

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode='json')
        map_data = data['attributes']['map']
        # Сервис ожидает либо center, либо extent
        for key in ('center', 'extent'):
            if map_data.get(key) is None:
                map_data.pop(key, None)
        return data

    def to_json(self, indent: int | None = None) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Job lifecycle
# ---------------------------------------------------------------------------


class JobReference(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra='ignore')

    ref: str = Field(min_length=1)
    status_url: str | None = Field(default=None, alias='statusURL')
    download_url: str | None = Field(default=None, alias='downloadURL')


class JobStatus(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra='ignore')

    done: bool = False
    status: str = 'pending'
    download_url: str | None = Field(default=None, alias='downloadURL')
    error: str | None = None
    elapsed_time: int | None = Field(default=None, alias='elapsedTime')
    waiting_time: int | None = Field(default=None, alias='waitingTime')

    @property
    def failed(self) -> bool:
        return bool(self.error) or self.status in (
            PRINT_STATUS_ERROR,
            PRINT_STATUS_CANCELLED,
        )


class CancelResult(BaseModel):
    """
    Outcome of a cancellation request.

    ``deferred`` means the job was still being submitted: the service is
    asked to cancel it as soon as its reference arrives.
    """

    model_config = ConfigDict(frozen=True)

    ref: str | None
    accepted: bool
    status: int | None = None
    deferred: bool = False


class JobPending(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal['pending'] = 'pending'
    ref: str | None = None

    terminal: ClassVar[bool] = False

    @property
    def message(self) -> str:
        return 'Print in progress'


class JobReady(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal['ready'] = 'ready'
    url: str

    terminal: ClassVar[bool] = True

    @property
    def message(self) -> str:
        return self.url


class JobFailed(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal['failed'] = 'failed'
    error: str
    error_kind: str = 'PRINT_ERROR'

    terminal: ClassVar[bool] = True

    @property
    def message(self) -> str:
        return self.error


class JobCancelled(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal['cancelled'] = 'cancelled'
    ref: str | None = None

    terminal: ClassVar[bool] = True

    @property
    def message(self) -> str:
        return 'Print is canceled'


class JobTimedOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal['timed_out'] = 'timed_out'
    timeout_ms: int

    terminal: ClassVar[bool] = True

    @property
    def message(self) -> str:
        return f'Print duration exceeded ({self.timeout_ms} ms), please try again'


JobOutcome = Annotated[
    JobPending | JobReady | JobFailed | JobCancelled | JobTimedOut,
    Field(discriminator='kind'),
]


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class PrintSettings(BaseModel):
    """Настройки сервиса печати, хранятся в TOML-профиле."""

    model_config = {
        'extra': 'ignore',  # игнорировать лишние поля из профилей
    }

    service_url: str = PRINT_SERVICE_URL_DEFAULT
    layout: str = PRINT_LAYOUT_DEFAULT
    format: OutputFormat = default_output_format()
    # Размер области карты на странице (мм)
    page_size: tuple[float, float] = PRINT_PAGE_SIZE_DEFAULT_MM
    dpi: int = PRINT_DPI_DEFAULT
    scale: float = PRINT_SCALE_DEFAULT
    projection: str = PRINT_PROJECTION_DEFAULT
    poll_interval_ms: int = POLL_INTERVAL_MS_DEFAULT
    timeout_ms: int = POLL_TIMEOUT_MS_DEFAULT
    request_timeout_s: float = HTTP_TIMEOUT_DEFAULT
    cancel_path: str = PRINT_CANCEL_PATH
    # Токен доступа к источникам слоёв (не к сервису печати)
    access_token: str | None = None

    @field_validator('service_url')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(('http://', 'https://')):
            msg = 'service_url must be an http(s) URL'
            raise ValueError(msg)
        return v.rstrip('/')

    @field_validator('dpi', 'poll_interval_ms', 'timeout_ms')
    @classmethod
    def validate_positive_int(cls, v: int | str) -> int:
        iv = int(v)
        if iv <= 0:
            msg = 'Value must be positive'
            raise ValueError(msg)
        return iv

    @field_validator('scale', 'request_timeout_s')
    @classmethod
    def validate_positive_float(cls, v: float | str) -> float:
        fv = float(v)
        if fv <= 0:
            msg = 'Value must be positive'
            raise ValueError(msg)
        return fv

    @field_validator('cancel_path')
    @classmethod
    def validate_cancel_path(cls, v: str) -> str:
        if '{ref}' not in v:
            msg = "cancel_path must contain the '{ref}' placeholder"
            raise ValueError(msg)
        return v.lstrip('/')
