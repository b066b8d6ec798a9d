from enum import Enum

# Базовый URL сервиса печати по умолчанию (демо-прокси MapFish Print)
PRINT_SERVICE_URL_DEFAULT = 'https://geomapfish-demo-2-8.camptocamp.com/printproxy'

# Шаблон печати (layout) по умолчанию; лучше брать из capabilities сервиса
PRINT_LAYOUT_DEFAULT = '2 A4 landscape'

# Размер области карты на странице (мм), соответствует layout по умолчанию
PRINT_PAGE_SIZE_DEFAULT_MM = (254.0, 675.0)

# Масштаб печати по умолчанию (знаменатель, 1:50000)
PRINT_SCALE_DEFAULT = 50000

# Разрешение вывода (dpi)
PRINT_DPI_DEFAULT = 254

# Проекция карты по умолчанию (Web Mercator)
PRINT_PROJECTION_DEFAULT = 'EPSG:3857'


class OutputFormat(str, Enum):
    PDF = 'pdf'
    PNG = 'png'
    JPEG = 'jpeg'


def default_output_format() -> OutputFormat:
    return OutputFormat.PDF


# --- Жизненный цикл задания печати
# Интервал между опросами статуса (мс)
POLL_INTERVAL_MS_DEFAULT = 1000
# Общий дедлайн ожидания результата (мс)
POLL_TIMEOUT_MS_DEFAULT = 30000
# Множитель задержки после подряд идущих ошибок опроса
POLL_ERROR_BACKOFF_FACTOR = 1.6

# --- Пути протокола MapFish Print v3 (относительно service_url)
PRINT_REPORT_PATH = 'report.{format}'
PRINT_STATUS_PATH = 'status/{ref}.json'
PRINT_CANCEL_PATH = 'cancel/{ref}'
PRINT_DOWNLOAD_PATH = 'report/{ref}'

# Статусы задания, которые сервис считает неуспешными
PRINT_STATUS_ERROR = 'error'
PRINT_STATUS_CANCELLED = 'cancelled'

# --- Параметры сетевых запросов по умолчанию
HTTP_TIMEOUT_DEFAULT = 20.0

HTTP_OK = 200

# Максимальная длина фрагмента тела ответа в сообщениях об ошибках
HTTP_ERROR_BODY_PREVIEW_LEN = 200

# --- Кодирование слоёв
# Количество сегментов при аппроксимации окружности многоугольником
CIRCLE_SEGMENTS = 64
# Имя свойства GeoJSON, по которому правило стиля ссылается на объект
MFP_STYLE_PROPERTY = '_mfp_style'
# Шаблон OSM-тайлов по умолчанию
OSM_TILE_URL_DEFAULT = 'https://tile.openstreetmap.org/{z}/{x}/{y}.png'
# Имя параметра токена доступа, добавляемого к URL источников
ACCESS_TOKEN_PARAM_DEFAULT = 'access_token'

# --- Единицы
# Дюймов в метре (как в OpenLayers / MapFish)
INCHES_PER_METER = 39.37
# Длина дуги одного градуса на сфере радиуса 6370997 м (OpenLayers METERS_PER_UNIT.degrees)
METERS_PER_DEGREE = 2 * 3.141592653589793 * 6370997 / 360

PROFILES_DIR = 'configs/profiles'
CURRENT_PROFILE = 'default'

# Каталог приложения в пользовательских данных
APP_DIR_NAME = 'MapPrint'
LOG_FILE_NAME = 'map_print.log'
