"""Services package - print spec encoding and job orchestration."""

from services.customizers import (
    SKIP,
    BaseCustomizer,
    ChainCustomizer,
    Customizer,
    ExtentCustomizer,
    TokenCustomizer,
)
from services.job_events import (
    TERMINAL_STATES,
    JobEvent,
    JobEventEmitter,
    JobListener,
    JobState,
)
from services.print_job_controller import PrintJobController
from services.spec_encoder import (
    MapSpecEncoder,
    encode_color,
    encode_font,
    encode_symbolizers,
)

__all__ = [
    'SKIP',
    'TERMINAL_STATES',
    'BaseCustomizer',
    'ChainCustomizer',
    'Customizer',
    'ExtentCustomizer',
    'JobEvent',
    'JobEventEmitter',
    'JobListener',
    'JobState',
    'MapSpecEncoder',
    'PrintJobController',
    'TokenCustomizer',
    'encode_color',
    'encode_font',
    'encode_symbolizers',
]
