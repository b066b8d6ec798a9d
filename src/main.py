"""Command-line entry point for Map Print: send a map view to the print service."""

import argparse
import asyncio
import contextlib
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from domain.models import JobOutcome, MapView, PrintSettings
from domain.profiles import load_profile
from infrastructure.http.client import ReportClient
from services.customizers import ChainCustomizer, Customizer, ExtentCustomizer, TokenCustomizer
from services.job_events import JobEvent, JobState
from services.print_job_controller import PrintJobController
from shared.constants import APP_DIR_NAME, CURRENT_PROFILE, LOG_FILE_NAME
from shared.errors import NoJobInProgressError, PrintError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PRINT_FAILED = 1
EXIT_BAD_INPUT = 2


def setup_logging(level: int = logging.INFO) -> Path:
    """Configure logging to stderr and to a file in the user's local data dir.

    Returns:
        Path of the log file.
    """
    local_base = Path(os.getenv('LOCALAPPDATA') or Path.home() / '.local' / 'share') / APP_DIR_NAME
    log_dir = local_base / 'log'
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    # stdout занят результатом (URL или JSON), логи идут в stderr
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(str(log_file), encoding='utf-8'),
        ],
    )
    return log_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='map-print',
        description='Map Print - печать карты через сервис MapFish Print',
    )
    parser.add_argument(
        '--view',
        required=True,
        help='JSON-файл с описанием карты (центр, масштаб, слои)',
    )
    parser.add_argument(
        '--profile',
        default=CURRENT_PROFILE,
        help='Имя профиля или путь к TOML-файлу настроек',
    )
    parser.add_argument('--scale', type=float, help='Масштаб печати (знаменатель)')
    parser.add_argument('--dpi', type=int, help='Разрешение печати, точек на дюйм')
    parser.add_argument(
        '--spec-only',
        action='store_true',
        help='Только вывести JSON запроса печати, не отправляя его',
    )
    parser.add_argument(
        '--log-level',
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
    )
    return parser


def load_settings(profile: str) -> PrintSettings:
    try:
        return load_profile(profile)
    except FileNotFoundError:
        logger.warning('Profile %r not found, using built-in defaults', profile)
        return PrintSettings()


def load_view(path: str | Path, settings: PrintSettings) -> MapView:
    """Read a map view from JSON; missing scale/dpi/projection come from *settings*."""
    data: dict[str, Any] = json.loads(Path(path).read_text(encoding='utf-8'))
    data.setdefault('scale', settings.scale)
    data.setdefault('dpi', settings.dpi)
    data.setdefault('projection', settings.projection)
    return MapView.model_validate(data)


def build_customizer(settings: PrintSettings) -> Customizer:
    extent = ExtentCustomizer()
    if settings.access_token:
        return ChainCustomizer(extent, TokenCustomizer(settings.access_token))
    return extent


def _log_state(state: JobState, event: JobEvent) -> None:
    if event.message and state is not JobState.READY:
        logger.info('Print %s: %s', state.value, event.message)


async def run_print(
    view: MapView,
    settings: PrintSettings,
    *,
    scale: float | None = None,
    dpi: int | None = None,
) -> JobOutcome:
    """Submit *view* and wait for the outcome; Ctrl+C cancels the job."""
    async with ReportClient(
        settings.service_url,
        request_timeout_s=settings.request_timeout_s,
        cancel_path=settings.cancel_path,
    ) as client:
        controller = PrintJobController.from_settings(
            settings, client, customizer=build_customizer(settings)
        )
        controller.add_listener(_log_state)

        pending: set[asyncio.Task[Any]] = set()

        def _request_cancel() -> None:
            logger.info('Interrupted, cancelling print')
            task = asyncio.ensure_future(controller.cancel_current_print())
            pending.add(task)
            task.add_done_callback(pending.discard)

        loop = asyncio.get_running_loop()
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, _request_cancel)
        try:
            return await controller.start_print(
                view, settings.page_size, scale=scale, dpi=dpi
            )
        finally:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)
            # Дождаться DELETE до закрытия сессии
            for result in await asyncio.gather(*pending, return_exceptions=True):
                if isinstance(result, Exception) and not isinstance(result, NoJobInProgressError):
                    logger.error('Cancel failed: %s', result)


def main(argv: list[str] | None = None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)
    log_file = setup_logging(getattr(logging, args.log_level))
    logger.debug('Logging to %s', log_file)

    try:
        settings = load_settings(args.profile)
        view = load_view(args.view, settings)
    except (OSError, ValueError, ValidationError) as e:
        logger.error('Invalid input: %s', e)
        return EXIT_BAD_INPUT

    if args.spec_only:
        controller = PrintJobController.from_settings(
            settings,
            ReportClient(settings.service_url),
            customizer=build_customizer(settings),
        )
        try:
            spec = controller.build_spec(view, settings.page_size, args.scale, args.dpi)
        except PrintError as e:
            logger.error('Cannot encode print spec: %s', e)
            return EXIT_BAD_INPUT
        print(spec.to_json(indent=2))
        return EXIT_OK

    outcome = asyncio.run(run_print(view, settings, scale=args.scale, dpi=args.dpi))
    if outcome.kind == 'ready':
        print(outcome.url)
        return EXIT_OK
    print(outcome.message, file=sys.stderr)
    return EXIT_PRINT_FAILED


if __name__ == '__main__':
    sys.exit(main())
