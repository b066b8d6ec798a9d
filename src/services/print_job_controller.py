"""
Print job orchestration: submit, wait for the report, cancel.

The controller owns a single job slot. A job is identified by a
monotonically increasing token; the slot's active token is cleared on
cancel, so any completion that arrives later compares unequal and is
discarded instead of reaching the listeners.

State machine::

    IDLE -> SUBMITTING -> POLLING -> READY | FAILED | CANCELLED | TIMED_OUT -> IDLE

All mutation happens on the event loop thread between await points,
so no locks are needed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from domain.models import (
    CancelResult,
    JobCancelled,
    JobFailed,
    JobReady,
    JobTimedOut,
)
from geo.extent import compute_extent, meters_per_unit
from services.job_events import OUTCOME_STATES, JobEvent, JobEventEmitter, JobState
from services.spec_encoder import MapSpecEncoder
from shared.constants import (
    POLL_INTERVAL_MS_DEFAULT,
    POLL_TIMEOUT_MS_DEFAULT,
    PRINT_LAYOUT_DEFAULT,
    default_output_format,
)
from shared.errors import (
    InvalidArgumentError,
    JobInProgressError,
    NoJobInProgressError,
    PrintError,
    ServerReportedFailure,
    SubmissionError,
    UnsupportedLayerError,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from domain.models import (
        JobOutcome,
        JobReference,
        MapView,
        PageSize,
        PrintSettings,
        PrintSpec,
    )
    from infrastructure.http.client import ReportClient
    from services.customizers import Customizer
    from services.job_events import JobListener

logger = logging.getLogger(__name__)


class PrintJobController(JobEventEmitter):
    """
    Drives one print job at a time through its lifecycle.

    Entry points for UI glue are :meth:`start_print` and
    :meth:`cancel_current_print`; every state change is reported to
    listeners registered with :meth:`add_listener`.
    """

    def __init__(
        self,
        client: ReportClient,
        *,
        encoder: MapSpecEncoder | None = None,
        customizer: Customizer | None = None,
        layout: str = PRINT_LAYOUT_DEFAULT,
        output_format: str = default_output_format().value,
        timeout_ms: int = POLL_TIMEOUT_MS_DEFAULT,
        interval_ms: int = POLL_INTERVAL_MS_DEFAULT,
        datasource: list[dict[str, Any]] | None = None,
        use_extent: bool = False,
        on_job_state_change: JobListener | None = None,
    ) -> None:
        super().__init__()
        self._client = client
        self._encoder = encoder or MapSpecEncoder()
        self._customizer = customizer
        self.layout = layout
        self.output_format = output_format
        self.timeout_ms = timeout_ms
        self.interval_ms = interval_ms
        self.datasource = datasource or []
        self.use_extent = use_extent

        self._state = JobState.IDLE
        self._job: JobReference | None = None
        self._last_token = 0
        self._active_token: int | None = None
        self._poll_task: asyncio.Future[str] | None = None

        if on_job_state_change is not None:
            self.add_listener(on_job_state_change)

    @classmethod
    def from_settings(
        cls,
        settings: PrintSettings,
        client: ReportClient,
        **kwargs: Any,
    ) -> PrintJobController:
        return cls(
            client,
            layout=settings.layout,
            output_format=settings.format.value,
            timeout_ms=settings.timeout_ms,
            interval_ms=settings.poll_interval_ms,
            **kwargs,
        )

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def current_job(self) -> JobReference | None:
        return self._job

    @property
    def busy(self) -> bool:
        return self._state is not JobState.IDLE

    # ------------------------------------------------------------------
    # State bookkeeping
    # ------------------------------------------------------------------

    def _set_state(
        self,
        state: JobState,
        token: int,
        *,
        ref: str | None = None,
        outcome: JobOutcome | None = None,
    ) -> None:
        self._state = state
        suffix = f' (ref={ref})' if ref else ''
        if outcome is not None and outcome.terminal:
            logger.info('Print job #%d: %s%s: %s', token, state.value, suffix, outcome.message)
        else:
            logger.info('Print job #%d: %s%s', token, state.value, suffix)
        self.notify_listeners(JobEvent(state=state, generation=token, ref=ref, outcome=outcome))

    def _finish(self, token: int, outcome: JobOutcome) -> JobOutcome:
        """Deliver a terminal outcome, then clear the slot."""
        ref = self._job.ref if self._job is not None else None
        self._active_token = None
        self._job = None
        self._poll_task = None
        self._set_state(OUTCOME_STATES[outcome.kind], token, ref=ref, outcome=outcome)
        self._set_state(JobState.IDLE, token)
        return outcome

    def _release(self, token: int) -> None:
        """Return to IDLE after a cancellation has been fully handled."""
        self._set_state(JobState.IDLE, token)

    @staticmethod
    def _log_cancel(result: CancelResult) -> None:
        if result.accepted:
            logger.info('Cancellation of %s acknowledged by the print service', result.ref)
        else:
            logger.warning(
                'Cancellation of %s not accepted by the print service (HTTP %s); '
                'the job may still complete',
                result.ref,
                result.status,
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build_spec(
        self,
        view: MapView,
        page_size: PageSize | Sequence[float],
        scale: float | None = None,
        dpi: int | None = None,
    ) -> PrintSpec:
        """
        Encode *view* into a print request without submitting it.

        Raises:
            InvalidArgumentError: On a bad page size, centre, scale, dpi or
                layer geometry.
            UnsupportedLayerError: If a layer cannot be serialized.
        """
        update: dict[str, Any] = {}
        if scale is not None:
            update['scale'] = scale
        if dpi is not None:
            if isinstance(dpi, bool) or not isinstance(dpi, int) or dpi <= 0:
                msg = f'dpi must be a positive integer, got {dpi!r}'
                raise InvalidArgumentError(msg)
            update['dpi'] = dpi
        if update:
            view = view.model_copy(update=update)
        mpu = meters_per_unit(view.projection)
        extent = compute_extent(page_size, view.center, view.scale, mpu)
        return self._encoder.build_spec(
            view,
            extent,
            self._customizer,
            layout=self.layout,
            output_format=self.output_format,
            datasource=self.datasource,
            use_extent=self.use_extent,
        )

    async def start_print(
        self,
        view: MapView,
        page_size: PageSize | Sequence[float],
        scale: float | None = None,
        dpi: int | None = None,
    ) -> JobOutcome:
        """
        Run one print job to its terminal outcome.

        Returns the outcome also delivered to listeners. A job cancelled
        through :meth:`cancel_current_print` returns ``JobCancelled`` even if
        the service finishes it afterwards.

        Raises:
            JobInProgressError: If another job still occupies the slot.
        """
        if self._state is not JobState.IDLE:
            logger.warning('Print requested while a job is %s; rejected', self._state.value)
            raise JobInProgressError

        self._last_token += 1
        token = self._last_token
        self._active_token = token
        self._set_state(JobState.SUBMITTING, token)

        try:
            spec = self.build_spec(view, page_size, scale, dpi)
        except (InvalidArgumentError, UnsupportedLayerError) as e:
            logger.error('Print spec encoding failed: %s', e)
            return self._finish(token, JobFailed(error=e.message, error_kind=e.code))
        except Exception as e:
            # Сбой пользовательского customizer и т.п.: слот всё равно освобождается
            logger.exception('Unexpected error while encoding the print spec')
            return self._finish(
                token,
                JobFailed(error=f'Print spec encoding failed: {e}', error_kind=PrintError.code),
            )

        try:
            ref = await self._client.submit(spec)
        except SubmissionError as e:
            if self._active_token != token:
                # Отменено во время отправки: задание на сервере не создано
                self._release(token)
                return JobCancelled()
            logger.error('Print submission failed: %s %s', e, e.details)
            return self._finish(token, JobFailed(error=e.message, error_kind=e.code))
        except asyncio.CancelledError:
            if self._active_token == token:
                self._finish(token, JobCancelled())
            else:
                # Отложенная отмена уже сообщила CANCELLED
                self._release(token)
            raise

        if self._active_token != token:
            # Отмена пришла, пока задание отправлялось
            logger.info('Job %s was cancelled during submission, cancelling on the service', ref.ref)
            try:
                result = await self._client.cancel(ref)
            finally:
                self._release(token)
            self._log_cancel(result)
            return JobCancelled(ref=ref.ref)

        self._job = ref
        self._set_state(JobState.POLLING, token, ref=ref.ref)
        poll_task = asyncio.ensure_future(self._wait_for_download_url(ref))
        self._poll_task = poll_task

        outcome: JobOutcome
        try:
            url = await poll_task
        except asyncio.CancelledError:
            if self._active_token != token:
                return JobCancelled(ref=ref.ref)
            # Внешняя отмена самой корутины start_print
            poll_task.cancel()
            self._finish(token, JobCancelled(ref=ref.ref))
            raise
        except TimeoutError:
            outcome = JobTimedOut(timeout_ms=self.timeout_ms)
        except ServerReportedFailure as e:
            # Текст ошибки сервиса передаётся пользователю как есть
            outcome = JobFailed(error=e.message, error_kind=e.code)
        except PrintError as e:
            logger.error('Polling job %s failed: %s %s', ref.ref, e, e.details)
            outcome = JobFailed(error=e.message, error_kind=e.code)
        else:
            outcome = JobReady(url=url)

        if self._active_token != token:
            logger.warning(
                'Discarding late %s result of cancelled job %s', outcome.kind, ref.ref
            )
            return JobCancelled(ref=ref.ref)
        return self._finish(token, outcome)

    async def _wait_for_download_url(self, ref: JobReference) -> str:
        # Страховка: отдельный зависший запрос не должен пережить общий дедлайн
        return await asyncio.wait_for(
            self._client.get_download_url(
                ref, timeout_ms=self.timeout_ms, interval_ms=self.interval_ms
            ),
            timeout=self.timeout_ms / 1000,
        )

    async def cancel_current_print(self) -> CancelResult:
        """
        Cancel the job in progress.

        Listeners get ``CANCELLED`` right away; the service is then asked to
        cancel the job and the slot returns to ``IDLE`` once it answers,
        whether or not the cancellation was accepted.

        Raises:
            NoJobInProgressError: If nothing is being submitted or polled.
        """
        if self._state not in (JobState.SUBMITTING, JobState.POLLING):
            logger.info('Cancel requested with no print in progress')
            raise NoJobInProgressError

        token = self._last_token
        ref = self._job
        self._active_token = None
        self._job = None
        poll_task, self._poll_task = self._poll_task, None
        if poll_task is not None and not poll_task.done():
            poll_task.cancel()

        ref_id = ref.ref if ref is not None else None
        self._set_state(
            JobState.CANCELLED, token, ref=ref_id, outcome=JobCancelled(ref=ref_id)
        )

        if ref is None:
            logger.info('Job #%d is still being submitted, cancellation deferred', token)
            return CancelResult(ref=None, accepted=False, deferred=True)

        try:
            result = await self._client.cancel(ref)
        finally:
            self._release(token)
        self._log_cancel(result)
        return result
