from __future__ import annotations

import asyncio
import logging
import ssl
from typing import TYPE_CHECKING
from urllib.parse import quote, urljoin

import aiohttp
import certifi
from pydantic import ValidationError

from domain.models import CancelResult, JobReference, JobStatus
from shared.constants import (
    HTTP_ERROR_BODY_PREVIEW_LEN,
    HTTP_OK,
    HTTP_TIMEOUT_DEFAULT,
    POLL_ERROR_BACKOFF_FACTOR,
    POLL_INTERVAL_MS_DEFAULT,
    POLL_TIMEOUT_MS_DEFAULT,
    PRINT_CANCEL_PATH,
    PRINT_DOWNLOAD_PATH,
    PRINT_REPORT_PATH,
    PRINT_STATUS_PATH,
)
from shared.errors import (
    PollError,
    PrintTimeoutError,
    ServerReportedFailure,
    SubmissionError,
)

if TYPE_CHECKING:
    from types import TracebackType

    from domain.models import PrintSpec

logger = logging.getLogger(__name__)


def make_http_session(timeout_s: float = HTTP_TIMEOUT_DEFAULT) -> aiohttp.ClientSession:
    # SSL-контекст с сертификатами из certifi
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context)
    timeout = aiohttp.ClientTimeout(total=timeout_s)
    return aiohttp.ClientSession(connector=connector, timeout=timeout)


class ReportClient:
    """
    Client for the MapFish Print v3 report API.

    Wraps the wire protocol only: submit a spec, poll a job, cancel a job.
    It keeps no job state; the caller owns the :class:`JobReference`.

    Usage:
        async with ReportClient(url) as client:
            ref = await client.submit(spec)
            download_url = await client.get_download_url(ref, timeout_ms=30000)
    """

    def __init__(
        self,
        service_url: str,
        session: aiohttp.ClientSession | None = None,
        *,
        request_timeout_s: float = HTTP_TIMEOUT_DEFAULT,
        cancel_path: str = PRINT_CANCEL_PATH,
    ) -> None:
        self.service_url = service_url.rstrip('/')
        self.cancel_path = cancel_path.lstrip('/')
        self._session = session
        self._owns_session = session is None
        self._request_timeout_s = request_timeout_s
        self._timeout = aiohttp.ClientTimeout(total=request_timeout_s)

    async def __aenter__(self) -> ReportClient:
        self._ensure_session()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = make_http_session(self._request_timeout_s)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f'{self.service_url}/{path}'

    def _resolve(self, url: str) -> str:
        # Сервис обычно отдаёт пути относительно хоста (/print/status/...)
        return urljoin(f'{self.service_url}/', url)

    def status_url(self, ref: JobReference) -> str:
        if ref.status_url:
            return self._resolve(ref.status_url)
        return self._url(PRINT_STATUS_PATH.format(ref=quote(ref.ref, safe='')))

    def download_url(self, ref: JobReference, status: JobStatus | None = None) -> str:
        if status is not None and status.download_url:
            return self._resolve(status.download_url)
        if ref.download_url:
            return self._resolve(ref.download_url)
        return self._url(PRINT_DOWNLOAD_PATH.format(ref=quote(ref.ref, safe='')))

    # ------------------------------------------------------------------
    # Protocol operations
    # ------------------------------------------------------------------

    async def submit(self, spec: PrintSpec) -> JobReference:
        """
        POST the print request to ``report.{format}``.

        Raises:
            SubmissionError: On transport failure, non-200 status or a
                response without a job reference.
        """
        session = self._ensure_session()
        url = self._url(PRINT_REPORT_PATH.format(format=spec.format))
        logger.info('Submitting print job to %s (layout=%r)', url, spec.layout)
        try:
            async with session.post(url, json=spec.to_dict(), timeout=self._timeout) as resp:
                sc = resp.status
                if sc != HTTP_OK:
                    body = await resp.text()
                    msg = f'Print service rejected the job (HTTP {sc})'
                    raise SubmissionError(
                        msg, body[:HTTP_ERROR_BODY_PREVIEW_LEN], status=sc
                    )
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError) as e:
            msg = f'Print service is unreachable: {e}'
            raise SubmissionError(msg, repr(e)) from e
        except ValueError as e:
            msg = 'Print service returned a malformed response'
            raise SubmissionError(msg, str(e), status=HTTP_OK) from e

        try:
            ref = JobReference.model_validate(payload)
        except ValidationError as e:
            msg = 'Print service response has no job reference'
            raise SubmissionError(msg, str(e), status=HTTP_OK) from e
        logger.info('Print job submitted: ref=%s', ref.ref)
        return ref

    async def poll(self, ref: JobReference) -> JobStatus:
        """
        GET the job status once. A pending job is not an error.

        Raises:
            PollError: On transport failure, non-200 status or malformed JSON.
        """
        session = self._ensure_session()
        url = self.status_url(ref)
        try:
            async with session.get(url, timeout=self._timeout) as resp:
                sc = resp.status
                if sc != HTTP_OK:
                    body = await resp.text()
                    msg = f'Status request for {ref.ref} failed (HTTP {sc})'
                    raise PollError(msg, body[:HTTP_ERROR_BODY_PREVIEW_LEN])
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            msg = f'Status request for {ref.ref} failed: {e}'
            raise PollError(msg, repr(e)) from e

        try:
            return JobStatus.model_validate(payload)
        except ValidationError as e:
            msg = f'Malformed status for {ref.ref}'
            raise PollError(msg, str(e)) from e

    async def cancel(self, ref: JobReference) -> CancelResult:
        """
        Ask the service to cancel the job.

        Never raises: anything but HTTP 200 means the cancellation was
        not accepted, and the job may still complete.
        """
        session = self._ensure_session()
        url = self._url(self.cancel_path.format(ref=quote(ref.ref, safe='')))
        try:
            async with session.delete(url, timeout=self._timeout) as resp:
                sc = resp.status
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.warning('Cancel request for %s failed: %s', ref.ref, e)
            return CancelResult(ref=ref.ref, accepted=False)
        return CancelResult(ref=ref.ref, accepted=sc == HTTP_OK, status=sc)

    async def get_download_url(
        self,
        ref: JobReference,
        timeout_ms: int = POLL_TIMEOUT_MS_DEFAULT,
        interval_ms: int = POLL_INTERVAL_MS_DEFAULT,
    ) -> str:
        """
        Poll until the job is done and return its download URL.

        ``PollError`` is retried (with backoff after consecutive failures)
        but never past the overall deadline.

        Raises:
            ServerReportedFailure: The service reported the job as failed.
            PrintTimeoutError: The job was not done before the deadline.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000
        interval = interval_ms / 1000
        consecutive_errors = 0
        last_error: PollError | None = None
        attempt = 0

        def _timeout() -> PrintTimeoutError:
            msg = f'Print duration exceeded ({timeout_ms} ms)'
            details = f'last poll error: {last_error}' if last_error else ''
            return PrintTimeoutError(msg, details)

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise _timeout()
            attempt += 1
            try:
                status = await asyncio.wait_for(self.poll(ref), timeout=remaining)
            except PollError as e:
                consecutive_errors += 1
                last_error = e
                logger.warning(
                    'Poll #%d for %s failed (%s), retrying', attempt, ref.ref, e
                )
                delay = interval * POLL_ERROR_BACKOFF_FACTOR ** (consecutive_errors - 1)
            except TimeoutError:
                raise _timeout() from None
            else:
                consecutive_errors = 0
                logger.debug(
                    'Poll #%d for %s: done=%s status=%s',
                    attempt,
                    ref.ref,
                    status.done,
                    status.status,
                )
                if status.failed:
                    msg = status.error or f'Print job ended with status {status.status!r}'
                    raise ServerReportedFailure(msg)
                if status.done:
                    return self.download_url(ref, status)
                delay = interval

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise _timeout()
            await asyncio.sleep(min(delay, remaining))
