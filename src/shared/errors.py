"""Error types for the print-job lifecycle (UI-agnostic)."""


class PrintError(Exception):
    """Base exception for print failures.

    Args:
        message: Human-readable message shown to the user.
        details: Optional technical details for logs.
    """

    code = 'PRINT_ERROR'

    def __init__(self, message: str, details: str = '') -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidArgumentError(PrintError, ValueError):
    """Raised when extent or page inputs are not finite or not positive."""

    code = 'INVALID_ARGUMENT'


class UnsupportedLayerError(PrintError):
    """Raised when the encoder has no serialization rule for a layer."""

    code = 'UNSUPPORTED_LAYER'

    def __init__(self, layer_type: str, layer_name: str | None = None) -> None:
        label = f'{layer_type!r} ({layer_name})' if layer_name else repr(layer_type)
        super().__init__(f'Layer type {label} cannot be printed')
        self.layer_type = layer_type
        self.layer_name = layer_name


class SubmissionError(PrintError):
    """Raised when the print service rejects or garbles a job submission."""

    code = 'SUBMISSION_ERROR'

    def __init__(self, message: str, details: str = '', status: int | None = None) -> None:
        super().__init__(message, details)
        self.status = status


class PollError(PrintError):
    """Transport failure while polling job status; retried until the deadline."""

    code = 'POLL_ERROR'


class PrintTimeoutError(PrintError, TimeoutError):
    """Raised when the job did not finish before the deadline."""

    code = 'TIMEOUT'


class ServerReportedFailure(PrintError):
    """The print service reported the job itself as failed."""

    code = 'SERVER_REPORTED_FAILURE'


class NoJobInProgressError(PrintError):
    code = 'NO_JOB_IN_PROGRESS'

    def __init__(self, message: str = 'No print in progress') -> None:
        super().__init__(message)


class JobInProgressError(PrintError):
    code = 'JOB_IN_PROGRESS'

    def __init__(self, message: str = 'A print job is already in progress') -> None:
        super().__init__(message)
