"""Tests for print error types."""

import pytest

from shared.errors import (
    InvalidArgumentError,
    JobInProgressError,
    NoJobInProgressError,
    PrintError,
    PrintTimeoutError,
    SubmissionError,
    UnsupportedLayerError,
)


class TestErrors:
    def test_base_error_fields(self):
        err = PrintError('Print failed', 'stack trace')
        assert str(err) == 'Print failed'
        assert err.details == 'stack trace'
        assert err.code == 'PRINT_ERROR'

    @pytest.mark.parametrize(
        ('error', 'builtin'),
        [
            (InvalidArgumentError('bad scale'), ValueError),
            (PrintTimeoutError('too slow'), TimeoutError),
        ],
    )
    def test_builtin_compatibility(self, error, builtin):
        assert isinstance(error, builtin)
        assert isinstance(error, PrintError)

    def test_unsupported_layer_message(self):
        err = UnsupportedLayerError('kml', 'tracks')
        assert err.message == "Layer type 'kml' (tracks) cannot be printed"
        assert UnsupportedLayerError('kml').message == "Layer type 'kml' cannot be printed"

    def test_submission_error_status(self):
        assert SubmissionError('rejected', status=503).status == 503

    def test_slot_errors_have_default_messages(self):
        assert NoJobInProgressError().message == 'No print in progress'
        assert JobInProgressError().message == 'A print job is already in progress'
