"""
Tests for the error taxonomy: HTTP status, log level and the JSON body.
"""
import logging

import pytest

from image_ingest.exceptions import (
    CompressionFailed,
    FileSystemError,
    FileTooLarge,
    PartialWriteFailure,
    RatioRejected,
    UnexpectedError,
    ValidationFailed,
)


def make_ratio_rejected():
    return RatioRejected("Mobile images must have 4:5 aspect ratio", expected=0.8, actual=1.0)


def make_partial_write():
    return PartialWriteFailure("mirror down", written_path="a.jpg", failed_path="a.jpg", cleaned_up=True)


class TestStatusCodes:
    @pytest.mark.parametrize(
        "factory",
        [
            lambda: FileSystemError("disk full"),
            make_partial_write,
            lambda: UnexpectedError("boom"),
        ],
    )
    def test_server_side_failures_are_500(self, factory):
        assert factory().status_code == 500

    @pytest.mark.parametrize(
        "factory",
        [
            lambda: ValidationFailed("bad device"),
            lambda: FileTooLarge("too big"),
            lambda: CompressionFailed("cannot encode"),
            make_ratio_rejected,
        ],
    )
    def test_rejected_input_is_422(self, factory):
        assert factory().status_code == 422


class TestLogLevels:
    def test_rejections_log_warning(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="ingest.errors"):
            make_ratio_rejected()
            ValidationFailed("Invalid device type: tablet")
            FileTooLarge("too big")
        assert [r.levelno for r in caplog.records] == [logging.WARNING] * 3

    def test_failures_log_error(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="ingest.errors"):
            CompressionFailed("cannot encode")
            UnexpectedError("boom")
            make_partial_write()
        assert [r.levelno for r in caplog.records] == [logging.ERROR] * 3


def test_to_dict_hides_context_unless_debug():
    err = FileSystemError("disk full", {"path": "images/a.jpg"})
    assert err.to_dict() == {
        "success": False,
        "error": {
            "type": "image_processing_error",
            "operation": "filesystem",
            "message": err.message,
        },
    }
    assert err.to_dict(debug=True)["error"]["context"] == {"path": "images/a.jpg"}
