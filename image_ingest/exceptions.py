"""Error taxonomy for image ingestion.

Every failure that leaves the pipeline is an ``ImageProcessingError`` carrying a
displayable message, the failing operation and a context dict. Lower-level
errors (Pillow, OS, storage) are wrapped; only their message text is kept.
"""
import logging
from typing import Optional

logger = logging.getLogger("ingest.errors")


class StorageError(Exception):
    """Raised by blob stores when a put/delete cannot be completed."""

    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path


class ImageProcessingError(Exception):
    operation = "unknown"
    prefix = ""
    log_level = logging.ERROR
    # HTTP status when the error reaches the API; server-side failures override with 500
    status_code = 422

    def __init__(self, reason: str, context: Optional[dict] = None):
        super().__init__(f"{self.prefix}{reason}")
        self.reason = reason
        self.context = dict(context or {})
        logger.log(
            self.log_level,
            "Image processing failed [%s]: %s context=%s",
            self.operation,
            self.message,
            self.context,
        )

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self, debug: bool = False) -> dict:
        error = {
            "type": "image_processing_error",
            "operation": self.operation,
            "message": self.message,
        }
        if debug:
            error["context"] = self.context
        return {"success": False, "error": error}


class ValidationFailed(ImageProcessingError):
    operation = "validation"
    prefix = "Image validation failed: "
    log_level = logging.WARNING


class FileTooLarge(ValidationFailed):
    pass


class UndecodableImage(ValidationFailed):
    pass


class UnsupportedFormat(ValidationFailed):
    pass


class CompressionFailed(ImageProcessingError):
    operation = "compression"
    prefix = "Image compression failed: "


class RatioRejected(ImageProcessingError):
    operation = "aspect_ratio"
    log_level = logging.WARNING

    def __init__(
        self,
        reason: str,
        expected: float,
        actual: float,
        examples: tuple[str, ...] = (),
        context: Optional[dict] = None,
    ):
        self.expected = expected
        self.actual = actual
        self.examples = examples
        ctx = {"expected_ratio": expected, "actual_ratio": actual}
        ctx.update(context or {})
        super().__init__(reason, ctx)


class FileSystemError(ImageProcessingError):
    """Canonical write failed; nothing was stored."""

    operation = "filesystem"
    prefix = "File system error: "
    status_code = 500


class PartialWriteFailure(ImageProcessingError):
    """One copy of a dual write landed and the other did not."""

    operation = "filesystem"
    prefix = "Partial write failure: "
    status_code = 500

    def __init__(
        self,
        reason: str,
        written_path: str,
        failed_path: str,
        cleaned_up: bool,
        context: Optional[dict] = None,
    ):
        self.written_path = written_path
        self.failed_path = failed_path
        self.cleaned_up = cleaned_up
        ctx = {"written_path": written_path, "failed_path": failed_path, "cleaned_up": cleaned_up}
        ctx.update(context or {})
        super().__init__(reason, ctx)


class UnexpectedError(ImageProcessingError):
    operation = "unexpected"
    status_code = 500
