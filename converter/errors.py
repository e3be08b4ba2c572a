"""
Error taxonomy for the conversion pipeline.

Fatal errors abort the whole job. Recoverable errors are absorbed by the
pipeline and only show up in the result counters.
"""

from typing import Optional


class ConversionError(Exception):
    """Base class for every error raised by the converter."""


class InputReadError(ConversionError):
    """The NDJSON input could not be opened or read."""


class SchemaError(ConversionError):
    """An NDJSON line violates the input schema."""

    def __init__(self, line: Optional[int], field: Optional[str], reason: str):
        self.line = line
        self.field = field
        self.reason = reason
        super().__init__(self._format())

    def _format(self) -> str:
        where = f"line {self.line}" if self.line is not None else "input"
        if self.field:
            return f"{where}: {self.field}: {self.reason}"
        return f"{where}: {self.reason}"


class UnknownFormatError(ConversionError):
    """No encoder is registered for the requested format id."""

    def __init__(self, format_id: str):
        self.format_id = format_id
        super().__init__(f"Unknown format: {format_id}")


class UnsupportedTaskError(ConversionError):
    """The chosen format cannot represent the dataset's task type."""

    def __init__(self, format_id: str, task: str):
        self.format_id = format_id
        self.task = task
        super().__init__(f"Format '{format_id}' does not support task '{task}'")


class ArchiveWriteError(ConversionError):
    """Writing the output archive failed."""


class DownloadError(ConversionError):
    """A single image could not be downloaded. Recoverable."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"{url or '<empty url>'}: {reason}")


class AnnotationError(ConversionError):
    """A single annotation has malformed geometry. Recoverable."""

    def __init__(self, line: Optional[int], reason: str):
        self.line = line
        self.reason = reason
        super().__init__(f"line {line}: {reason}" if line is not None else reason)


class ConversionCancelled(Exception):
    """The caller cancelled the job. Terminal, but not an error."""
