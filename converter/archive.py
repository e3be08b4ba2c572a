"""
Archive assembler - writes the output ZIP.

Entries are appended one at a time through a single ZipFile handle. Every
entry gets the same fixed timestamp, so identical inputs produce
byte-identical archives.
"""

import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Union

from converter.errors import ArchiveWriteError

logger = logging.getLogger(__name__)


# Earliest timestamp a ZIP entry can carry
ZIP_TIMESTAMP = (1980, 1, 1, 0, 0, 0)


@dataclass(frozen=True)
class ArchiveEntry:
    """A file to place in the archive."""
    path: str
    data: bytes
    kind: str = "label"  # "config" | "image" | "label"


def normalize_zip_path(path: str) -> str:
    """
    Validate an archive entry path and convert it to forward slashes.

    Raises:
        ArchiveWriteError: For empty, absolute, drive-prefixed or UNC paths,
            and for paths containing ".." components
    """
    if not path:
        raise ArchiveWriteError("ZIP entry path is empty")

    normalized = path.replace("\\", "/")
    if normalized.startswith("/"):
        raise ArchiveWriteError(f"Invalid ZIP entry path: {path}")
    if len(normalized) >= 2 and normalized[1] == ":" and normalized[0].isalpha():
        raise ArchiveWriteError(f"Invalid ZIP entry path: {path}")

    parts = [part for part in PurePosixPath(normalized).parts if part != "."]
    if not parts or ".." in parts:
        raise ArchiveWriteError(f"Invalid ZIP entry path: {path}")

    return "/".join(parts)


class ArchiveAssembler:
    """
    Serialized ZIP writer.

    Use as a context manager: the archive is finalized on normal exit and
    deleted if the block raises (including cancellation).
    """

    def __init__(self, output_path: Union[str, Path]):
        self.output_path = Path(output_path)
        self.file_count = 0
        self.bytes_written = 0
        self._zip: Optional[zipfile.ZipFile] = None
        self._names: set[str] = set()

    def __enter__(self) -> 'ArchiveAssembler':
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
        else:
            self.abort()
        return False

    def open(self) -> None:
        """Create the output file."""
        try:
            self._zip = zipfile.ZipFile(self.output_path, "w", compression=zipfile.ZIP_DEFLATED)
        except OSError as e:
            raise ArchiveWriteError(f"Failed to create output file '{self.output_path}': {e}") from e

    def write(self, entry: ArchiveEntry) -> str:
        """
        Append one entry.

        Returns:
            The normalized path the entry was stored under
        """
        if self._zip is None:
            raise ArchiveWriteError("Archive is not open")

        name = normalize_zip_path(entry.path)
        if name in self._names:
            raise ArchiveWriteError(f"Duplicate ZIP entry: {name}")

        info = zipfile.ZipInfo(name, date_time=ZIP_TIMESTAMP)
        info.compress_type = zipfile.ZIP_DEFLATED
        info.external_attr = 0o644 << 16

        try:
            self._zip.writestr(info, entry.data)
        except (OSError, ValueError, zipfile.BadZipFile) as e:
            raise ArchiveWriteError(f"Failed to write '{name}' to ZIP: {e}") from e

        self._names.add(name)
        self.file_count += 1
        self.bytes_written += len(entry.data)
        return name

    def close(self) -> None:
        """Finish the archive (writes the central directory)."""
        if self._zip is None:
            return
        zf, self._zip = self._zip, None
        try:
            zf.close()
        except (OSError, ValueError) as e:
            self._remove_output()
            raise ArchiveWriteError(f"Failed to finish ZIP: {e}") from e

    def abort(self) -> None:
        """Close the handle and delete the partial archive."""
        if self._zip is not None:
            zf, self._zip = self._zip, None
            try:
                zf.close()
            except (OSError, ValueError) as e:
                logger.debug(f"Error while closing partial archive: {e}")
        self._remove_output()

    def _remove_output(self) -> None:
        try:
            self.output_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not delete partial archive '{self.output_path}': {e}")
