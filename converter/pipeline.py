"""
Conversion orchestrator.

Runs a job through its phases in order:
    parsing -> downloading -> converting -> zipping

Progress events go to an asyncio.Queue owned by the caller. The job object is
the only writer of its counters; download workers report back with messages.
"""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

import httpx

from converter.archive import ArchiveAssembler, ArchiveEntry, normalize_zip_path
from converter.config import ConverterSettings
from converter.downloader import ImageFetcher
from converter.errors import ConversionCancelled, InputReadError, SchemaError
from converter.formats import Encoder, check_task_supported, get_encoder
from converter.models import ConvertResult, Dataset, ImageRecord, Phase, ProgressEvent
from converter.parser import NdjsonParser, ParsedDataset

logger = logging.getLogger(__name__)


# Give the event loop a turn every this many lines/images in CPU-bound phases
YIELD_INTERVAL = 256


@dataclass
class ConvertRequest:
    """Parameters of one conversion, as sent by the caller."""
    file_path: str
    format: str
    output_path: str
    include_images: bool = True


class ProgressReporter:
    """
    Sends ProgressEvents to the caller's channel.

    Phases only move forward and `current` never decreases within a phase.
    """

    def __init__(self, channel: Optional[asyncio.Queue] = None):
        self.channel = channel
        self.phase: Optional[Phase] = None
        self._current = 0

    def emit(self, phase: Phase, current: int, total: int, item: Optional[str] = None) -> None:
        if self.phase is not None and phase.order < self.phase.order:
            raise ValueError(f"Progress cannot move back from {self.phase.value} to {phase.value}")
        if phase != self.phase:
            logger.info(f"Phase: {phase.value}")
            self.phase = phase
            self._current = 0

        self._current = max(self._current, current)
        if self.channel is not None:
            self.channel.put_nowait(ProgressEvent(phase, self._current, total, item))


@dataclass
class JobCounters:
    """Per-job counters, written only by the orchestrator."""
    attempted_downloads: int = 0
    failed_downloads: int = 0
    bytes_written: int = 0
    images_written: int = 0
    warnings: list[str] = field(default_factory=list)


class ConversionJob:
    """
    One NDJSON -> archive conversion.

    run() returns a ConvertResult or raises a ConversionError. cancel() stops
    the job from any other task; run() then raises ConversionCancelled and the
    partial archive is removed.
    """

    def __init__(
        self,
        request: ConvertRequest,
        progress_channel: Optional[asyncio.Queue] = None,
        settings: Optional[ConverterSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.request = request
        self.settings = settings or ConverterSettings()
        self.reporter = ProgressReporter(progress_channel)
        self.counters = JobCounters()
        self.parsed: Optional[ParsedDataset] = None
        self.downloaded: dict[int, bytes] = {}  # image index -> bytes
        self._fetcher = ImageFetcher(self.settings, client)
        self._task: Optional[asyncio.Task] = None
        self._cancel_requested = False

    def cancel(self) -> None:
        """Request cancellation. Safe to call at any time."""
        self._cancel_requested = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def run(self) -> ConvertResult:
        if self._task is not None:
            raise RuntimeError("ConversionJob.run() can only be called once")

        self._task = asyncio.create_task(self._execute())
        if self._cancel_requested:
            self._task.cancel()

        try:
            return await self._task
        except asyncio.CancelledError:
            if self._cancel_requested:
                logger.info(f"Conversion of '{self.request.file_path}' cancelled")
                raise ConversionCancelled("Conversion cancelled") from None
            raise

    # ==================== Phases ====================

    async def _execute(self) -> ConvertResult:
        request = self.request

        # Unknown formats fail before the input is even opened
        encoder = get_encoder(request.format)

        self.parsed = await self._parse(request.file_path)
        dataset = self.parsed.dataset
        records = self.parsed.images

        # Pre-flight: no download starts for an impossible format/task pair
        check_task_supported(encoder, dataset.task)

        if request.include_images:
            await self._download(records)
            included = [r for r in records if r.index in self.downloaded]
        else:
            included = list(records)

        entries = await self._convert(encoder, dataset, records, included)
        file_count = await self._zip(entries)

        if request.include_images and records and not self.downloaded:
            self._warn("All image downloads failed. Check your network or CDN access.")

        result = ConvertResult(
            zip_path=str(Path(request.output_path)),
            file_count=file_count,
            image_count=self.counters.images_written,
            failed_downloads=self.counters.failed_downloads if request.include_images else None,
            download_total=len(records) if request.include_images else None,
            dropped_annotations=len(self.parsed.annotation_errors),
            warnings=self.parsed.warnings + self.counters.warnings,
        )
        logger.info(
            f"Wrote {result.file_count} files ({result.image_count} images) to {result.zip_path}"
        )
        return result

    async def _parse(self, file_path: str) -> ParsedDataset:
        parser = NdjsonParser()

        try:
            handle = open(file_path, "rb")
        except OSError as e:
            raise InputReadError(f"Failed to read file '{file_path}': {e}") from e

        with handle:
            try:
                for raw in handle:
                    record = parser.feed(raw)
                    self.reporter.emit(
                        Phase.PARSING, parser.line_count, parser.line_count,
                        record.file if record else None,
                    )
                    if parser.line_count % YIELD_INTERVAL == 0:
                        await asyncio.sleep(0)
            except OSError as e:
                raise InputReadError(f"Failed to read file '{file_path}': {e}") from e

        parsed = parser.finish()
        logger.info(
            f"Parsed {len(parsed.images)} images ({parsed.dataset.task.value}) "
            f"from {parsed.line_count} lines"
        )
        if parsed.annotation_errors:
            logger.warning(f"Dropped {len(parsed.annotation_errors)} malformed annotations")
        return parsed

    async def _download(self, records: Sequence[ImageRecord]) -> None:
        total = len(records)
        counters = self.counters
        self.reporter.emit(Phase.DOWNLOADING, 0, total)

        async with aclosing(self._fetcher.fetch_all(records)) as outcomes:
            async for outcome in outcomes:
                counters.attempted_downloads += 1
                if outcome.ok:
                    self.downloaded[outcome.index] = outcome.data
                else:
                    counters.failed_downloads += 1
                self.reporter.emit(Phase.DOWNLOADING, counters.attempted_downloads, total, outcome.file)

        logger.info(
            f"Downloaded {len(self.downloaded)}/{total} images "
            f"({counters.failed_downloads} failed)"
        )

    async def _convert(
        self,
        encoder: Encoder,
        dataset: Dataset,
        records: Sequence[ImageRecord],
        included: Sequence[ImageRecord],
    ) -> list[ArchiveEntry]:
        total = len(records)
        self.reporter.emit(Phase.CONVERTING, 0, total)

        entries = [
            ArchiveEntry(path, data, kind="config")
            for path, data in encoder.encode_config(dataset, included).items()
        ]
        owners = {normalize_zip_path(entry.path): "<dataset>" for entry in entries}
        included_ids = {r.index for r in included}

        for position, record in enumerate(records, start=1):
            if record.index in included_ids:
                for entry in self._record_entries(encoder, dataset, record):
                    path = normalize_zip_path(entry.path)
                    if path in owners:
                        raise SchemaError(
                            record.line, "file",
                            f"'{record.file}' maps to archive path '{entry.path}', "
                            f"already used by '{owners[path]}'"
                        )
                    owners[path] = record.file
                    entries.append(entry)
            self.reporter.emit(Phase.CONVERTING, position, total, record.file)
            if position % YIELD_INTERVAL == 0:
                await asyncio.sleep(0)

        return entries

    def _record_entries(self, encoder: Encoder, dataset: Dataset, record: ImageRecord) -> list[ArchiveEntry]:
        entries = []

        if self.request.include_images:
            image_path = encoder.image_path(dataset, record)
            if image_path is None:
                self._warn(f"'{record.file}' has no class label and was left out")
            else:
                entries.append(ArchiveEntry(image_path, self.downloaded[record.index], kind="image"))

        label_path = encoder.label_path(dataset, record)
        if label_path is not None:
            label = encoder.encode_label(dataset, record)
            entries.append(ArchiveEntry(label_path, label or b"", kind="label"))

        return entries

    async def _zip(self, entries: Sequence[ArchiveEntry]) -> int:
        total = len(entries)
        counters = self.counters
        self.reporter.emit(Phase.ZIPPING, 0, total)

        with ArchiveAssembler(self.request.output_path) as archive:
            for position, entry in enumerate(entries, start=1):
                name = archive.write(entry)
                if entry.kind == "image":
                    counters.images_written += 1
                counters.bytes_written = archive.bytes_written
                self.reporter.emit(Phase.ZIPPING, position, total, name)
                await asyncio.sleep(0)

        return archive.file_count

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.counters.warnings.append(message)


async def convert_ndjson(
    file_path: str,
    format: str,
    output_path: str,
    include_images: bool = True,
    progress_channel: Optional[asyncio.Queue] = None,
    settings: Optional[ConverterSettings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> ConvertResult:
    """
    Convert an NDJSON export into a dataset archive.

    Args:
        file_path: Path to the NDJSON export
        format: Output format id (e.g. "yolo", "coco", "pascal_voc")
        output_path: Where to write the ZIP archive
        include_images: Download images and put them in the archive
        progress_channel: Optional queue receiving ProgressEvents
        settings: Download tunables (defaults come from the environment)
        client: Optional httpx client to download with

    Returns:
        ConvertResult describing the archive
    """
    job = ConversionJob(
        ConvertRequest(file_path, format, output_path, include_images),
        progress_channel=progress_channel,
        settings=settings,
        client=client,
    )
    return await job.run()
