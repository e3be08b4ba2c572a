"""
Streaming NDJSON ingestion.

Reads an NDJSON export one line at a time and builds the in-memory dataset:
- one "dataset" header line (task, class names)
- any number of "image" lines, each with its annotations

Schema violations abort ingestion with a line-numbered SchemaError. Malformed
geometry on a single annotation only drops that annotation.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, ValidationError

from converter.archive import normalize_zip_path
from converter.errors import AnnotationError, ArchiveWriteError, SchemaError
from converter.geometry import clamp_points, clamp_unit, keypoints_bbox, validate_polygon
from converter.models import (
    Annotation, BBox, ClassLabel, Dataset, ImageRecord, Keypoints, Polygon, Split, Task,
)

logger = logging.getLogger(__name__)


# Annotation list field per task; pose also accepts "keypoints"
ANNOTATION_FIELDS = {
    Task.DETECT: ("bboxes",),
    Task.SEGMENT: ("segments",),
    Task.POSE: ("pose", "keypoints"),
    Task.CLASSIFY: ("classification",),
}


class DatasetHeader(BaseModel):
    """Schema of the "dataset" line."""
    model_config = ConfigDict(extra="ignore")

    task: Task = Task.DETECT
    name: Optional[str] = ""
    description: Optional[str] = ""
    url: Optional[str] = ""
    version: int = 0
    class_names: dict[str, str] = Field(default_factory=dict)
    kpt_shape: Optional[list[int]] = None


class ImageLine(BaseModel):
    """Schema of an "image" line."""
    model_config = ConfigDict(extra="ignore")

    file: str = Field(min_length=1)
    url: Optional[str] = ""
    width: PositiveInt
    height: PositiveInt
    split: Optional[str] = "train"
    annotations: Optional[dict[str, Any]] = None


@dataclass
class ParsedDataset:
    """Result of ingesting a whole NDJSON export."""
    dataset: Dataset
    images: list[ImageRecord]
    annotation_errors: list[AnnotationError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    line_count: int = 0


def _schema_error(line_no: int, exc: ValidationError) -> SchemaError:
    """Convert the first pydantic error into a SchemaError."""
    err = exc.errors()[0]
    field_name = ".".join(str(part) for part in err.get("loc", ())) or None
    return SchemaError(line_no, field_name, err.get("msg", str(exc)))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class NdjsonParser:
    """
    Incremental NDJSON parser.

    Call feed() for every line of the input, then finish() to get the
    ParsedDataset. Only the accumulated image records are kept in memory.
    """

    def __init__(self):
        self.dataset: Optional[Dataset] = None
        self.images: list[ImageRecord] = []
        self.annotation_errors: list[AnnotationError] = []
        self.warnings: list[str] = []
        self.line_count = 0
        self._header_line: Optional[int] = None
        self._files: dict[str, int] = {}  # normalized file name -> line number
        self._pose_kpts: Optional[int] = None  # keypoints per instance when the header has no kpt_shape

    # ==================== Line handling ====================

    def feed(self, raw: Union[str, bytes]) -> Optional[ImageRecord]:
        """
        Parse one line.

        Args:
            raw: Line content, with or without the trailing newline

        Returns:
            The ImageRecord built from the line, or None for other lines

        Raises:
            SchemaError: On malformed JSON or any schema violation
        """
        self.line_count += 1
        line_no = self.line_count

        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise SchemaError(line_no, None, f"invalid UTF-8: {e}") from e

        text = raw.lstrip("\ufeff").strip()
        if not text:
            return None

        try:
            value = json.loads(text)
        except json.JSONDecodeError as e:
            raise SchemaError(line_no, None, f"malformed JSON: {e.msg} (column {e.colno})") from e

        if not isinstance(value, dict):
            raise SchemaError(line_no, None, "expected a JSON object")

        record_type = value.get("type")
        if record_type == "dataset":
            self._read_header(value, line_no)
            return None
        if record_type == "image":
            return self._read_image(value, line_no)

        logger.debug(f"Ignoring line {line_no} with type {record_type!r}")
        return None

    def finish(self) -> ParsedDataset:
        """Finish ingestion and return the parsed dataset."""
        if self.dataset is None:
            raise SchemaError(None, None, "missing dataset header")
        return ParsedDataset(
            dataset=self.dataset,
            images=self.images,
            annotation_errors=self.annotation_errors,
            warnings=self.warnings,
            line_count=self.line_count,
        )

    # ==================== Records ====================

    def _read_header(self, value: dict, line_no: int) -> None:
        if self.dataset is not None:
            raise SchemaError(
                line_no, "type",
                f"duplicate dataset header (first header on line {self._header_line})"
            )

        try:
            header = DatasetHeader.model_validate(value)
        except ValidationError as e:
            raise _schema_error(line_no, e) from e

        class_names: dict[int, str] = {}
        for key, name in header.class_names.items():
            try:
                class_id = int(key)
            except ValueError:
                raise SchemaError(line_no, f"class_names.{key}", "class id must be an integer") from None
            if class_id < 0:
                raise SchemaError(line_no, f"class_names.{key}", "class id must be non-negative")
            if class_id in class_names:
                raise SchemaError(line_no, f"class_names.{key}", f"duplicate class id {class_id}")
            class_names[class_id] = name

        kpt_shape = None
        if header.kpt_shape:
            num_kpts = header.kpt_shape[0]
            dims = header.kpt_shape[1] if len(header.kpt_shape) > 1 else 2
            if num_kpts < 0 or dims not in (2, 3):
                raise SchemaError(line_no, "kpt_shape", f"invalid keypoint shape {header.kpt_shape}")
            kpt_shape = (num_kpts, dims)

        self.dataset = Dataset(
            task=header.task,
            name=header.name or "",
            class_names=class_names,
            description=header.description or "",
            url=header.url or "",
            version=header.version,
            kpt_shape=kpt_shape,
        )
        self._header_line = line_no

    def _read_image(self, value: dict, line_no: int) -> ImageRecord:
        if self.dataset is None:
            raise SchemaError(line_no, "type", "image record before dataset header")

        try:
            entry = ImageLine.model_validate(value)
        except ValidationError as e:
            raise _schema_error(line_no, e) from e

        try:
            file_key = normalize_zip_path(entry.file)
        except ArchiveWriteError:
            raise SchemaError(
                line_no, "file", f"unsafe file name '{entry.file}' (absolute or contains '..')"
            ) from None

        if file_key in self._files:
            raise SchemaError(
                line_no, "file",
                f"duplicate image file name '{entry.file}' (first used on line {self._files[file_key]})"
            )

        annotations = self._read_annotations(entry.annotations or {}, line_no, entry.file)

        record = ImageRecord(
            index=len(self.images),
            file=entry.file,
            url=entry.url or "",
            width=entry.width,
            height=entry.height,
            split=Split.parse(entry.split),
            annotations=tuple(annotations),
            line=line_no,
        )
        self._files[file_key] = line_no
        self.images.append(record)
        return record

    # ==================== Annotations ====================

    def _read_annotations(self, raw: dict, line_no: int, file: str) -> list[Annotation]:
        task = self.dataset.task

        field_name, rows = None, None
        for candidate in ANNOTATION_FIELDS[task]:
            if raw.get(candidate) is not None:
                field_name, rows = candidate, raw[candidate]
                break

        if rows is None:
            return []

        if task == Task.CLASSIFY:
            return self._read_classification(rows, line_no, file)

        if not isinstance(rows, list):
            raise SchemaError(line_no, f"annotations.{field_name}", "expected a list")

        parse_row = {
            Task.DETECT: self._parse_bbox,
            Task.SEGMENT: self._parse_polygon,
            Task.POSE: self._parse_pose,
        }[task]

        annotations = []
        for i, row in enumerate(rows):
            where = f"annotations.{field_name}[{i}]"
            try:
                if not isinstance(row, list) or not row:
                    raise AnnotationError(line_no, f"{where}: expected a non-empty array")
                class_id = self._class_id(row[0], line_no, where)
                coords = row[1:]
                if not all(_is_number(v) for v in coords):
                    raise AnnotationError(line_no, f"{where}: coordinates must be numbers")
                annotations.append(parse_row(class_id, coords, line_no, where))
            except AnnotationError as e:
                logger.warning(f"Dropping annotation on '{file}': {e}")
                self.annotation_errors.append(e)
        return annotations

    def _class_id(self, raw: Any, line_no: int, where: str) -> int:
        if not _is_number(raw) or (isinstance(raw, float) and not raw.is_integer()):
            raise SchemaError(line_no, where, f"class id must be an integer, got {raw!r}")
        class_id = int(raw)
        if class_id not in self.dataset.class_names:
            raise SchemaError(line_no, where, f"unknown class id {class_id}")
        return class_id

    def _parse_bbox(self, class_id: int, coords: list, line_no: int, where: str) -> BBox:
        if len(coords) != 4:
            raise AnnotationError(line_no, f"{where}: bounding box needs 4 values, got {len(coords)}")
        cx, cy, w, h = (clamp_unit(v) for v in coords)
        return BBox(class_id=class_id, cx=cx, cy=cy, w=w, h=h)

    def _parse_polygon(self, class_id: int, coords: list, line_no: int, where: str) -> Polygon:
        if len(coords) % 2 != 0:
            raise AnnotationError(line_no, f"{where}: odd number of polygon coordinates ({len(coords)})")
        points = [(coords[i], coords[i + 1]) for i in range(0, len(coords), 2)]
        is_valid, message = validate_polygon(points)
        if not is_valid:
            raise AnnotationError(line_no, f"{where}: {message}")
        return Polygon(class_id=class_id, points=tuple(clamp_points(points)))

    def _parse_pose(self, class_id: int, coords: list, line_no: int, where: str) -> Keypoints:
        if len(coords) < 4:
            raise AnnotationError(line_no, f"{where}: pose needs a bounding box, got {len(coords)} values")
        box, values = coords[:4], coords[4:]

        if self.dataset.kpt_shape:
            num_kpts, dims = self.dataset.kpt_shape
        else:
            # Without a header shape keypoints are (x, y) and the first row fixes the count
            num_kpts, dims = self._pose_kpts, 2
        if len(values) % dims != 0:
            raise AnnotationError(
                line_no, f"{where}: {len(values)} keypoint values do not split into {dims}-tuples"
            )
        if num_kpts is not None and len(values) // dims != num_kpts:
            raise AnnotationError(
                line_no, f"{where}: expected {num_kpts} keypoints, got {len(values) // dims}"
            )

        points = []
        for i in range(0, len(values), dims):
            x, y = clamp_unit(values[i]), clamp_unit(values[i + 1])
            if dims == 3:
                visibility = min(2, max(0, int(round(values[i + 2]))))
            else:
                visibility = 2 if values[i] > 0 or values[i + 1] > 0 else 0
            points.append((x, y, visibility))

        cx, cy, w, h = (clamp_unit(v) for v in box)
        if w == 0 and h == 0 and points:
            cx, cy, w, h = keypoints_bbox(points)
        if self._pose_kpts is None:
            self._pose_kpts = len(points)
        return Keypoints(class_id=class_id, cx=cx, cy=cy, w=w, h=h, points=tuple(points))

    def _read_classification(self, raw: Any, line_no: int, file: str) -> list[Annotation]:
        values = raw if isinstance(raw, list) else [raw]
        labels = [
            ClassLabel(self._class_id(v, line_no, f"annotations.classification[{i}]"))
            for i, v in enumerate(values)
        ]
        if len(labels) > 1:
            message = (
                f"'{file}' has {len(labels)} class labels; keeping the last one "
                f"({self.dataset.class_name(labels[-1].class_id)})"
            )
            logger.warning(message)
            self.warnings.append(message)
        return labels[-1:]


def parse_ndjson(lines: Iterable[Union[str, bytes]]) -> ParsedDataset:
    """
    Parse a complete NDJSON export.

    Args:
        lines: Iterable of lines (an open file works)

    Returns:
        ParsedDataset with the header, image records and dropped annotations
    """
    parser = NdjsonParser()
    for line in lines:
        parser.feed(line)
    return parser.finish()
