"""
Shared pieces of the format encoders: the format enumeration, the encoder
interface and small text helpers.
"""

from enum import Enum
from typing import Iterable, Optional, Protocol, Sequence

from converter.errors import UnknownFormatError
from converter.models import Dataset, ImageRecord, Split, Task


ALL_TASKS = frozenset(Task)


class ExportFormat(str, Enum):
    """Output formats with a registered encoder."""
    YOLO = "yolo"
    YOLOV5 = "yolov5"
    YOLO_DARKNET = "yolo_darknet"
    COCO = "coco"
    PASCAL_VOC = "pascal_voc"
    CREATEML = "createml"

    @classmethod
    def parse(cls, value: str) -> 'ExportFormat':
        """Look up a format id, case-insensitive, aliases included."""
        key = (value or "").strip().lower()
        if key in FORMAT_ALIASES:
            return FORMAT_ALIASES[key]
        try:
            return cls(key)
        except ValueError:
            raise UnknownFormatError(value) from None


FORMAT_ALIASES = {
    "voc": ExportFormat.PASCAL_VOC,
    "yolov7": ExportFormat.YOLOV5,
    "darknet": ExportFormat.YOLO_DARKNET,
}


class Encoder(Protocol):
    """
    Capability set every output format implements.

    Encoders are pure: no network or file I/O, so they can run for many
    images in parallel.
    """
    format: ExportFormat

    def required_task_types(self) -> frozenset[Task]:
        """Tasks this format can represent."""
        ...

    def image_path(self, dataset: Dataset, record: ImageRecord) -> Optional[str]:
        """Archive path of the image file, or None to leave the image out."""
        ...

    def label_path(self, dataset: Dataset, record: ImageRecord) -> Optional[str]:
        """Archive path of the per-image label file, or None if there is none."""
        ...

    def encode_label(self, dataset: Dataset, record: ImageRecord) -> Optional[bytes]:
        """Per-image label file content, or None if the format has none."""
        ...

    def encode_config(
        self,
        dataset: Dataset,
        records: Sequence[ImageRecord]
    ) -> dict[str, bytes]:
        """Dataset-level files (class lists, configs, whole-dataset JSON)."""
        ...


def fmt(value: float) -> str:
    """Format a normalized coordinate with 6 decimal places."""
    return f"{value:.6f}"


def text_lines(lines: Iterable[str]) -> bytes:
    """Join lines into a text file, one newline after each line."""
    return "".join(f"{line}\n" for line in lines).encode("utf-8")


def group_by_split(records: Sequence[ImageRecord]) -> dict[Split, list[ImageRecord]]:
    """Records per split, splits in train/valid/test order, records in input order."""
    groups: dict[Split, list[ImageRecord]] = {split: [] for split in Split}
    for record in records:
        groups[record.split].append(record)
    return groups


def num_keypoints(dataset: Dataset, records: Sequence[ImageRecord]) -> int:
    """Keypoints per instance, from the header or the widest instance."""
    if dataset.kpt_shape:
        return dataset.kpt_shape[0]
    widest = 0
    for record in records:
        for ann in record.annotations:
            widest = max(widest, len(getattr(ann, "points", ())))
    return widest
