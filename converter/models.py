"""
Core data models for the NDJSON converter.

Dataclasses for the in-memory dataset built during ingestion. Everything here
is created once per job and never mutated afterwards.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class Task(str, Enum):
    """Annotation task of a dataset."""
    DETECT = "detect"
    SEGMENT = "segment"
    POSE = "pose"
    CLASSIFY = "classify"


class Split(str, Enum):
    """Dataset partition, also the top-level archive directory."""
    TRAIN = "train"
    VALID = "valid"
    TEST = "test"

    @classmethod
    def parse(cls, value: Optional[str]) -> 'Split':
        """Map a raw split name to a Split. Unknown values fall back to train."""
        if value is None:
            return cls.TRAIN
        value = value.strip().lower()
        if value == "val":
            return cls.VALID
        try:
            return cls(value)
        except ValueError:
            return cls.TRAIN


class Phase(str, Enum):
    """Pipeline phases, in the order they run."""
    PARSING = "parsing"
    DOWNLOADING = "downloading"
    CONVERTING = "converting"
    ZIPPING = "zipping"

    @property
    def order(self) -> int:
        return list(Phase).index(self)


@dataclass(frozen=True)
class BBox:
    """Bounding box, center format, normalized 0-1."""
    class_id: int
    cx: float
    cy: float
    w: float
    h: float


@dataclass(frozen=True)
class Polygon:
    """Segmentation polygon as normalized (x, y) points."""
    class_id: int
    points: tuple[tuple[float, float], ...]


@dataclass(frozen=True)
class Keypoints:
    """Pose instance: enclosing box plus (x, y, visibility) triples."""
    class_id: int
    cx: float
    cy: float
    w: float
    h: float
    points: tuple[tuple[float, float, int], ...]

    @property
    def num_visible(self) -> int:
        return sum(1 for _, _, v in self.points if v > 0)


@dataclass(frozen=True)
class ClassLabel:
    """Whole-image class for classification datasets."""
    class_id: int


Annotation = Union[BBox, Polygon, Keypoints, ClassLabel]


@dataclass(frozen=True)
class Dataset:
    """Dataset header: task type and class list."""
    task: Task
    name: str
    class_names: dict[int, str]  # insertion order is kept
    description: str = ""
    url: str = ""
    version: int = 0
    kpt_shape: Optional[tuple[int, int]] = None

    def class_name(self, class_id: int) -> str:
        return self.class_names.get(class_id, f"class_{class_id}")

    def class_list(self) -> list[str]:
        """
        Class names indexed by id, from 0 to the highest id.

        Gaps in the id range are filled with "class_<id>" so that list
        position always equals class id.
        """
        if not self.class_names:
            return []
        max_id = max(self.class_names)
        return [self.class_name(i) for i in range(max_id + 1)]

    def sorted_classes(self) -> list[tuple[int, str]]:
        """(id, name) pairs ordered by id."""
        return sorted(self.class_names.items())


@dataclass(frozen=True)
class ImageRecord:
    """One image line of the NDJSON export."""
    index: int  # Position among image lines, used for stable ordering
    file: str
    url: str
    width: int
    height: int
    split: Split
    annotations: tuple[Annotation, ...] = ()
    line: Optional[int] = None  # Source line number

    @property
    def stem(self) -> str:
        """File name without its extension."""
        name, dot, _ = self.file.rpartition(".")
        return name if dot and name else self.file

    @property
    def class_label(self) -> Optional[ClassLabel]:
        for ann in self.annotations:
            if isinstance(ann, ClassLabel):
                return ann
        return None


@dataclass(frozen=True)
class ProgressEvent:
    """Progress message sent to the caller while a job runs."""
    phase: Phase
    current: int
    total: int
    item: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "current": self.current,
            "total": self.total,
            "item": self.item,
        }


@dataclass
class ConvertResult:
    """Summary of a finished conversion."""
    zip_path: str
    file_count: int
    image_count: int
    failed_downloads: Optional[int] = None
    download_total: Optional[int] = None
    dropped_annotations: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def archive_path(self) -> str:
        return self.zip_path

    def to_dict(self) -> dict:
        return {
            "zip_path": self.zip_path,
            "file_count": self.file_count,
            "image_count": self.image_count,
            "failed_downloads": self.failed_downloads,
            "download_total": self.download_total,
            "dropped_annotations": self.dropped_annotations,
            "warnings": list(self.warnings),
        }
