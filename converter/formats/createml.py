"""
CreateML JSON encoder.

Each split gets {split}/_annotations.createml.json next to its images.
Detection boxes use CreateML's center-based pixel coordinates.
"""

import json
from typing import Optional, Sequence

from converter.formats.base import ExportFormat, group_by_split
from converter.models import BBox, Dataset, ImageRecord, Task


CREATEML_FILENAME = "_annotations.createml.json"


class CreateMlEncoder:
    """Apple CreateML object detection and image classification JSON."""

    format = ExportFormat.CREATEML

    def required_task_types(self) -> frozenset[Task]:
        return frozenset({Task.DETECT, Task.CLASSIFY})

    def image_path(self, dataset: Dataset, record: ImageRecord) -> Optional[str]:
        return f"{record.split.value}/{record.file}"

    def label_path(self, dataset: Dataset, record: ImageRecord) -> Optional[str]:
        return None

    def encode_label(self, dataset: Dataset, record: ImageRecord) -> Optional[bytes]:
        return None

    def encode_config(
        self,
        dataset: Dataset,
        records: Sequence[ImageRecord]
    ) -> dict[str, bytes]:
        files = {}
        for split, split_records in group_by_split(records).items():
            if not split_records:
                continue
            if dataset.task == Task.CLASSIFY:
                entries = self._classification_entries(dataset, split_records)
            else:
                entries = self._detection_entries(dataset, split_records)
            files[f"{split.value}/{CREATEML_FILENAME}"] = json.dumps(entries, indent=2).encode("utf-8")
        return files

    def _detection_entries(self, dataset: Dataset, records: Sequence[ImageRecord]) -> list[dict]:
        entries = []
        for record in records:
            annotations = []
            for ann in record.annotations:
                if not isinstance(ann, BBox):
                    continue
                annotations.append({
                    "label": dataset.class_name(ann.class_id),
                    "coordinates": {
                        "x": round(ann.cx * record.width, 4),
                        "y": round(ann.cy * record.height, 4),
                        "width": round(ann.w * record.width, 4),
                        "height": round(ann.h * record.height, 4),
                    },
                })
            entries.append({"image": record.file, "annotations": annotations})
        return entries

    def _classification_entries(self, dataset: Dataset, records: Sequence[ImageRecord]) -> list[dict]:
        entries = []
        for record in records:
            label = record.class_label
            if label is not None:
                entries.append({"image": record.file, "label": dataset.class_name(label.class_id)})
        return entries
