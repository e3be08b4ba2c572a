"""
COCO JSON encoder.

One _annotations.coco.json at the archive root covers every split. Images go
to {split}/images/ and each COCO image's file_name is its path in the archive.

Boxes are absolute pixels [x_min, y_min, width, height]. Image and annotation
ids start at 1 and follow input order (images, then annotations within an
image), so the same input always gives the same document.
"""

import json
from typing import Optional, Sequence

from converter.formats.base import ExportFormat, num_keypoints
from converter.geometry import (
    bbox_to_pixels, denormalize_points, polygon_area, polygon_bbox,
    polygon_to_flat_list,
)
from converter.models import BBox, Dataset, ImageRecord, Keypoints, Polygon, Task


COCO_FILENAME = "_annotations.coco.json"


def _px(value: float) -> float:
    return round(float(value), 4)


class CocoEncoder:
    """Whole-dataset COCO document; no per-image label files."""

    format = ExportFormat.COCO

    def required_task_types(self) -> frozenset[Task]:
        return frozenset({Task.DETECT, Task.SEGMENT, Task.POSE})

    def image_path(self, dataset: Dataset, record: ImageRecord) -> Optional[str]:
        return f"{record.split.value}/images/{record.file}"

    def label_path(self, dataset: Dataset, record: ImageRecord) -> Optional[str]:
        return None

    def encode_label(self, dataset: Dataset, record: ImageRecord) -> Optional[bytes]:
        return None

    def encode_config(
        self,
        dataset: Dataset,
        records: Sequence[ImageRecord]
    ) -> dict[str, bytes]:
        document = self.build_document(dataset, records)
        return {COCO_FILENAME: json.dumps(document, indent=2).encode("utf-8")}

    def build_document(self, dataset: Dataset, records: Sequence[ImageRecord]) -> dict:
        """Build the COCO document as a dict."""
        is_pose = dataset.task == Task.POSE
        kpt_count = num_keypoints(dataset, records) if is_pose else 0

        categories = []
        for class_id, name in dataset.sorted_classes():
            category = {"id": class_id, "name": name, "supercategory": "none"}
            if is_pose:
                category["keypoints"] = [f"keypoint_{k}" for k in range(kpt_count)]
                category["skeleton"] = []
            categories.append(category)

        images = []
        annotations = []
        for image_id, record in enumerate(records, start=1):
            images.append({
                "id": image_id,
                "file_name": self.image_path(dataset, record),
                "width": record.width,
                "height": record.height,
                "license": 1,
            })
            for ann in record.annotations:
                entry = self._annotation(ann, record)
                if entry is None:
                    continue
                entry["id"] = len(annotations) + 1
                entry["image_id"] = image_id
                annotations.append(entry)

        return {
            "info": {
                "description": dataset.name or "Converted from NDJSON",
                "url": dataset.url,
                "version": str(dataset.version),
                "contributor": dataset.description,
            },
            "licenses": [{"id": 1, "name": "Unknown", "url": ""}],
            "categories": categories,
            "images": images,
            "annotations": annotations,
        }

    def _annotation(self, ann, record: ImageRecord) -> Optional[dict]:
        width, height = record.width, record.height

        if isinstance(ann, BBox):
            bbox = bbox_to_pixels(ann.cx, ann.cy, ann.w, ann.h, width, height)
            return {
                "category_id": ann.class_id,
                "bbox": [_px(v) for v in bbox],
                "area": _px(bbox[2] * bbox[3]),
                "iscrowd": 0,
                "segmentation": [],
            }

        if isinstance(ann, Polygon):
            points = denormalize_points(ann.points, width, height)
            cx, cy, w, h = polygon_bbox(points)
            return {
                "category_id": ann.class_id,
                "bbox": [_px(cx - w / 2.0), _px(cy - h / 2.0), _px(w), _px(h)],
                "area": _px(polygon_area(points)),
                "iscrowd": 0,
                "segmentation": [[_px(v) for v in polygon_to_flat_list(points)]],
            }

        if isinstance(ann, Keypoints):
            bbox = bbox_to_pixels(ann.cx, ann.cy, ann.w, ann.h, width, height)
            keypoints = []
            for (x, y), (_, _, v) in zip(denormalize_points(ann.points, width, height), ann.points):
                keypoints.extend([_px(x), _px(y), v])
            return {
                "category_id": ann.class_id,
                "bbox": [_px(v) for v in bbox],
                "area": _px(bbox[2] * bbox[3]),
                "iscrowd": 0,
                "segmentation": [],
                "keypoints": keypoints,
                "num_keypoints": ann.num_visible,
            }

        return None
