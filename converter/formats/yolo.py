"""
YOLO and YOLO Darknet encoders.

Label lines (normalized 0-1, 6 decimals):
- Detection: class_id x_center y_center width height
- Segmentation: class_id x1 y1 x2 y2 ... xn yn
- Pose: class_id x_center y_center width height x1 y1 v1 ... xn yn vn

Layouts:
- YOLO: {split}/images/*, {split}/labels/*.txt, data.yaml, classes.txt
  (classification: {split}/{class_name}/*)
- Darknet: {split}/* with image and .txt side by side, obj.names, obj.data
"""

from typing import Optional, Sequence

import yaml

from converter.formats.base import (
    ALL_TASKS, ExportFormat, fmt, group_by_split, num_keypoints, text_lines,
)
from converter.geometry import polygon_bbox
from converter.models import BBox, Dataset, ImageRecord, Keypoints, Polygon, Split, Task


def yolo_box_line(class_id: int, cx: float, cy: float, w: float, h: float) -> str:
    return f"{class_id} {fmt(cx)} {fmt(cy)} {fmt(w)} {fmt(h)}"


def yolo_label_lines(record: ImageRecord, boxes_only: bool = False) -> list[str]:
    """
    Label lines for one image.

    Args:
        record: Image with its annotations
        boxes_only: Write polygons as their enclosing box (Darknet)
    """
    lines = []
    for ann in record.annotations:
        if isinstance(ann, BBox):
            lines.append(yolo_box_line(ann.class_id, ann.cx, ann.cy, ann.w, ann.h))
        elif isinstance(ann, Polygon):
            if boxes_only:
                lines.append(yolo_box_line(ann.class_id, *polygon_bbox(ann.points)))
            else:
                coords = " ".join(f"{fmt(x)} {fmt(y)}" for x, y in ann.points)
                lines.append(f"{ann.class_id} {coords}")
        elif isinstance(ann, Keypoints):
            parts = [yolo_box_line(ann.class_id, ann.cx, ann.cy, ann.w, ann.h)]
            parts.extend(f"{fmt(x)} {fmt(y)} {v}" for x, y, v in ann.points)
            lines.append(" ".join(parts))
    return lines


class YoloEncoder:
    """Ultralytics YOLO layout. YOLOv5/v7 differ only in the data.yaml names style."""

    def __init__(self, format: ExportFormat = ExportFormat.YOLO):
        self.format = format
        self.names_as_list = format == ExportFormat.YOLOV5

    def required_task_types(self) -> frozenset[Task]:
        return ALL_TASKS

    def image_path(self, dataset: Dataset, record: ImageRecord) -> Optional[str]:
        if dataset.task == Task.CLASSIFY:
            label = record.class_label
            if label is None:
                return None
            return f"{record.split.value}/{dataset.class_name(label.class_id)}/{record.file}"
        return f"{record.split.value}/images/{record.file}"

    def label_path(self, dataset: Dataset, record: ImageRecord) -> Optional[str]:
        if dataset.task == Task.CLASSIFY:
            return None
        return f"{record.split.value}/labels/{record.stem}.txt"

    def encode_label(self, dataset: Dataset, record: ImageRecord) -> Optional[bytes]:
        if dataset.task == Task.CLASSIFY:
            return None
        return text_lines(yolo_label_lines(record))

    def encode_config(
        self,
        dataset: Dataset,
        records: Sequence[ImageRecord]
    ) -> dict[str, bytes]:
        class_list = dataset.class_list()

        if dataset.task == Task.CLASSIFY:
            data = {"path": ".", "train": "train", "val": "valid", "test": "test"}
        else:
            data = {
                "path": ".",
                "train": "train/images",
                "val": "valid/images",
                "test": "test/images",
            }
        data["nc"] = len(class_list)
        if self.names_as_list:
            data["names"] = class_list
        else:
            data["names"] = {class_id: name for class_id, name in dataset.sorted_classes()}

        if dataset.task == Task.POSE:
            # Labels always carry a visibility flag
            data["kpt_shape"] = [num_keypoints(dataset, records), 3]

        header = f"# {dataset.name}\n" if dataset.name else ""
        data_yaml = header + yaml.safe_dump(data, sort_keys=False, allow_unicode=True)

        return {
            "data.yaml": data_yaml.encode("utf-8"),
            "classes.txt": text_lines(class_list),
        }


class DarknetEncoder:
    """Darknet layout: images and labels side by side per split."""

    format = ExportFormat.YOLO_DARKNET

    def required_task_types(self) -> frozenset[Task]:
        return frozenset({Task.DETECT, Task.SEGMENT})

    def image_path(self, dataset: Dataset, record: ImageRecord) -> Optional[str]:
        return f"{record.split.value}/{record.file}"

    def label_path(self, dataset: Dataset, record: ImageRecord) -> Optional[str]:
        return f"{record.split.value}/{record.stem}.txt"

    def encode_label(self, dataset: Dataset, record: ImageRecord) -> Optional[bytes]:
        return text_lines(yolo_label_lines(record, boxes_only=True))

    def encode_config(
        self,
        dataset: Dataset,
        records: Sequence[ImageRecord]
    ) -> dict[str, bytes]:
        class_list = dataset.class_list()
        files = {"obj.names": text_lines(class_list)}

        lists = {}
        for split, split_records in group_by_split(records).items():
            if split_records:
                name = f"{split.value}.txt"
                lists[split] = name
                files[name] = text_lines(self.image_path(dataset, r) for r in split_records)

        train_list = lists.get(Split.TRAIN, "train.txt")
        obj_data = [
            f"classes = {len(class_list)}",
            f"train = {train_list}",
            f"valid = {lists.get(Split.VALID, train_list)}",
            "names = obj.names",
            "backup = backup/",
        ]
        files["obj.data"] = text_lines(obj_data)
        return files
