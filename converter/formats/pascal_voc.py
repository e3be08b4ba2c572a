"""
Pascal VOC XML encoder.

One XML file per image under {split}/labels/, with an <object> per annotation
and absolute pixel corners in <bndbox>. Segmentation polygons are written as
their enclosing box. Classification datasets use class folders instead.
"""

import xml.etree.ElementTree as ET
from typing import Optional, Sequence

from converter.formats.base import ExportFormat
from converter.geometry import bbox_to_voc, polygon_bbox
from converter.models import BBox, Dataset, ImageRecord, Polygon, Task


def _sub(parent: ET.Element, tag: str, text: str = "") -> ET.Element:
    element = ET.SubElement(parent, tag)
    element.text = text
    return element


class PascalVocEncoder:
    """Pascal VOC per-image XML annotations."""

    format = ExportFormat.PASCAL_VOC

    def required_task_types(self) -> frozenset[Task]:
        return frozenset({Task.DETECT, Task.SEGMENT, Task.CLASSIFY})

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
        return f"{record.split.value}/labels/{record.stem}.xml"

    def encode_label(self, dataset: Dataset, record: ImageRecord) -> Optional[bytes]:
        if dataset.task == Task.CLASSIFY:
            return None

        root = ET.Element("annotation")
        _sub(root, "folder", "images")
        _sub(root, "filename", record.file)
        _sub(root, "path", record.file)
        source = _sub(root, "source")
        _sub(source, "database", dataset.name or "NDJSON Convert")
        size = _sub(root, "size")
        _sub(size, "width", str(record.width))
        _sub(size, "height", str(record.height))
        _sub(size, "depth", "3")
        _sub(root, "segmented", "1" if dataset.task == Task.SEGMENT else "0")

        for ann in record.annotations:
            if isinstance(ann, BBox):
                box = (ann.cx, ann.cy, ann.w, ann.h)
            elif isinstance(ann, Polygon):
                box = polygon_bbox(ann.points)
            else:
                continue
            xmin, ymin, xmax, ymax = bbox_to_voc(*box, record.width, record.height)

            obj = _sub(root, "object")
            _sub(obj, "name", dataset.class_name(ann.class_id))
            _sub(obj, "pose", "Unspecified")
            _sub(obj, "truncated", "0")
            _sub(obj, "difficult", "0")
            bndbox = _sub(obj, "bndbox")
            _sub(bndbox, "xmin", str(xmin))
            _sub(bndbox, "ymin", str(ymin))
            _sub(bndbox, "xmax", str(xmax))
            _sub(bndbox, "ymax", str(ymax))

        ET.indent(root, space="  ")
        return ET.tostring(root, encoding="utf-8", xml_declaration=True)

    def encode_config(
        self,
        dataset: Dataset,
        records: Sequence[ImageRecord]
    ) -> dict[str, bytes]:
        return {}
