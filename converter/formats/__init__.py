"""
Output format encoders and the format registry.
"""

from converter.errors import UnsupportedTaskError
from converter.formats.base import ExportFormat, Encoder, FORMAT_ALIASES
from converter.formats.coco import CocoEncoder
from converter.formats.createml import CreateMlEncoder
from converter.formats.pascal_voc import PascalVocEncoder
from converter.formats.yolo import DarknetEncoder, YoloEncoder
from converter.models import Task


_ENCODERS = {
    ExportFormat.YOLO: lambda: YoloEncoder(ExportFormat.YOLO),
    ExportFormat.YOLOV5: lambda: YoloEncoder(ExportFormat.YOLOV5),
    ExportFormat.YOLO_DARKNET: DarknetEncoder,
    ExportFormat.COCO: CocoEncoder,
    ExportFormat.PASCAL_VOC: PascalVocEncoder,
    ExportFormat.CREATEML: CreateMlEncoder,
}


def get_encoder(format_id: str) -> Encoder:
    """
    Create the encoder for a format id.

    Raises:
        UnknownFormatError: If no encoder is registered for the id
    """
    return _ENCODERS[ExportFormat.parse(format_id)]()


def check_task_supported(encoder: Encoder, task: Task) -> None:
    """Raise UnsupportedTaskError if the encoder cannot represent the task."""
    if task not in encoder.required_task_types():
        raise UnsupportedTaskError(encoder.format.value, task.value)


def available_formats() -> list[dict]:
    """Registered formats with the tasks each one supports."""
    formats = []
    for export_format, factory in _ENCODERS.items():
        encoder = factory()
        formats.append({
            "id": export_format.value,
            "tasks": sorted(task.value for task in encoder.required_task_types()),
            "aliases": sorted(
                alias for alias, target in FORMAT_ALIASES.items() if target == export_format
            ),
        })
    return formats


__all__ = [
    "ExportFormat", "Encoder",
    "YoloEncoder", "DarknetEncoder", "CocoEncoder", "PascalVocEncoder", "CreateMlEncoder",
    "get_encoder", "check_task_supported", "available_formats",
]
