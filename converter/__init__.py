"""
Converter package - NDJSON annotation exports to ML dataset archives
"""

from converter.models import (
    Task, Split, Phase, BBox, Polygon, Keypoints, ClassLabel,
    Dataset, ImageRecord, ProgressEvent, ConvertResult,
)
from converter.errors import (
    ConversionError, InputReadError, SchemaError, UnknownFormatError, UnsupportedTaskError,
    ArchiveWriteError, DownloadError, AnnotationError, ConversionCancelled,
)
from converter.config import ConverterSettings
from converter.parser import NdjsonParser, ParsedDataset, parse_ndjson
from converter.formats import ExportFormat, get_encoder, available_formats
from converter.pipeline import ConversionJob, ConvertRequest, convert_ndjson

__version__ = "0.1.0"

__all__ = [
    "Task", "Split", "Phase", "BBox", "Polygon", "Keypoints", "ClassLabel",
    "Dataset", "ImageRecord", "ProgressEvent", "ConvertResult",
    "ConversionError", "InputReadError", "SchemaError", "UnknownFormatError",
    "UnsupportedTaskError", "ArchiveWriteError", "DownloadError", "AnnotationError",
    "ConversionCancelled",
    "ConverterSettings",
    "NdjsonParser", "ParsedDataset", "parse_ndjson",
    "ExportFormat", "get_encoder", "available_formats",
    "ConversionJob", "ConvertRequest", "convert_ndjson",
]
