"""
Tests for the output format encoders.
"""

import json
import xml.etree.ElementTree as ET

import pytest
import yaml

from converter.errors import UnknownFormatError, UnsupportedTaskError
from converter.formats import (
    CocoEncoder, CreateMlEncoder, DarknetEncoder, ExportFormat, PascalVocEncoder, YoloEncoder,
    available_formats, check_task_supported, get_encoder,
)
from converter.models import BBox, ClassLabel, Dataset, ImageRecord, Keypoints, Polygon, Split, Task


def make_dataset(task=Task.DETECT, class_names=None, **kwargs) -> Dataset:
    return Dataset(
        task=task,
        name="Test Dataset",
        class_names=class_names if class_names is not None else {0: "cat", 1: "dog"},
        **kwargs,
    )


def make_record(file="img.jpg", annotations=(), split=Split.TRAIN, index=0, width=200, height=100) -> ImageRecord:
    return ImageRecord(
        index=index,
        file=file,
        url=f"https://cdn.example.com/{file}",
        width=width,
        height=height,
        split=split,
        annotations=tuple(annotations),
    )


SQUARE = Polygon(0, ((0.25, 0.25), (0.75, 0.25), (0.75, 0.75), (0.25, 0.75)))


class TestRegistry:
    """Tests for format lookup."""

    def test_aliases(self):
        """Test format ids are case-insensitive and aliases resolve."""
        assert ExportFormat.parse("VOC") == ExportFormat.PASCAL_VOC
        assert ExportFormat.parse("yolov7") == ExportFormat.YOLOV5
        assert ExportFormat.parse(" Coco ") == ExportFormat.COCO

    def test_unknown_format(self):
        with pytest.raises(UnknownFormatError, match="tfrecord"):
            get_encoder("tfrecord")

    def test_get_encoder_types(self):
        assert isinstance(get_encoder("yolo"), YoloEncoder)
        assert isinstance(get_encoder("yolo_darknet"), DarknetEncoder)
        assert isinstance(get_encoder("createml"), CreateMlEncoder)

    def test_task_support(self):
        """Test the format/task matrix."""
        check_task_supported(get_encoder("coco"), Task.POSE)
        with pytest.raises(UnsupportedTaskError):
            check_task_supported(get_encoder("coco"), Task.CLASSIFY)
        with pytest.raises(UnsupportedTaskError):
            check_task_supported(get_encoder("pascal_voc"), Task.POSE)
        with pytest.raises(UnsupportedTaskError):
            check_task_supported(get_encoder("createml"), Task.SEGMENT)

    def test_available_formats(self):
        formats = {entry["id"]: entry for entry in available_formats()}

        assert set(formats) == {"yolo", "yolov5", "yolo_darknet", "coco", "pascal_voc", "createml"}
        assert formats["pascal_voc"]["aliases"] == ["voc"]
        assert formats["yolo"]["tasks"] == ["classify", "detect", "pose", "segment"]


class TestYolo:
    """Tests for the Ultralytics YOLO encoder."""

    def test_detect_label(self):
        """Test one line per box with 6 decimals."""
        encoder = YoloEncoder()
        record = make_record(annotations=[BBox(1, 0.5, 0.5, 0.25, 0.125)])

        label = encoder.encode_label(make_dataset(), record)

        assert label == b"1 0.500000 0.500000 0.250000 0.125000\n"
        assert encoder.label_path(make_dataset(), record) == "train/labels/img.txt"
        assert encoder.image_path(make_dataset(), record) == "train/images/img.jpg"

    def test_empty_label(self):
        """Test an image without annotations gets an empty label file."""
        assert YoloEncoder().encode_label(make_dataset(), make_record()) == b""

    def test_segment_label(self):
        """Test polygons are written as class followed by point pairs."""
        dataset = make_dataset(Task.SEGMENT)

        label = YoloEncoder().encode_label(dataset, make_record(annotations=[SQUARE]))

        assert label.decode().split() == [
            "0", "0.250000", "0.250000", "0.750000", "0.250000",
            "0.750000", "0.750000", "0.250000", "0.750000",
        ]

    def test_pose_label(self):
        """Test pose lines carry the box then x y v per keypoint."""
        dataset = make_dataset(Task.POSE, {0: "person"}, kpt_shape=(2, 3))
        ann = Keypoints(0, 0.5, 0.5, 0.2, 0.4, ((0.45, 0.4, 2), (0.0, 0.0, 0)))

        label = YoloEncoder().encode_label(dataset, make_record(annotations=[ann]))

        assert label == b"0 0.500000 0.500000 0.200000 0.400000 0.450000 0.400000 2 0.000000 0.000000 0\n"

    def test_data_yaml(self):
        """Test data.yaml has split paths and a names mapping."""
        files = YoloEncoder().encode_config(make_dataset(), [])
        data = yaml.safe_load(files["data.yaml"])

        assert files["data.yaml"].startswith(b"# Test Dataset\n")
        assert data["train"] == "train/images"
        assert data["val"] == "valid/images"
        assert data["nc"] == 2
        assert data["names"] == {0: "cat", 1: "dog"}
        assert files["classes.txt"] == b"cat\ndog\n"

    def test_yolov5_names_list_fills_gaps(self):
        """Test YOLOv5 writes names as a list indexed by class id."""
        dataset = make_dataset(class_names={0: "cat", 2: "bird"})

        data = yaml.safe_load(YoloEncoder(ExportFormat.YOLOV5).encode_config(dataset, [])["data.yaml"])

        assert data["names"] == ["cat", "class_1", "bird"]
        assert data["nc"] == 3

    def test_pose_kpt_shape(self):
        dataset = make_dataset(Task.POSE, {0: "person"}, kpt_shape=(17, 2))

        data = yaml.safe_load(YoloEncoder().encode_config(dataset, [])["data.yaml"])

        assert data["kpt_shape"] == [17, 3]

    def test_classify_layout(self):
        """Test classification uses class folders and no label files."""
        encoder = YoloEncoder()
        dataset = make_dataset(Task.CLASSIFY)
        record = make_record(annotations=[ClassLabel(1)], split=Split.VALID)

        assert encoder.image_path(dataset, record) == "valid/dog/img.jpg"
        assert encoder.label_path(dataset, record) is None
        assert encoder.image_path(dataset, make_record()) is None


class TestDarknet:
    """Tests for the Darknet encoder."""

    def test_polygon_written_as_box(self):
        label = DarknetEncoder().encode_label(make_dataset(Task.SEGMENT), make_record(annotations=[SQUARE]))

        assert label == b"0 0.500000 0.500000 0.500000 0.500000\n"

    def test_config_files(self):
        """Test obj.names, obj.data and per-split image lists."""
        records = [
            make_record("a.jpg"),
            make_record("b.jpg", split=Split.VALID, index=1),
        ]

        files = DarknetEncoder().encode_config(make_dataset(), records)

        assert files["obj.names"] == b"cat\ndog\n"
        assert files["train.txt"] == b"train/a.jpg\n"
        assert files["valid.txt"] == b"valid/b.jpg\n"
        assert b"classes = 2\n" in files["obj.data"]
        assert b"valid = valid.txt\n" in files["obj.data"]
        assert "test.txt" not in files


class TestCoco:
    """Tests for the COCO encoder."""

    def test_document(self):
        """Test ids, pixel boxes and file names."""
        records = [
            make_record("a.jpg", [BBox(1, 0.5, 0.5, 0.5, 0.5)]),
            make_record("b.jpg", [BBox(0, 0.25, 0.25, 0.1, 0.1), BBox(1, 0.75, 0.75, 0.1, 0.1)],
                        split=Split.VALID, index=1),
        ]

        files = CocoEncoder().encode_config(make_dataset(), records)
        doc = json.loads(files["_annotations.coco.json"])

        assert [c["name"] for c in doc["categories"]] == ["cat", "dog"]
        assert [img["id"] for img in doc["images"]] == [1, 2]
        assert doc["images"][1]["file_name"] == "valid/images/b.jpg"
        assert [a["id"] for a in doc["annotations"]] == [1, 2, 3]
        assert [a["image_id"] for a in doc["annotations"]] == [1, 2, 2]

        first = doc["annotations"][0]
        assert first["category_id"] == 1
        assert first["bbox"] == [50.0, 25.0, 100.0, 50.0]
        assert first["area"] == 5000.0

    def test_segmentation(self):
        """Test polygons become pixel segmentation with their area."""
        doc = CocoEncoder().build_document(make_dataset(Task.SEGMENT), [make_record(annotations=[SQUARE])])
        ann = doc["annotations"][0]

        assert ann["segmentation"] == [[50.0, 25.0, 150.0, 25.0, 150.0, 75.0, 50.0, 75.0]]
        assert ann["bbox"] == [50.0, 25.0, 100.0, 50.0]
        assert ann["area"] == 5000.0

    def test_pose(self):
        """Test keypoints are in pixels and num_keypoints counts labelled ones."""
        dataset = make_dataset(Task.POSE, {0: "person"}, kpt_shape=(2, 3))
        ann = Keypoints(0, 0.5, 0.5, 0.5, 0.5, ((0.5, 0.5, 2), (0.0, 0.0, 0)))

        doc = CocoEncoder().build_document(dataset, [make_record(annotations=[ann])])

        assert doc["categories"][0]["keypoints"] == ["keypoint_0", "keypoint_1"]
        assert doc["annotations"][0]["keypoints"] == [100.0, 50.0, 2, 0.0, 0.0, 0]
        assert doc["annotations"][0]["num_keypoints"] == 1

    def test_bbox_round_trip(self):
        """Test pixel boxes renormalize to the original box."""
        box = BBox(0, 0.3127, 0.6451, 0.2219, 0.1043)
        record = make_record(annotations=[box], width=640, height=480)

        x, y, w, h = CocoEncoder().build_document(make_dataset(), [record])["annotations"][0]["bbox"]

        assert ((x + w / 2) / 640, (y + h / 2) / 480, w / 640, h / 480) == pytest.approx(
            (box.cx, box.cy, box.w, box.h), abs=1e-4
        )

    def test_deterministic(self):
        records = [make_record(annotations=[BBox(0, 0.5, 0.5, 0.5, 0.5)])]

        first = CocoEncoder().encode_config(make_dataset(), records)
        second = CocoEncoder().encode_config(make_dataset(), records)

        assert first == second


class TestPascalVoc:
    """Tests for the Pascal VOC encoder."""

    def test_xml(self):
        """Test one object per box with pixel corners."""
        dataset = make_dataset()
        record = make_record(annotations=[BBox(1, 0.5, 0.5, 0.5, 0.5)])

        root = ET.fromstring(PascalVocEncoder().encode_label(dataset, record))

        assert root.findtext("filename") == "img.jpg"
        assert root.findtext("size/width") == "200"
        obj = root.find("object")
        assert obj.findtext("name") == "dog"
        assert [obj.findtext(f"bndbox/{k}") for k in ("xmin", "ymin", "xmax", "ymax")] == ["50", "25", "150", "75"]
        assert PascalVocEncoder().label_path(dataset, record) == "train/labels/img.xml"

    def test_no_objects_for_empty_image(self):
        root = ET.fromstring(PascalVocEncoder().encode_label(make_dataset(), make_record()))

        assert root.find("object") is None

    def test_segmented_flag(self):
        root = ET.fromstring(
            PascalVocEncoder().encode_label(make_dataset(Task.SEGMENT), make_record(annotations=[SQUARE]))
        )

        assert root.findtext("segmented") == "1"
        assert root.find("object/bndbox/xmin").text == "50"


class TestCreateMl:
    """Tests for the CreateML encoder."""

    def test_detection(self):
        """Test center-based pixel coordinates per split file."""
        records = [make_record(annotations=[BBox(0, 0.5, 0.5, 0.5, 0.5)])]

        files = CreateMlEncoder().encode_config(make_dataset(), records)
        entries = json.loads(files["train/_annotations.createml.json"])

        assert entries == [{
            "image": "img.jpg",
            "annotations": [{
                "label": "cat",
                "coordinates": {"x": 100.0, "y": 50.0, "width": 100.0, "height": 50.0},
            }],
        }]

    def test_classification(self):
        records = [
            make_record("a.jpg", [ClassLabel(1)]),
            make_record("b.jpg", index=1),
        ]

        files = CreateMlEncoder().encode_config(make_dataset(Task.CLASSIFY), records)

        assert json.loads(files["train/_annotations.createml.json"]) == [{"image": "a.jpg", "label": "dog"}]
