"""
Shared fixtures for converter tests.
"""

import io
import json

import httpx
import pytest
from PIL import Image

from converter.config import ConverterSettings


def make_png(width: int = 8, height: int = 8, color: str = "red") -> bytes:
    """Encode a small solid-color PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=color).save(buffer, format="PNG")
    return buffer.getvalue()


def write_ndjson(path, records) -> str:
    """Write dicts (or raw strings) as NDJSON lines and return the path."""
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            line = record if isinstance(record, str) else json.dumps(record)
            f.write(line + "\n")
    return str(path)


def header(task: str = "detect", class_names=None, **extra) -> dict:
    record = {
        "type": "dataset",
        "task": task,
        "name": "Test Dataset",
        "class_names": class_names if class_names is not None else {"0": "cat", "1": "dog"},
    }
    record.update(extra)
    return record


def image(file: str, url: str = "", split: str = "train", annotations=None, width: int = 100, height: int = 50) -> dict:
    record = {
        "type": "image",
        "file": file,
        "url": url or f"https://cdn.example.com/{file}",
        "width": width,
        "height": height,
        "split": split,
    }
    if annotations is not None:
        record["annotations"] = annotations
    return record


@pytest.fixture
def png_bytes():
    """A valid PNG payload served by the mock CDN."""
    return make_png()


@pytest.fixture
def settings():
    """Settings that allow the mock hosts and keep concurrency small."""
    return ConverterSettings(
        download_concurrency=4,
        download_timeout=5.0,
        max_download_bytes=1024 * 1024,
        block_private_hosts=False,
    )


@pytest.fixture
def cdn(png_bytes):
    """
    Mock CDN transport.

    Paths containing "missing" answer 404, everything else the PNG. Every
    requested URL is recorded in `cdn.requests`.
    """
    class MockCdn:
        def __init__(self):
            self.requests = []

        def handler(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(str(request.url))
            if "missing" in request.url.path:
                return httpx.Response(404)
            return httpx.Response(200, content=png_bytes, headers={"content-type": "image/png"})

        def client(self) -> httpx.AsyncClient:
            return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    return MockCdn()
