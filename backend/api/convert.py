"""
Conversion API endpoints
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from backend.config import EXPORT_DIR
from converter.config import ConverterSettings
from converter.errors import ConversionCancelled, ConversionError, UnknownFormatError
from converter.formats import ExportFormat, available_formats, get_encoder
from converter.pipeline import ConversionJob, ConvertRequest

logger = logging.getLogger(__name__)

router = APIRouter()


class ConvertBody(BaseModel):
    file_path: str
    format: str
    output_path: Optional[str] = None
    include_images: bool = True


class FormatResponse(BaseModel):
    id: str
    tasks: list[str]
    aliases: list[str]


def get_settings() -> ConverterSettings:
    """Converter settings for a request (overridable in tests)."""
    return ConverterSettings()


def get_http_client() -> Optional[httpx.AsyncClient]:
    """HTTP client for downloads; None lets each job create its own."""
    return None


def default_output_path(file_path: str, format_id: str) -> Path:
    """Archive path under EXPORT_DIR, named after the input file and format."""
    EXPORT_DIR.mkdir(parents=True, exist_ok=True)
    return EXPORT_DIR / f"{Path(file_path).stem}_{ExportFormat.parse(format_id).value}.zip"


def _line(payload: dict) -> bytes:
    return (json.dumps(payload) + "\n").encode("utf-8")


async def _stream_job(job: ConversionJob, queue: asyncio.Queue):
    """
    Run a job and stream its progress as NDJSON.

    Emits progress lines while the job runs, then one result or error line.
    If the client goes away the job is cancelled.
    """
    task = asyncio.create_task(job.run())
    try:
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                yield _line({"type": "progress", **getter.result().to_dict()})
                continue
            getter.cancel()
            break

        while not queue.empty():
            yield _line({"type": "progress", **queue.get_nowait().to_dict()})

        try:
            result = task.result()
        except ConversionCancelled:
            yield _line({"type": "error", "message": "Conversion cancelled"})
        except ConversionError as e:
            logger.warning(f"Conversion failed: {e}")
            yield _line({"type": "error", "message": str(e)})
        except Exception as e:
            logger.error(f"Unexpected error during conversion: {e}", exc_info=True)
            yield _line({"type": "error", "message": str(e) or type(e).__name__})
        else:
            yield _line({"type": "result", **result.to_dict()})
    finally:
        if not task.done():
            logger.info("Client disconnected, cancelling conversion")
            job.cancel()
            await asyncio.gather(task, return_exceptions=True)


@router.get("/formats", response_model=list[FormatResponse])
async def list_formats():
    """List output formats and the tasks they support."""
    return [FormatResponse(**entry) for entry in available_formats()]


@router.post("")
async def convert(
    request: ConvertBody,
    settings: ConverterSettings = Depends(get_settings),
    client: Optional[httpx.AsyncClient] = Depends(get_http_client),
):
    """Convert an NDJSON export, streaming progress events and the result."""
    try:
        get_encoder(request.format)
    except UnknownFormatError as e:
        raise HTTPException(status_code=400, detail=str(e))

    output_path = request.output_path or str(default_output_path(request.file_path, request.format))

    queue: asyncio.Queue = asyncio.Queue()
    job = ConversionJob(
        ConvertRequest(
            file_path=request.file_path,
            format=request.format,
            output_path=output_path,
            include_images=request.include_images,
        ),
        progress_channel=queue,
        settings=settings,
        client=client,
    )
    return StreamingResponse(_stream_job(job, queue), media_type="application/x-ndjson")
