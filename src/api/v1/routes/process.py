"""远端 worker 导出接口：接收 multipart 素材与 metadata，重新编译并执行 ffmpeg。"""

from __future__ import annotations

import asyncio
import json
import shutil
import tempfile
from pathlib import Path
from typing import Annotated, Any

import structlog
from anyio import to_thread
from fastapi import APIRouter, File, Form, UploadFile
from fastapi.responses import JSONResponse, Response

from src.domain.errors import ExportFailure, ValidationFailure
from src.infra.config.settings import get_settings
from src.pipelines.rendering.ffmpeg_command import (
    OUTPUT_FILE_NAME,
    build_ffmpeg_args,
    clip_input_name,
    image_input_name,
)
from src.pipelines.rendering.filter_graph import compile_timeline
from src.timeline.models import Timeline
from src.timeline.validation import validate_timeline
from src.video.ffmpeg_runner import run_ffmpeg

router = APIRouter(tags=["export"])
logger = structlog.get_logger(__name__)
settings = get_settings()
worker_semaphore = asyncio.Semaphore(max(1, settings.worker_concurrency_limit))

UPLOAD_CHUNK_BYTES = 1024 * 1024


class UploadTooLarge(Exception):
    pass


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": "Export failed", "message": message})


async def _save_upload(upload: UploadFile, target: Path, remaining: int) -> int:
    """分块落盘，超过 remaining 字节即中止；返回写入字节数。"""
    written = 0
    with target.open("wb") as fh:
        while chunk := await upload.read(UPLOAD_CHUNK_BYTES):
            written += len(chunk)
            if written > remaining:
                raise UploadTooLarge(f"upload exceeds {settings.worker_max_upload_bytes} bytes")
            await to_thread.run_sync(fh.write, chunk)
    return written


def _parse_metadata(raw: str) -> dict[str, Any]:
    try:
        metadata = json.loads(raw)
    except ValueError as exc:
        raise ValidationFailure(f"metadata is not valid JSON: {exc}", cause=exc) from exc
    if not isinstance(metadata, dict):
        raise ValidationFailure("metadata must be a JSON object")
    return metadata


@router.post("/process")
async def process_export(
    videos: Annotated[list[UploadFile], File()],
    metadata: Annotated[str, Form()],
    canvas_width: Annotated[int, Form()],
    canvas_height: Annotated[int, Form()],
    images: Annotated[list[UploadFile] | None, File()] = None,
) -> Response:
    images = images or []
    tmp_root = Path(settings.worker_tmp_root)
    tmp_root.mkdir(parents=True, exist_ok=True)
    tmp_dir = Path(tempfile.mkdtemp(prefix="process-", dir=tmp_root.as_posix()))
    log = logger.bind(videos=len(videos), images=len(images), tmp_dir=tmp_dir.name)

    try:
        remaining = settings.worker_max_upload_bytes
        clip_paths = [tmp_dir / clip_input_name(idx) for idx in range(len(videos))]
        image_paths = [tmp_dir / image_input_name(idx) for idx in range(len(images))]
        for upload, path in zip([*videos, *images], [*clip_paths, *image_paths]):
            remaining -= await _save_upload(upload, path, remaining)

        timeline = Timeline.from_metadata(
            _parse_metadata(metadata),
            canvas_width=canvas_width,
            canvas_height=canvas_height,
            clip_refs=[path.as_posix() for path in clip_paths],
            image_refs=[path.as_posix() for path in image_paths],
        )
        validate_timeline(timeline)
        graph = compile_timeline(timeline)

        output_path = tmp_dir / OUTPUT_FILE_NAME
        args = build_ffmpeg_args(
            graph,
            [path.as_posix() for path in (*clip_paths, *image_paths)],
            output_path.as_posix(),
            preset=settings.worker_video_preset,
            crf=settings.export_crf,
            audio_bitrate=settings.export_audio_bitrate,
        )
        log.info("process.started", nodes=len(graph.nodes), texts=len(timeline.texts))
        async with worker_semaphore:
            await run_ffmpeg(settings.ffmpeg_binary, args, cwd=tmp_dir, description="worker export")

        output = await to_thread.run_sync(output_path.read_bytes)
        log.info("process.completed", output_bytes=len(output))
        return Response(
            content=output,
            media_type="video/mp4",
            headers={"Content-Disposition": 'attachment; filename="final_video.mp4"'},
        )
    except UploadTooLarge as exc:
        log.warning("process.upload_too_large", error=str(exc))
        return _error_response(413, str(exc))
    except ValidationFailure as exc:
        log.warning("process.invalid_request", error=exc.message)
        return _error_response(400, exc.message)
    except ExportFailure as exc:
        log.error("process.failed", kind=exc.kind, error=exc.message)
        return _error_response(500, exc.message)
    finally:
        for upload in (*videos, *images):
            await upload.close()
        try:
            await to_thread.run_sync(shutil.rmtree, tmp_dir)
        except OSError as exc:
            log.warning("process.cleanup_failed", error=str(exc))
