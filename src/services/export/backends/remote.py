"""远端导出后端：把时间线 metadata 与原始素材以 multipart 提交给远端 worker。

远端会根据 metadata 自行编译 filtergraph；处理期间没有进度通道，
进度只在上传准备、提交与下载几个节点上报。
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
import structlog

from src.domain.errors import ExecutionFailure, ExportFailure, TransportFailure
from src.domain.models.export_job import (
    BackendKind,
    BackendProgressCallback,
    ExportPhase,
    ProgressUpdate,
)
from src.infra.config.settings import AppSettings, get_settings
from src.pipelines.rendering.filter_graph import FilterGraph
from src.services.export.size_classifier import InputPayloads
from src.timeline.models import Timeline

logger = structlog.get_logger(__name__)

MultipartFile = tuple[str, tuple[str, bytes, str]]


def build_multipart(
    timeline: Timeline, payloads: InputPayloads
) -> tuple[dict[str, str], list[MultipartFile]]:
    """构造 multipart 表单：videos / images 文件字段 + metadata 与画布尺寸。"""
    files: list[MultipartFile] = [
        ("videos", (f"{clip.id}.mp4", data, "video/mp4"))
        for clip, data in zip(timeline.clips, payloads.clips)
    ]
    files.extend(
        ("images", (f"{image.id}.png", data, "image/png"))
        for image, data in zip(timeline.images, payloads.images)
    )
    fields = {
        "metadata": json.dumps(timeline.to_metadata(), ensure_ascii=False),
        "canvas_width": str(timeline.canvas_width),
        "canvas_height": str(timeline.canvas_height),
    }
    return fields, files


def error_from_response(status_code: int, body: bytes) -> ExportFailure:
    """结构化错误体视为处理失败，其余视为传输层失败。"""
    try:
        payload = json.loads(body) if body else None
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error")
        if message:
            return ExecutionFailure(
                f"Cloud export failed: {message}",
                diagnostics=body.decode("utf-8", errors="replace"),
            )
    return TransportFailure(
        f"Cloud export failed with status {status_code}", status_code=status_code
    )


class RemoteExportBackend:
    kind = BackendKind.REMOTE

    def __init__(
        self,
        settings: AppSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client

    @property
    def endpoint(self) -> str:
        return self._settings.export_remote_url

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._settings.export_remote_timeout_s) as client:
            yield client

    async def execute(
        self,
        graph: FilterGraph,
        timeline: Timeline,
        payloads: InputPayloads,
        on_progress: BackendProgressCallback,
    ) -> bytes:
        on_progress(ProgressUpdate(ExportPhase.PREPARING, 0.0, "Uploading to cloud..."))
        fields, files = build_multipart(timeline, payloads)
        on_progress(ProgressUpdate(ExportPhase.PREPARING, 100.0, "Upload prepared"))

        logger.info(
            "remote_backend.submit",
            endpoint=self.endpoint,
            videos=len(payloads.clips),
            images=len(payloads.images),
            texts=len(timeline.texts),
            total_bytes=payloads.total_bytes,
        )
        on_progress(ProgressUpdate(ExportPhase.PROCESSING, 0.0, "Processing on cloud..."))

        chunks: list[bytes] = []
        try:
            async with self._http() as client:
                async with client.stream("POST", self.endpoint, data=fields, files=files) as response:
                    if not response.is_success:
                        body = await response.aread()
                        logger.error(
                            "remote_backend.http_error",
                            status=response.status_code,
                            body=body[:500].decode("utf-8", errors="replace"),
                        )
                        raise error_from_response(response.status_code, body)

                    on_progress(ProgressUpdate(ExportPhase.PROCESSING, 100.0, "Cloud processing finished"))
                    on_progress(ProgressUpdate(ExportPhase.FINALIZING, 0.0, "Downloading..."))
                    expected = int(response.headers.get("content-length") or 0)
                    received = 0
                    async for chunk in response.aiter_bytes():
                        chunks.append(chunk)
                        received += len(chunk)
                        if expected:
                            on_progress(
                                ProgressUpdate(
                                    ExportPhase.FINALIZING,
                                    min(99.0, received / expected * 100.0),
                                    "Downloading...",
                                )
                            )
        except httpx.TimeoutException as exc:
            logger.error("remote_backend.timeout", endpoint=self.endpoint, error=str(exc))
            raise TransportFailure(f"Cloud export timed out: {exc}", cause=exc) from exc
        except httpx.HTTPError as exc:
            logger.error("remote_backend.transport_error", endpoint=self.endpoint, error=str(exc))
            raise TransportFailure(f"Cloud export failed: {exc}", cause=exc) from exc

        output = b"".join(chunks)
        if not output:
            raise ExecutionFailure("Cloud export returned an empty file")
        on_progress(ProgressUpdate(ExportPhase.FINALIZING, 100.0, "Export complete!"))
        logger.info("remote_backend.completed", output_bytes=len(output))
        return output

    async def cleanup(self) -> None:
        # 远端没有本地残留
        return None
