"""素材体积分类：读取所有素材并统计总字节数，决定走本地还是远端。

读取到的素材字节会交给后续的后端复用，避免二次下载。
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

import httpx
import structlog
from anyio import to_thread

from src.domain.errors import ClassificationFailure
from src.domain.models.export_job import (
    BackendKind,
    BackendProgressCallback,
    ExportPhase,
    ProgressUpdate,
)
from src.infra.config.settings import AppSettings, get_settings
from src.timeline.models import Timeline

logger = structlog.get_logger(__name__)

MIB = 1024 * 1024


@dataclass(frozen=True)
class InputPayloads:
    """一次导出的全部素材字节，顺序与时间线一致。"""

    clips: tuple[bytes, ...]
    images: tuple[bytes, ...] = ()

    @property
    def total_bytes(self) -> int:
        return sum(len(data) for data in self.clips) + sum(len(data) for data in self.images)

    @property
    def size_mb(self) -> str:
        return f"{self.total_bytes / MIB:.2f}"


def select_backend(total_bytes: int, threshold: int) -> BackendKind:
    """体积不超过阈值（含边界）走本地，否则走远端。"""
    return BackendKind.LOCAL if total_bytes <= threshold else BackendKind.REMOTE


def _ref_to_path(ref: str) -> Path:
    parsed = urlparse(ref)
    if parsed.scheme == "file":
        return Path(url2pathname(parsed.path))
    return Path(ref)


class PayloadFetcher:
    """按引用读取素材：http(s) 走 httpx，其余按本地路径读取。"""

    def __init__(
        self,
        settings: AppSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client

    async def fetch(self, ref: str) -> bytes:
        if ref.startswith(("http://", "https://")):
            return await self._fetch_remote(ref)
        path = _ref_to_path(ref)
        return await to_thread.run_sync(path.read_bytes)

    async def _fetch_remote(self, url: str) -> bytes:
        if self._client is not None:
            response = await self._client.get(url)
            response.raise_for_status()
            return response.content
        async with httpx.AsyncClient(
            timeout=self._settings.export_fetch_timeout_s, follow_redirects=True
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.content


class SizeClassifier:
    def __init__(
        self,
        fetcher: PayloadFetcher | None = None,
        settings: AppSettings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._fetcher = fetcher or PayloadFetcher(self._settings)

    @property
    def threshold(self) -> int:
        return self._settings.export_local_max_bytes

    async def classify(
        self,
        timeline: Timeline,
        on_progress: BackendProgressCallback | None = None,
    ) -> InputPayloads:
        """读取所有视频与图片素材并统计体积。

        Raises:
            ClassificationFailure: 任一素材无法读取（不会按 0 字节处理）
        """
        refs = [clip.source_ref for clip in timeline.clips] + [
            image.source_ref for image in timeline.images
        ]
        fetched: list[bytes] = []
        for idx, ref in enumerate(refs):
            if on_progress:
                on_progress(
                    ProgressUpdate(
                        phase=ExportPhase.CLASSIFYING,
                        progress=idx / len(refs) * 100.0,
                        message="Checking file size...",
                    )
                )
            try:
                fetched.append(await self._fetcher.fetch(ref))
            except (httpx.HTTPError, httpx.InvalidURL, OSError, ValueError) as exc:
                logger.error("size_classifier.fetch_failed", ref=ref, error=str(exc))
                raise ClassificationFailure(
                    f"could not read payload {ref}: {exc}", cause=exc
                ) from exc

        clip_count = len(timeline.clips)
        payloads = InputPayloads(
            clips=tuple(fetched[:clip_count]), images=tuple(fetched[clip_count:])
        )
        logger.info(
            "size_classifier.measured",
            total_bytes=payloads.total_bytes,
            size_mb=payloads.size_mb,
            payload_count=len(refs),
            threshold=self.threshold,
        )
        if on_progress:
            on_progress(
                ProgressUpdate(
                    phase=ExportPhase.CLASSIFYING,
                    progress=100.0,
                    message=f"Total size {payloads.size_mb}MB",
                )
            )
        return payloads

    def select(self, payloads: InputPayloads) -> BackendKind:
        return select_backend(payloads.total_bytes, self.threshold)
