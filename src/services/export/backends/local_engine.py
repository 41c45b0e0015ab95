"""本地 FFmpeg 引擎：进程内只加载一次，独占一个私有工作区。

加载状态显式建模为 UNLOADED / LOADING / LOADED / FAILED：
并发的首批调用方共享同一次加载，加载失败不会被缓存，下次调用会重新加载。
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Sequence

import structlog
from anyio import to_thread

from src.domain.errors import EngineLoadFailure
from src.infra.config.settings import AppSettings, get_settings
from src.infra.observability.export_metrics import add_engine_load
from src.video.ffmpeg_runner import probe_duration, probe_version, run_ffmpeg

logger = structlog.get_logger(__name__)


class EngineLoadState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


class FFmpegEngine:
    def __init__(self, settings: AppSettings | None = None) -> None:
        self._settings = settings or get_settings()
        self._state = EngineLoadState.UNLOADED
        self._load_task: asyncio.Task[None] | None = None
        self._exec_lock = asyncio.Lock()
        self._workspace: Path | None = None
        self.version: str | None = None
        self.load_attempts = 0

    @property
    def state(self) -> EngineLoadState:
        return self._state

    @property
    def is_loaded(self) -> bool:
        return self._state is EngineLoadState.LOADED

    @property
    def workspace(self) -> Path:
        if self._workspace is None:
            raise EngineLoadFailure("FFmpeg engine is not loaded")
        return self._workspace

    async def load(self) -> None:
        """加载引擎；已加载时立即返回，加载中则等待同一次加载完成。

        Raises:
            EngineLoadFailure: 本次加载失败（下一次调用会重试）
        """
        if self._state is EngineLoadState.LOADED:
            return
        if self._load_task is None:
            self._state = EngineLoadState.LOADING
            self._load_task = asyncio.create_task(self._load_once())
        # shield：单个等待方被取消不影响共享的加载任务
        await asyncio.shield(self._load_task)

    async def _load_once(self) -> None:
        self.load_attempts += 1
        binary = self._settings.ffmpeg_binary
        logger.info("local_engine.loading", binary=binary, attempt=self.load_attempts)
        try:
            version = await probe_version(binary)
            workspace = await to_thread.run_sync(self._create_workspace)
        except (EngineLoadFailure, OSError) as exc:
            self._state = EngineLoadState.FAILED
            self._load_task = None
            add_engine_load("failed")
            logger.error("local_engine.load_failed", binary=binary, error=str(exc))
            if isinstance(exc, EngineLoadFailure):
                raise
            raise EngineLoadFailure(f"Failed to load FFmpeg: {exc}", cause=exc) from exc

        self.version = version
        self._workspace = workspace
        self._state = EngineLoadState.LOADED
        self._load_task = None
        add_engine_load("succeeded")
        logger.info("local_engine.loaded", version=version, workspace=workspace.as_posix())

    def _create_workspace(self) -> Path:
        root = Path(self._settings.engine_workspace_root)
        root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix="engine-", dir=root.as_posix()))

    def _resolve(self, name: str) -> Path:
        if not name or Path(name).name != name:
            raise ValueError(f"invalid workspace file name: {name!r}")
        return self.workspace / name

    async def write_file(self, name: str, data: bytes) -> None:
        path = self._resolve(name)
        await to_thread.run_sync(path.write_bytes, data)

    async def read_file(self, name: str) -> bytes:
        path = self._resolve(name)
        return await to_thread.run_sync(path.read_bytes)

    async def delete_file(self, name: str) -> None:
        path = self._resolve(name)
        if path.is_dir():
            await to_thread.run_sync(shutil.rmtree, path)
        else:
            await to_thread.run_sync(path.unlink)

    async def list_dir(self) -> list[str]:
        if self._workspace is None:
            return []
        workspace = self._workspace
        return await to_thread.run_sync(lambda: sorted(p.name for p in workspace.iterdir()))

    async def purge(self) -> int:
        """删除工作区内所有文件，返回删除数量。

        单个文件删除失败只记录日志，不抛出。
        """
        removed = 0
        for name in await self.list_dir():
            try:
                await self.delete_file(name)
                removed += 1
            except OSError as exc:
                logger.warning("local_engine.purge_failed", file=name, error=str(exc))
        if removed:
            logger.info("local_engine.purged", removed=removed)
        return removed

    @asynccontextmanager
    async def session(self) -> AsyncIterator["FFmpegEngine"]:
        """独占引擎执行一次导出，结束时（包括失败与取消）清空工作区。"""
        async with self._exec_lock:
            try:
                yield self
            finally:
                await self.purge()

    async def purge_exclusive(self) -> int:
        if not self.is_loaded:
            return 0
        async with self._exec_lock:
            return await self.purge()

    async def probe_duration(self, name: str) -> Optional[float]:
        return await probe_duration(self._settings.ffprobe_binary, self._resolve(name))

    async def exec(
        self,
        args: Sequence[str],
        *,
        duration_s: float | None = None,
        on_progress: Callable[[float], None] | None = None,
    ) -> None:
        await run_ffmpeg(
            self._settings.ffmpeg_binary,
            args,
            cwd=self.workspace,
            duration_s=duration_s,
            on_progress=on_progress,
            description="local export",
        )


# 进程级单例
ffmpeg_engine = FFmpegEngine()
