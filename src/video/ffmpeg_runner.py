"""异步执行 ffmpeg / ffprobe。

本地引擎与远端 worker 共用：统一解析 `-progress` 输出，失败时保留 stderr 尾部作为诊断信息。
"""

from __future__ import annotations

import asyncio
from collections import deque
from pathlib import Path
from typing import Callable, Optional, Sequence

import structlog

from src.domain.errors import EngineLoadFailure, ExecutionFailure

logger = structlog.get_logger(__name__)

STDERR_TAIL_LINES = 40


def parse_progress_seconds(line: str) -> Optional[float]:
    """解析 `-progress` 输出中的 out_time_us / out_time_ms 行，返回已处理秒数。

    ffmpeg 的 out_time_ms 实际单位同样是微秒。
    """
    key, sep, value = line.strip().partition("=")
    if not sep or key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        micros = int(value)
    except ValueError:
        return None
    if micros < 0:
        return None
    return micros / 1_000_000


async def run_ffmpeg(
    binary: str,
    args: Sequence[str],
    *,
    cwd: str | Path | None = None,
    duration_s: float | None = None,
    on_progress: Callable[[float], None] | None = None,
    description: str = "",
) -> None:
    """执行 ffmpeg 命令。

    Args:
        binary: ffmpeg 可执行文件
        args: 参数（不含可执行文件名）
        cwd: 工作目录
        duration_s: 预计输出时长，用于把 out_time 换算为 0-100 进度
        on_progress: 进度回调，参数为 0-100，单调不减
        description: 命令描述（用于日志）

    Raises:
        EngineLoadFailure: 找不到 ffmpeg
        ExecutionFailure: ffmpeg 返回非零退出码
    """
    cmd = [binary, *args]
    logger.info("video.ffmpeg", cmd=" ".join(cmd), description=description)
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd) if cwd is not None else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        logger.error("video.ffmpeg_not_found", binary=binary, error=str(exc))
        raise EngineLoadFailure(f"FFmpeg not found: {binary}", cause=exc) from exc

    stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
    last_progress = 0.0

    async def _read_stdout() -> None:
        nonlocal last_progress
        assert process.stdout is not None
        async for raw in process.stdout:
            if on_progress is None or not duration_s:
                continue
            seconds = parse_progress_seconds(raw.decode("utf-8", errors="replace"))
            if seconds is None:
                continue
            progress = min(100.0, seconds / duration_s * 100.0)
            if progress > last_progress:
                last_progress = progress
                on_progress(progress)

    async def _read_stderr() -> None:
        assert process.stderr is not None
        async for raw in process.stderr:
            stderr_tail.append(raw.decode("utf-8", errors="replace").rstrip())

    try:
        await asyncio.gather(_read_stdout(), _read_stderr())
        returncode = await process.wait()
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        logger.info("video.ffmpeg_killed", description=description)
        raise

    if returncode != 0:
        diagnostics = "\n".join(stderr_tail) or "No error output"
        logger.error(
            "video.ffmpeg_failed",
            returncode=returncode,
            description=description,
            stderr=diagnostics[-500:],
        )
        raise ExecutionFailure(
            f"FFmpeg failed with return code {returncode}",
            diagnostics=diagnostics,
        )


async def probe_duration(binary: str, path: str | Path) -> Optional[float]:
    """使用 ffprobe 获取媒体时长（秒），失败返回 None。"""
    try:
        process = await asyncio.create_subprocess_exec(
            binary,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            str(path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await process.communicate()
    except OSError as exc:
        logger.warning("video.probe_duration_failed", error=str(exc), path=str(path))
        return None
    text = stdout.decode("utf-8", errors="replace").strip()
    if process.returncode != 0 or not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


async def probe_version(binary: str) -> str:
    """执行 `ffmpeg -version`，返回首行版本信息。

    Raises:
        EngineLoadFailure: 可执行文件不存在或无法正常运行
    """
    try:
        process = await asyncio.create_subprocess_exec(
            binary,
            "-version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
    except OSError as exc:
        raise EngineLoadFailure(f"Failed to load FFmpeg: {exc}", cause=exc) from exc
    if process.returncode != 0:
        message = stderr.decode("utf-8", errors="replace").strip() or "unknown error"
        raise EngineLoadFailure(f"Failed to load FFmpeg: {message}")
    lines = stdout.decode("utf-8", errors="replace").splitlines()
    return lines[0] if lines else binary
