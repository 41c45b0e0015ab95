"""本地导出后端：在进程内 FFmpeg 引擎上执行编译好的 filtergraph。"""

from __future__ import annotations

import structlog

from src.domain.errors import ExecutionFailure, ExportFailure
from src.domain.models.export_job import (
    BackendKind,
    BackendProgressCallback,
    ExportPhase,
    ProgressUpdate,
)
from src.infra.config.settings import AppSettings, get_settings
from src.pipelines.rendering.ffmpeg_command import (
    OUTPUT_FILE_NAME,
    build_ffmpeg_args,
    workspace_input_names,
)
from src.pipelines.rendering.filter_graph import FilterGraph
from src.services.export.backends.local_engine import FFmpegEngine, ffmpeg_engine
from src.services.export.size_classifier import InputPayloads
from src.timeline.models import Timeline

logger = structlog.get_logger(__name__)


class LocalExportBackend:
    kind = BackendKind.LOCAL

    def __init__(
        self,
        engine: FFmpegEngine | None = None,
        settings: AppSettings | None = None,
    ) -> None:
        self._engine = engine or ffmpeg_engine
        self._settings = settings or get_settings()

    @property
    def engine(self) -> FFmpegEngine:
        return self._engine

    async def preload(self) -> None:
        await self._engine.load()

    async def execute(
        self,
        graph: FilterGraph,
        timeline: Timeline,
        payloads: InputPayloads,
        on_progress: BackendProgressCallback,
    ) -> bytes:
        """在引擎工作区内写入素材、执行命令并读回 output.mp4。

        工作区在结束时（成功、失败或取消）总会被清空；本地执行按引擎串行。
        """
        if len(payloads.clips) != len(timeline.clips) or len(payloads.images) != len(
            timeline.images
        ):
            raise ExecutionFailure("payload count does not match the timeline")

        on_progress(ProgressUpdate(ExportPhase.PREPARING, 0.0, "Loading FFmpeg..."))
        await self._engine.load()

        names = workspace_input_names(timeline)
        blobs = [*payloads.clips, *payloads.images]
        clip_count = len(payloads.clips)

        async with self._engine.session() as engine:
            try:
                for idx, (name, data) in enumerate(zip(names, blobs)):
                    await engine.write_file(name, data)
                    message = "Loading video files..." if idx < clip_count else "Loading images..."
                    on_progress(
                        ProgressUpdate(ExportPhase.PREPARING, (idx + 1) / len(names) * 100.0, message)
                    )

                duration = await engine.probe_duration(names[0]) or timeline.duration_hint
                args = build_ffmpeg_args(
                    graph,
                    names,
                    OUTPUT_FILE_NAME,
                    preset=self._settings.export_video_preset,
                    crf=self._settings.export_crf,
                    audio_bitrate=self._settings.export_audio_bitrate,
                    report_progress=True,
                )
                logger.info(
                    "local_backend.exec",
                    inputs=len(names),
                    nodes=len(graph.nodes),
                    duration_s=duration,
                )
                on_progress(ProgressUpdate(ExportPhase.PROCESSING, 0.0, "Processing video..."))
                await engine.exec(
                    args,
                    duration_s=duration,
                    on_progress=lambda pct: on_progress(
                        ProgressUpdate(ExportPhase.PROCESSING, pct, f"Processing... {round(pct)}%")
                    ),
                )

                on_progress(ProgressUpdate(ExportPhase.FINALIZING, 0.0, "Reading output..."))
                output = await engine.read_file(OUTPUT_FILE_NAME)
            except ExportFailure:
                raise
            except OSError as exc:
                logger.error("local_backend.workspace_error", error=str(exc))
                raise ExecutionFailure(f"Video processing failed: {exc}", cause=exc) from exc

        on_progress(ProgressUpdate(ExportPhase.FINALIZING, 100.0, "Complete!"))
        logger.info("local_backend.completed", output_bytes=len(output))
        return output

    async def cleanup(self) -> None:
        await self._engine.purge_exclusive()
