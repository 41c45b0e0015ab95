"""导出编排：分类 → 编译 → 执行 → 清理。

状态机 IDLE → CLASSIFYING → COMPILING → EXECUTING → CLEANUP → SUCCEEDED / FAILED。
同一实例同时只允许一个导出，并发请求直接拒绝（ExportBusyFailure）。
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Mapping

import structlog

from src.domain.errors import (
    CancelledFailure,
    ExecutionFailure,
    ExportBusyFailure,
    ExportFailure,
)
from src.domain.models.export_job import (
    BackendKind,
    ExportPhase,
    ExportProgressCallback,
    ExportResult,
    ExportState,
)
from src.domain.services.progress_tracker import ProgressTracker
from src.infra.config.settings import AppSettings, get_settings
from src.infra.observability.export_metrics import (
    observe_export_duration,
    observe_payload_size,
    record_export_outcome,
)
from src.pipelines.rendering.filter_graph import compile_timeline
from src.services.export.backends.factory import create_backend
from src.services.export.backends.local import LocalExportBackend
from src.services.export.backends.protocol import ExportBackend
from src.services.export.size_classifier import SizeClassifier
from src.timeline.models import Timeline
from src.timeline.validation import validate_timeline

logger = structlog.get_logger(__name__)


class ExportOrchestrator:
    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        classifier: SizeClassifier | None = None,
        backends: Mapping[BackendKind, ExportBackend] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._classifier = classifier or SizeClassifier(settings=self._settings)
        self._backends: dict[BackendKind, ExportBackend] = dict(backends or {})
        self._state = ExportState.IDLE
        self._active: asyncio.Task[ExportResult] | None = None

    @property
    def state(self) -> ExportState:
        return self._state

    @property
    def is_exporting(self) -> bool:
        return self._active is not None

    def backend_for(self, kind: BackendKind) -> ExportBackend:
        if kind not in self._backends:
            self._backends[kind] = create_backend(kind, settings=self._settings)
        return self._backends[kind]

    async def preload(self) -> None:
        """提前加载本地引擎，失败只记录日志。"""
        backend = self.backend_for(BackendKind.LOCAL)
        if not isinstance(backend, LocalExportBackend):
            return
        try:
            await backend.preload()
            logger.info("export.preload_succeeded")
        except ExportFailure as exc:
            logger.warning("export.preload_failed", error=exc.message)

    def cancel(self) -> bool:
        """取消进行中的导出；export_timeline 会以 CancelledFailure 结束。"""
        if self._active is None or self._active.done():
            return False
        self._active.cancel()
        logger.info("export.cancel_requested", state=self._state.value)
        return True

    async def export_timeline(
        self,
        timeline: Timeline | Mapping[str, Any],
        on_progress: ExportProgressCallback | None = None,
    ) -> ExportResult:
        """导出时间线。

        Args:
            timeline: 时间线快照（或编辑器传来的字典）
            on_progress: 合并后的进度回调，0-100 单调不减，成功时以 100 结束

        Returns:
            ExportResult（输出字节与实际使用的后端）

        Raises:
            ExportFailure: 统一失败类型之一
        """
        if self._active is not None:
            raise ExportBusyFailure("an export is already in progress")

        if not isinstance(timeline, Timeline):
            timeline = Timeline.from_payload(timeline)
        validate_timeline(timeline)

        task = asyncio.create_task(self._run(timeline, ProgressTracker(on_progress)))
        self._active = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise CancelledFailure("export was cancelled") from None
        finally:
            self._active = None

    async def _run(self, timeline: Timeline, tracker: ProgressTracker) -> ExportResult:
        started = time.perf_counter()
        backend_kind: BackendKind | None = None
        log = logger.bind(
            clips=len(timeline.clips), images=len(timeline.images), texts=len(timeline.texts)
        )
        log.info("export.started")

        try:
            self._state = ExportState.CLASSIFYING
            tracker.report(ExportPhase.CLASSIFYING, 0.0, "Checking file size...")
            payloads = await self._classifier.classify(timeline, tracker.on_backend_update)
            backend_kind = self._classifier.select(payloads)
            tracker.bind_backend(backend_kind)
            observe_payload_size(payloads.total_bytes, backend=backend_kind.value)
            log = log.bind(backend=backend_kind.value, total_bytes=payloads.total_bytes)
            log.info("export.backend_selected", threshold=self._classifier.threshold)
            if backend_kind is BackendKind.LOCAL:
                tracker.report(
                    ExportPhase.CLASSIFYING, 100.0, f"Processing locally ({payloads.size_mb}MB)..."
                )
            else:
                limit_mb = self._classifier.threshold / (1024 * 1024)
                tracker.report(
                    ExportPhase.CLASSIFYING,
                    100.0,
                    f"File size ({payloads.size_mb}MB) exceeds {limit_mb:g}MB. Using cloud export...",
                )

            self._state = ExportState.COMPILING
            graph = compile_timeline(timeline)
            log.info("export.compiled", nodes=len(graph.nodes))

            self._state = ExportState.EXECUTING
            backend = self.backend_for(backend_kind)
            try:
                output = await backend.execute(graph, timeline, payloads, tracker.on_backend_update)
            finally:
                self._state = ExportState.CLEANUP
                await self._cleanup(backend, log)
        except asyncio.CancelledError:
            self._finish(ExportState.FAILED, backend_kind, "cancelled", started)
            log.warning("export.cancelled")
            raise
        except ExportFailure as exc:
            self._finish(ExportState.FAILED, backend_kind, "failed", started, reason=exc.kind)
            log.error("export.failed", kind=exc.kind, error=exc.message)
            raise
        except Exception as exc:
            self._finish(ExportState.FAILED, backend_kind, "failed", started, reason="unexpected")
            log.error("export.unexpected_error", error=str(exc), exc_info=True)
            raise ExecutionFailure(f"Export failed: {exc}", cause=exc) from exc

        elapsed_ms = self._finish(ExportState.SUCCEEDED, backend_kind, "succeeded", started)
        tracker.complete()
        log.info("export.completed", output_bytes=len(output), elapsed_ms=round(elapsed_ms, 1))
        return ExportResult(
            output=output,
            backend=backend_kind,
            total_bytes=payloads.total_bytes,
            elapsed_ms=elapsed_ms,
        )

    async def _cleanup(self, backend: ExportBackend, log: Any) -> None:
        try:
            await backend.cleanup()
        except Exception as exc:  # noqa: BLE001
            log.warning("export.cleanup_failed", error=str(exc))

    def _finish(
        self,
        state: ExportState,
        backend: BackendKind | None,
        outcome: str,
        started: float,
        *,
        reason: str | None = None,
    ) -> float:
        self._state = state
        elapsed_ms = (time.perf_counter() - started) * 1000
        backend_label = backend.value if backend else None
        record_export_outcome(backend=backend_label, outcome=outcome, reason=reason)
        observe_export_duration(elapsed_ms, backend=backend_label)
        return elapsed_ms
