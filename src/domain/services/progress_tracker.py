"""导出进度合并：把各阶段的原始进度映射到统一区间，保证单调不减。"""

from __future__ import annotations

import structlog

from src.domain.models.export_job import (
    BackendKind,
    ExportPhase,
    ExportProgress,
    ExportProgressCallback,
    ProgressUpdate,
)

logger = structlog.get_logger(__name__)

# 阶段 -> 全局进度区间
PHASE_BANDS: dict[ExportPhase, tuple[float, float]] = {
    ExportPhase.CLASSIFYING: (0.0, 10.0),
    ExportPhase.PREPARING: (10.0, 50.0),
    ExportPhase.PROCESSING: (50.0, 90.0),
    ExportPhase.FINALIZING: (90.0, 100.0),
}


def map_to_band(phase: ExportPhase, progress: float) -> float:
    low, high = PHASE_BANDS[phase]
    clamped = min(100.0, max(0.0, progress))
    return round(low + (high - low) * clamped / 100.0, 2)


class ProgressTracker:
    """单次导出的进度流。

    后端切换或阶段回退时不会出现进度倒退；回调异常只记录日志，进度仅供展示。
    """

    def __init__(self, callback: ExportProgressCallback | None = None) -> None:
        self._callback = callback
        self._last = 0.0
        self._backend: BackendKind | None = None
        self.history: list[ExportProgress] = []

    @property
    def value(self) -> float:
        return self._last

    def bind_backend(self, backend: BackendKind) -> None:
        self._backend = backend

    def report(self, phase: ExportPhase, progress: float, message: str) -> None:
        value = max(self._last, map_to_band(phase, progress))
        self._emit(ExportProgress(progress=value, message=message, phase=phase, backend=self._backend))

    def on_backend_update(self, update: ProgressUpdate) -> None:
        """作为后端的 on_progress 回调使用。"""
        self.report(update.phase, update.progress, update.message)

    def complete(self, message: str = "Export complete!") -> None:
        self._emit(
            ExportProgress(
                progress=100.0, message=message, phase=ExportPhase.FINALIZING, backend=self._backend
            )
        )

    def _emit(self, event: ExportProgress) -> None:
        self._last = event.progress
        self.history.append(event)
        if self._callback is None:
            return
        try:
            self._callback(event)
        except Exception as exc:  # noqa: BLE001
            logger.warning("export.progress_callback_failed", error=str(exc))
