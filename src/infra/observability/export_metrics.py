"""导出流程指标的 OpenTelemetry 封装。

提供 Counter/Histogram helper，按后端与结果维度推送导出指标。
"""

from __future__ import annotations

from typing import Any

from opentelemetry import metrics
from opentelemetry.metrics import Meter

meter: Meter = metrics.get_meter("timeline_export.export")

export_total = meter.create_counter(
    name="export_total",
    description="导出任务结束次数（按后端与结果区分）",
    unit="exports",
)

export_duration_histogram = meter.create_histogram(
    name="export_duration_ms",
    description="单次导出从分类到结束的耗时",
    unit="ms",
)

export_payload_bytes_histogram = meter.create_histogram(
    name="export_payload_bytes",
    description="单次导出引用的素材总字节数",
    unit="By",
)

engine_load_total = meter.create_counter(
    name="export_engine_load_total",
    description="本地引擎加载尝试次数",
    unit="loads",
)


def record_export_outcome(*, backend: str | None, outcome: str, reason: str | None = None) -> None:
    """记录一次导出的最终结果。

    Args:
        backend: 实际使用的后端（分类前失败时为 None）
        outcome: succeeded / failed / cancelled
        reason: 失败类型名（可选）
    """
    labels: dict[str, Any] = {"outcome": outcome}
    if backend:
        labels["backend"] = backend
    if reason:
        labels["reason"] = reason
    export_total.add(1, attributes=labels)


def observe_export_duration(duration_ms: float, *, backend: str | None) -> None:
    labels: dict[str, Any] = {}
    if backend:
        labels["backend"] = backend
    export_duration_histogram.record(duration_ms, attributes=labels)


def observe_payload_size(total_bytes: int, *, backend: str) -> None:
    export_payload_bytes_histogram.record(total_bytes, attributes={"backend": backend})


def add_engine_load(outcome: str) -> None:
    engine_load_total.add(1, attributes={"outcome": outcome})
