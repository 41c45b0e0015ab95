"""导出后端统一接口定义"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from src.domain.models.export_job import BackendKind, BackendProgressCallback
from src.pipelines.rendering.filter_graph import FilterGraph
from src.services.export.size_classifier import InputPayloads
from src.timeline.models import Timeline


@runtime_checkable
class ExportBackend(Protocol):
    """导出执行后端

    本地引擎与远端 worker 都必须实现此协议，orchestrator 只依赖该接口。
    """

    kind: BackendKind

    async def execute(
        self,
        graph: FilterGraph,
        timeline: Timeline,
        payloads: InputPayloads,
        on_progress: BackendProgressCallback,
    ) -> bytes:
        """执行导出

        Args:
            graph: 编译好的 filtergraph（远端 worker 会自行重新编译，只使用 timeline）
            timeline: 时间线快照
            payloads: 分类阶段读取的素材字节
            on_progress: 阶段内进度回调，单调不减

        Returns:
            MP4 字节

        Raises:
            ExportFailure: 统一失败类型之一
        """
        ...

    async def cleanup(self) -> None:
        """释放本次导出占用的资源，可重复调用"""
        ...
