"""导出任务的状态、进度与结果模型。"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable


class BackendKind(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class ExportState(str, Enum):
    IDLE = "idle"
    CLASSIFYING = "classifying"
    COMPILING = "compiling"
    EXECUTING = "executing"
    CLEANUP = "cleanup"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ExportPhase(str, Enum):
    """进度阶段，每个阶段对应合并进度流中的一个区间。"""

    CLASSIFYING = "classifying"
    PREPARING = "preparing"
    PROCESSING = "processing"
    FINALIZING = "finalizing"


@dataclass(frozen=True)
class ProgressUpdate:
    """后端上报的原始进度，progress 为阶段内 0-100。"""

    phase: ExportPhase
    progress: float
    message: str


@dataclass(frozen=True)
class ExportProgress:
    """合并后对外的进度事件，progress 为全局 0-100 且单调不减。"""

    progress: float
    message: str
    phase: ExportPhase
    backend: BackendKind | None = None


@dataclass(frozen=True)
class ExportResult:
    output: bytes
    backend: BackendKind
    total_bytes: int
    elapsed_ms: float

    @property
    def size_mb(self) -> float:
        return len(self.output) / (1024 * 1024)


BackendProgressCallback = Callable[[ProgressUpdate], None]
ExportProgressCallback = Callable[[ExportProgress], None]
