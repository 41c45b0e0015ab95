"""导出流程统一的失败类型。

调用方只需按失败类型处理，不关心具体由哪个后端抛出。
"""

from __future__ import annotations


class ExportFailure(Exception):
    """所有导出失败的基类。"""

    kind = "export_failure"

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        if cause is not None:
            self.__cause__ = cause


class ValidationFailure(ExportFailure):
    """时间线结构非法，在编译前拒绝。"""

    kind = "validation"


class ExportBusyFailure(ValidationFailure):
    """同一个 orchestrator 已有导出在进行中。"""

    kind = "busy"


class ClassificationFailure(ExportFailure):
    """素材无法读取或测量体积。"""

    kind = "classification"


class CompileFailure(ExportFailure):
    """合法时间线下不应出现。"""

    kind = "compile"


class EngineLoadFailure(ExportFailure):
    """本地引擎初始化失败，后续导出可重试加载。"""

    kind = "engine_load"


class ExecutionFailure(ExportFailure):
    """引擎或远端 worker 报告处理错误。"""

    kind = "execution"

    def __init__(
        self,
        message: str,
        *,
        diagnostics: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.diagnostics = diagnostics


class TransportFailure(ExportFailure):
    """远端网络 / HTTP 层错误，区别于处理错误。"""

    kind = "transport"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.status_code = status_code


class CancelledFailure(ExportFailure):
    """导出被取消，清理步骤已执行。"""

    kind = "cancelled"
