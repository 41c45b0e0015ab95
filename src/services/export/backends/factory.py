"""导出后端工厂"""

from typing import Optional

from src.domain.models.export_job import BackendKind
from src.infra.config.settings import AppSettings
from src.services.export.backends.protocol import ExportBackend


def create_backend(kind: BackendKind | str, settings: Optional[AppSettings] = None) -> ExportBackend:
    """创建导出后端实例

    Args:
        kind: 后端类型，可选值：
            - "local": 进程内 FFmpeg 引擎（共享进程级单例）
            - "remote": 远端 worker 的 /process 接口
        settings: 配置，None 时使用全局配置

    Returns:
        实现 ExportBackend 协议的后端实例

    Raises:
        ValueError: 如果指定了未知的后端类型
    """
    kind = BackendKind(kind)

    if kind is BackendKind.LOCAL:
        from src.services.export.backends.local import LocalExportBackend

        return LocalExportBackend(settings=settings)
    elif kind is BackendKind.REMOTE:
        from src.services.export.backends.remote import RemoteExportBackend

        return RemoteExportBackend(settings=settings)
    else:
        raise ValueError(f"Unknown export backend: {kind}")
