"""导出执行后端

- local: 进程内 FFmpeg 引擎
- remote: 远端 worker
"""

from src.services.export.backends.factory import create_backend
from src.services.export.backends.protocol import ExportBackend

__all__ = ["ExportBackend", "create_backend"]
