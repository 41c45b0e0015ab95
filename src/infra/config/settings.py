"""集中化配置管理。"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Literal["dev", "staging", "prod"] = "dev"

    # 导出路由：总素材体积不超过该阈值时走本地引擎（含边界）
    export_local_max_bytes: int = 20 * 1024 * 1024
    export_remote_url: str = "http://127.0.0.1:8000/process"
    export_remote_timeout_s: float = 600.0
    export_fetch_timeout_s: float = 60.0

    # 本地引擎
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    engine_workspace_root: str = "artifacts/engine_tmp"

    # 编码参数（输出固定为 MP4 / H.264 / AAC）
    export_video_preset: str = "fast"
    worker_video_preset: str = "medium"  # 远端 worker 机器更强，用更慢的 preset 换体积
    export_crf: int = 23
    export_audio_bitrate: str = "128k"

    # 远端 worker（/process 接口）
    worker_concurrency_limit: int = 2
    worker_max_upload_bytes: int = 500 * 1024 * 1024
    worker_tmp_root: str = "artifacts/worker_tmp"

    otel_endpoint: str = "http://localhost:4317"
    otel_tracing_enabled: bool = False

    log_dir: str = "logs"
    log_level: str = "INFO"
    log_json_console: bool = False


@lru_cache()
def get_settings() -> AppSettings:
    return AppSettings()


# 便捷别名
settings = get_settings()
