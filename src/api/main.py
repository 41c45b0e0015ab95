from __future__ import annotations

from fastapi import FastAPI

from src.api.v1.routes import process
from src.infra.config.settings import get_settings
from src.infra.observability.otel import configure_logging, configure_tracing

# 配置日志（需要在应用启动前）
configure_logging()

app = FastAPI(title="时间线导出 Worker API")
app.include_router(process.router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """供导出客户端与部署探活使用。"""
    return {"status": "ok"}


@app.on_event("startup")
async def initialize_observability() -> None:
    """按配置启用链路追踪。"""

    settings = get_settings()
    if settings.otel_tracing_enabled:
        configure_tracing()
