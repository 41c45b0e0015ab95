#!/usr/bin/env python
"""Pytest fixtures for timeline export project."""
# ruff: noqa: E402

import sys
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from src.api.main import app
from src.infra.config.settings import AppSettings
from src.timeline.models import Clip, ImageOverlay, TextOverlay, Timeline


@pytest.fixture(scope="function")
async def app_client() -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def settings_factory(tmp_path: Path) -> Callable[..., AppSettings]:
    """创建指向临时目录的 AppSettings。"""

    def _create(**overrides: Any) -> AppSettings:
        values: dict[str, Any] = {
            "engine_workspace_root": (tmp_path / "engine").as_posix(),
            "worker_tmp_root": (tmp_path / "worker").as_posix(),
            "log_dir": (tmp_path / "logs").as_posix(),
        }
        values.update(overrides)
        return AppSettings(**values)

    return _create


# =============================================================================
# Factory Fixtures for Timeline entities
# =============================================================================


@pytest.fixture
def clip_factory() -> Callable[..., Clip]:
    """创建 Clip 的工厂函数。"""

    def _create(
        source_ref: str = "clips/base.mp4",
        start_time: float = 0.0,
        end_time: float = 10.0,
        **kwargs: Any,
    ) -> Clip:
        return Clip(source_ref=source_ref, start_time=start_time, end_time=end_time, **kwargs)

    return _create


@pytest.fixture
def image_factory() -> Callable[..., ImageOverlay]:
    """创建 ImageOverlay 的工厂函数。"""

    def _create(
        source_ref: str = "images/logo.png",
        start_time: float = 2.0,
        end_time: float = 5.0,
        x: int = 100,
        y: int = 100,
        width: int = 50,
        height: int = 50,
        **kwargs: Any,
    ) -> ImageOverlay:
        return ImageOverlay(
            source_ref=source_ref,
            start_time=start_time,
            end_time=end_time,
            x=x,
            y=y,
            width=width,
            height=height,
            **kwargs,
        )

    return _create


@pytest.fixture
def text_factory() -> Callable[..., TextOverlay]:
    """创建 TextOverlay 的工厂函数。"""

    def _create(
        description: str = "Hello",
        start_time: float = 0.0,
        end_time: float = 3.0,
        x: int = 640,
        y: int = 360,
        **kwargs: Any,
    ) -> TextOverlay:
        return TextOverlay(
            description=description,
            start_time=start_time,
            end_time=end_time,
            x=x,
            y=y,
            **kwargs,
        )

    return _create


@pytest.fixture
def timeline_factory(clip_factory: Callable[..., Clip]) -> Callable[..., Timeline]:
    """创建 Timeline 的工厂函数，默认只有一个 10 秒底轨。"""

    def _create(
        clips: list[Clip] | None = None,
        images: list[ImageOverlay] | None = None,
        texts: list[TextOverlay] | None = None,
        canvas_width: int = 1280,
        canvas_height: int = 720,
    ) -> Timeline:
        return Timeline(
            canvas_width=canvas_width,
            canvas_height=canvas_height,
            clips=tuple(clips if clips is not None else [clip_factory()]),
            images=tuple(images or ()),
            texts=tuple(texts or ()),
        )

    return _create
