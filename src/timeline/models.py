"""时间线数据模型

编辑器在每次导出前组装一份 Timeline 快照，导出期间只读。
对外（JSON / 远端 metadata）使用 camelCase 字段名，Python 侧使用 snake_case。
"""

from __future__ import annotations

import math
from typing import Any, Mapping, Optional, Sequence
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from src.domain.errors import ValidationFailure

DEFAULT_FONT_SIZE = 24
DEFAULT_TEXT_COLOR = "#FFFFFF"
DEFAULT_TEXT_WIDTH = 100
DEFAULT_TEXT_HEIGHT = 50


def round_half_up(value: float) -> int:
    """四舍五入到整数（.5 向正无穷），与编辑器端的取整方式一致。"""
    return math.floor(value + 0.5)


def _coerce_pixel(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return round_half_up(value)
    if isinstance(value, str):
        try:
            return round_half_up(float(value))
        except ValueError:
            return value
    return value


def _metadata_list(metadata: Mapping[str, Any], key: str) -> list[Any]:
    value = metadata.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationFailure(f"metadata field {key!r} must be a list")
    return list(value)


class _TimelineEntity(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    id: str = Field(default_factory=lambda: uuid4().hex)
    start_time: float = Field(..., ge=0)
    end_time: float

    @model_validator(mode="after")
    def check_window(self) -> "_TimelineEntity":
        # 非法窗口直接拒绝，不做截断
        if self.end_time <= self.start_time:
            raise ValueError(
                f"endTime ({self.end_time}) must be greater than startTime ({self.start_time})"
            )
        return self

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class Clip(_TimelineEntity):
    """视频片段。index 0 为底轨，其余为叠加轨。"""

    source_ref: str = Field(..., min_length=1)
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    x: int = 0
    y: int = 0

    @field_validator("x", "y", "width", "height", mode="before")
    @classmethod
    def coerce_pixels(cls, value: Any) -> Any:
        return _coerce_pixel(value)


class ImageOverlay(_TimelineEntity):
    source_ref: str = Field(..., min_length=1)
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    x: int
    y: int

    @field_validator("x", "y", "width", "height", mode="before")
    @classmethod
    def coerce_pixels(cls, value: Any) -> Any:
        return _coerce_pixel(value)


class TextOverlay(_TimelineEntity):
    description: str
    font_size: int = Field(default=DEFAULT_FONT_SIZE, gt=0)
    color: str = Field(default=DEFAULT_TEXT_COLOR, pattern=r"^#?[0-9A-Fa-f]{6}$")
    x: int
    y: int
    width: int = Field(default=DEFAULT_TEXT_WIDTH, gt=0)
    height: int = Field(default=DEFAULT_TEXT_HEIGHT, gt=0)

    @field_validator("x", "y", "width", "height", "font_size", mode="before")
    @classmethod
    def coerce_pixels(cls, value: Any) -> Any:
        return _coerce_pixel(value)

    @field_validator("color", mode="after")
    @classmethod
    def normalize_color(cls, value: str) -> str:
        return "#" + value.lstrip("#").upper()

    @property
    def hex_color(self) -> str:
        """drawtext 使用的 0xRRGGBB 形式。"""
        return "0x" + self.color.lstrip("#")


class Timeline(BaseModel):
    """一次导出的完整时间线快照。"""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    canvas_width: int = Field(..., gt=0)
    canvas_height: int = Field(..., gt=0)
    clips: tuple[Clip, ...] = ()
    images: tuple[ImageOverlay, ...] = ()
    texts: tuple[TextOverlay, ...] = ()

    @property
    def base_clip(self) -> Clip:
        return self.clips[0]

    @property
    def overlay_clips(self) -> tuple[Clip, ...]:
        return self.clips[1:]

    @property
    def input_count(self) -> int:
        """ffmpeg 输入数量：先视频后图片。"""
        return len(self.clips) + len(self.images)

    @property
    def duration_hint(self) -> float:
        """所有实体中最晚的结束时间，无法探测底轨时长时用作进度估算。"""
        ends = [entity.end_time for entity in (*self.clips, *self.images, *self.texts)]
        return max(ends) if ends else 0.0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Timeline":
        """从编辑器传入的字典构造，结构错误统一转为 ValidationFailure。"""
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise ValidationFailure(f"invalid timeline: {exc}", cause=exc) from exc

    def to_metadata(self) -> dict[str, list[dict[str, Any]]]:
        """远端 worker 使用的 metadata（不含素材引用，素材以文件形式单独上传）。"""
        return {
            "videos": [
                clip.model_dump(by_alias=True, exclude={"source_ref"}) for clip in self.clips
            ],
            "images": [
                image.model_dump(by_alias=True, exclude={"source_ref"}) for image in self.images
            ],
            "texts": [text.model_dump(by_alias=True) for text in self.texts],
        }

    @classmethod
    def from_metadata(
        cls,
        metadata: Mapping[str, Any],
        *,
        canvas_width: int,
        canvas_height: int,
        clip_refs: Sequence[str],
        image_refs: Sequence[str],
    ) -> "Timeline":
        """根据远端 metadata 与已落盘的素材路径重建时间线。

        Raises:
            ValidationFailure: metadata 结构非法或素材数量与 metadata 不一致
        """
        videos = _metadata_list(metadata, "videos")
        images = _metadata_list(metadata, "images")
        texts = _metadata_list(metadata, "texts")
        if len(videos) != len(clip_refs):
            raise ValidationFailure(
                f"metadata lists {len(videos)} videos but {len(clip_refs)} files were uploaded"
            )
        if len(images) != len(image_refs):
            raise ValidationFailure(
                f"metadata lists {len(images)} images but {len(image_refs)} files were uploaded"
            )
        return cls.from_payload(
            {
                "canvasWidth": canvas_width,
                "canvasHeight": canvas_height,
                "clips": [{**video, "sourceRef": ref} for video, ref in zip(videos, clip_refs)],
                "images": [{**image, "sourceRef": ref} for image, ref in zip(images, image_refs)],
                "texts": texts,
            }
        )
