"""时间线模块

编辑器导出时传入的时间线快照：视频片段、图片叠加与文字叠加。
"""

from src.timeline.models import (
    Clip,
    ImageOverlay,
    TextOverlay,
    Timeline,
)
from src.timeline.validation import validate_timeline

__all__ = [
    "Clip",
    "ImageOverlay",
    "TextOverlay",
    "Timeline",
    "validate_timeline",
]
