"""时间线结构校验：编译前拒绝非法时间线。"""

from __future__ import annotations

import structlog

from src.domain.errors import ValidationFailure
from src.timeline.models import Timeline

logger = structlog.get_logger(__name__)


def validate_timeline(timeline: Timeline) -> None:
    """校验模型层无法表达的结构约束。

    时间窗口与尺寸的取值约束在模型构造时已校验；叠加窗口超出底轨时长是允许的，
    渲染时自然不可见。

    Raises:
        ValidationFailure: 没有底轨视频，或叠加视频缺少尺寸
    """
    if not timeline.clips:
        logger.warning("timeline.no_clips")
        raise ValidationFailure("timeline must contain at least one clip")

    for idx, clip in enumerate(timeline.overlay_clips, start=1):
        if clip.width is None or clip.height is None:
            logger.warning("timeline.overlay_clip_missing_size", clip_index=idx, clip_id=clip.id)
            raise ValidationFailure(f"overlay clip {idx} ({clip.id}) requires width and height")
