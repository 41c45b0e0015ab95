"""把时间线编译为 FFmpeg filtergraph。

编译结果是有序的节点记录（FilterGraph），最后一步才序列化为
`-filter_complex` 字符串，便于独立校验标签唯一性与终点约束。
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Iterable

import structlog

from src.domain.errors import CompileFailure
from src.timeline.models import Clip, ImageOverlay, TextOverlay, Timeline, round_half_up

logger = structlog.get_logger(__name__)

BASE_LABEL = "base"
TERMINAL_LABEL = "outv"
# 底轨音频（可选），与叠加内容无关
AUDIO_MAP = "0:a?"
NODE_SEPARATOR = ";"

# 转义记号：反斜杠必须最先处理
_ESCAPED_BACKSLASH = "\\\\"
_ESCAPED_QUOTE = "'\\\\\\''"
_ESCAPED_COLON = "\\:"


@dataclass(frozen=True)
class FilterOp:
    """单个滤镜及其参数，例如 scale=w=1280:h=720。"""

    name: str
    args: tuple[tuple[str, str], ...] = ()

    def render(self) -> str:
        if not self.args:
            return self.name
        return f"{self.name}=" + ":".join(f"{key}={value}" for key, value in self.args)


@dataclass(frozen=True)
class GraphNode:
    """filtergraph 中的一步：消费若干标签，产出一个标签。"""

    inputs: tuple[str, ...]
    filters: tuple[FilterOp, ...]
    output: str

    @property
    def operation(self) -> str:
        return self.filters[0].name

    def arg(self, key: str) -> str | None:
        for op in self.filters:
            for name, value in op.args:
                if name == key:
                    return value
        return None

    def render(self) -> str:
        inputs = "".join(f"[{label}]" for label in self.inputs)
        chain = ",".join(op.render() for op in self.filters)
        return f"{inputs}{chain}[{self.output}]"


@dataclass(frozen=True)
class FilterGraph:
    nodes: tuple[GraphNode, ...]
    output_label: str = TERMINAL_LABEL
    audio_map: str = AUDIO_MAP

    @property
    def output_labels(self) -> list[str]:
        return [node.output for node in self.nodes]

    def producers_of(self, label: str) -> list[GraphNode]:
        return [node for node in self.nodes if node.output == label]

    def serialize(self) -> str:
        return NODE_SEPARATOR.join(node.render() for node in self.nodes)


def escape_drawtext(text: str) -> str:
    """转义 drawtext 的 text 参数。

    顺序固定：反斜杠 → 单引号 → 冒号。先处理反斜杠，避免后两步引入的
    反斜杠被再次转义。
    """
    return (
        text.replace("\\", _ESCAPED_BACKSLASH)
        .replace("'", _ESCAPED_QUOTE)
        .replace(":", _ESCAPED_COLON)
    )


def unescape_drawtext(escaped: str) -> str:
    """escape_drawtext 的逆运算。"""
    out: list[str] = []
    idx = 0
    while idx < len(escaped):
        if escaped.startswith(_ESCAPED_QUOTE, idx):
            out.append("'")
            idx += len(_ESCAPED_QUOTE)
        elif escaped.startswith(_ESCAPED_BACKSLASH, idx):
            out.append("\\")
            idx += len(_ESCAPED_BACKSLASH)
        elif escaped.startswith(_ESCAPED_COLON, idx):
            out.append(":")
            idx += len(_ESCAPED_COLON)
        else:
            out.append(escaped[idx])
            idx += 1
    return "".join(out)


def format_seconds(value: float) -> str:
    """2.0 -> "2"，2.50 -> "2.5"。"""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text or "0"


def enable_expression(start: float, end: float) -> str:
    """激活窗口 [start, end)：start 时刻可见，end 时刻起不可见。"""
    return f"'gte(t,{format_seconds(start)})*lt(t,{format_seconds(end)})'"


def top_left(x: int, y: int, width: int, height: int) -> tuple[int, int]:
    """中心坐标换算为左上角坐标，不做画布裁剪。"""
    return round_half_up(x - width / 2), round_half_up(y - height / 2)


def _input_stream(index: int) -> str:
    return f"{index}:v"


def _scale_node(input_index: int, width: int, height: int, output: str) -> GraphNode:
    return GraphNode(
        inputs=(_input_stream(input_index),),
        filters=(FilterOp("scale", (("w", str(width)), ("h", str(height)))),),
        output=output,
    )


def _overlay_node(
    current: str, scaled: str, entity: Clip | ImageOverlay, width: int, height: int, output: str
) -> GraphNode:
    x, y = top_left(entity.x, entity.y, width, height)
    return GraphNode(
        inputs=(current, scaled),
        filters=(
            FilterOp(
                "overlay",
                (
                    ("x", str(x)),
                    ("y", str(y)),
                    ("enable", enable_expression(entity.start_time, entity.end_time)),
                ),
            ),
        ),
        output=output,
    )


def _drawtext_node(current: str, text: TextOverlay, output: str) -> GraphNode:
    x, y = top_left(text.x, text.y, text.width, text.height)
    return GraphNode(
        inputs=(current,),
        filters=(
            FilterOp(
                "drawtext",
                (
                    ("text", f"'{escape_drawtext(text.description)}'"),
                    ("fontsize", str(text.font_size)),
                    ("fontcolor", text.hex_color),
                    ("x", str(x)),
                    ("y", str(y)),
                    ("enable", enable_expression(text.start_time, text.end_time)),
                    ("expansion", "none"),
                ),
            ),
        ),
        output=output,
    )


def compile_timeline(timeline: Timeline) -> FilterGraph:
    """编译时间线为 filtergraph。

    输入流顺序与 ffmpeg 的 `-i` 顺序一致：先全部视频（index 0 为底轨），再全部图片。
    标签按类别命名（v / scaled_v / img / scaled_img / txt），`outv` 只作为终点。

    Raises:
        CompileFailure: 时间线缺少底轨或叠加视频缺少尺寸（校验阶段应已拒绝）
    """
    if not timeline.clips:
        raise CompileFailure("cannot compile a timeline without clips")

    nodes: list[GraphNode] = [
        GraphNode(
            inputs=(_input_stream(0),),
            filters=(
                FilterOp(
                    "scale",
                    (("w", str(timeline.canvas_width)), ("h", str(timeline.canvas_height))),
                ),
                FilterOp("setsar", (("sar", "1"),)),
            ),
            output=BASE_LABEL,
        )
    ]
    current = BASE_LABEL

    for idx, clip in enumerate(timeline.clips[1:], start=1):
        if clip.width is None or clip.height is None:
            raise CompileFailure(f"overlay clip {idx} has no size")
        scaled = f"scaled_v{idx}"
        nodes.append(_scale_node(idx, clip.width, clip.height, scaled))
        nodes.append(_overlay_node(current, scaled, clip, clip.width, clip.height, f"v{idx}"))
        current = f"v{idx}"

    image_offset = len(timeline.clips)
    for idx, image in enumerate(timeline.images):
        scaled = f"scaled_img{idx}"
        nodes.append(_scale_node(image_offset + idx, image.width, image.height, scaled))
        nodes.append(
            _overlay_node(current, scaled, image, image.width, image.height, f"img{idx}")
        )
        current = f"img{idx}"

    last_text = len(timeline.texts) - 1
    for idx, text in enumerate(timeline.texts):
        # 文字节点总在最后，末个文字节点直接写终点标签
        output = TERMINAL_LABEL if idx == last_text else f"txt{idx}"
        nodes.append(_drawtext_node(current, text, output))
        current = output

    if current != TERMINAL_LABEL:
        nodes.append(GraphNode(inputs=(current,), filters=(FilterOp("copy"),), output=TERMINAL_LABEL))

    _check_labels(nodes)
    logger.debug(
        "filter_graph.compiled",
        node_count=len(nodes),
        clips=len(timeline.clips),
        images=len(timeline.images),
        texts=len(timeline.texts),
    )
    return FilterGraph(nodes=tuple(nodes))


def _check_labels(nodes: Iterable[GraphNode]) -> None:
    counts = Counter(node.output for node in nodes)
    duplicates = sorted(label for label, count in counts.items() if count > 1)
    if duplicates:
        raise CompileFailure(f"duplicate output labels: {', '.join(duplicates)}")
    if counts[TERMINAL_LABEL] != 1:
        raise CompileFailure("graph must produce the terminal label exactly once")
