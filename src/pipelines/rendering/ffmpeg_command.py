"""根据编译好的 filtergraph 生成 ffmpeg 命令行参数。"""

from __future__ import annotations

from typing import Sequence

from src.pipelines.rendering.filter_graph import FilterGraph
from src.timeline.models import Timeline

OUTPUT_FILE_NAME = "output.mp4"


def clip_input_name(index: int) -> str:
    return f"input{index}.mp4"


def image_input_name(index: int) -> str:
    return f"image{index}.png"


def workspace_input_names(timeline: Timeline) -> list[str]:
    """工作区内的输入文件名，顺序与 filtergraph 的输入索引一致。"""
    names = [clip_input_name(idx) for idx in range(len(timeline.clips))]
    names.extend(image_input_name(idx) for idx in range(len(timeline.images)))
    return names


def build_ffmpeg_args(
    graph: FilterGraph,
    inputs: Sequence[str],
    output: str,
    *,
    preset: str = "fast",
    crf: int = 23,
    audio_bitrate: str = "128k",
    report_progress: bool = False,
) -> list[str]:
    """生成不含可执行文件名的参数列表。

    Args:
        graph: 编译结果
        inputs: 输入文件，顺序必须与 graph 的输入索引一致
        output: 输出文件路径
        preset: libx264 preset
        crf: libx264 CRF
        audio_bitrate: AAC 码率
        report_progress: 是否把 `-progress` 键值对输出到 stdout

    Returns:
        ffmpeg 参数列表（MP4 / H.264 / AAC）
    """
    args: list[str] = ["-y", "-hide_banner"]
    if report_progress:
        args.extend(["-progress", "pipe:1", "-nostats"])
    for path in inputs:
        args.extend(["-i", path])
    args.extend(
        [
            "-filter_complex",
            graph.serialize(),
            "-map",
            f"[{graph.output_label}]",
            "-map",
            graph.audio_map,
            "-c:v",
            "libx264",
            "-preset",
            preset,
            "-crf",
            str(crf),
            "-c:a",
            "aac",
            "-b:a",
            audio_bitrate,
            "-movflags",
            "+faststart",
            output,
        ]
    )
    return args
