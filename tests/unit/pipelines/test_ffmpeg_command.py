from __future__ import annotations

from src.pipelines.rendering.ffmpeg_command import (
    OUTPUT_FILE_NAME,
    build_ffmpeg_args,
    workspace_input_names,
)
from src.pipelines.rendering.filter_graph import compile_timeline


def test_workspace_input_names_order(clip_factory, image_factory, timeline_factory) -> None:
    clips = [clip_factory(), clip_factory(source_ref="b.mp4", width=10, height=10)]
    timeline = timeline_factory(clips=clips, images=[image_factory()])

    assert workspace_input_names(timeline) == ["input0.mp4", "input1.mp4", "image0.png"]


def test_build_args_encodes_mp4_h264_aac(image_factory, timeline_factory) -> None:
    timeline = timeline_factory(images=[image_factory()])
    graph = compile_timeline(timeline)
    args = build_ffmpeg_args(graph, workspace_input_names(timeline), OUTPUT_FILE_NAME)

    assert args[:2] == ["-y", "-hide_banner"]
    assert "-progress" not in args
    assert args[2:6] == ["-i", "input0.mp4", "-i", "image0.png"]
    assert args[args.index("-filter_complex") + 1] == graph.serialize()
    maps = [args[idx + 1] for idx, value in enumerate(args) if value == "-map"]
    assert maps == ["[outv]", "0:a?"]
    assert args[args.index("-c:v") + 1] == "libx264"
    assert args[args.index("-preset") + 1] == "fast"
    assert args[args.index("-crf") + 1] == "23"
    assert args[args.index("-c:a") + 1] == "aac"
    assert args[args.index("-b:a") + 1] == "128k"
    assert args[args.index("-movflags") + 1] == "+faststart"
    assert args[-1] == OUTPUT_FILE_NAME


def test_build_args_with_progress_and_preset(timeline_factory) -> None:
    graph = compile_timeline(timeline_factory())
    args = build_ffmpeg_args(
        graph, ["input0.mp4"], "out.mp4", preset="medium", crf=20, report_progress=True
    )

    assert args[2:5] == ["-progress", "pipe:1", "-nostats"]
    assert args[args.index("-preset") + 1] == "medium"
    assert args[args.index("-crf") + 1] == "20"
