from __future__ import annotations

import itertools
from collections import Counter

import pytest

from src.domain.errors import CompileFailure
from src.pipelines.rendering.filter_graph import (
    BASE_LABEL,
    TERMINAL_LABEL,
    compile_timeline,
    enable_expression,
    escape_drawtext,
    format_seconds,
    top_left,
    unescape_drawtext,
)


def _overlay_clip(clip_factory, idx: int):
    return clip_factory(
        source_ref=f"clips/overlay{idx}.mp4",
        start_time=1.0 + idx,
        end_time=4.0 + idx,
        x=200 + idx,
        y=150,
        width=320,
        height=180,
    )


@pytest.mark.parametrize("n_clips,n_images,n_texts", list(itertools.product([1, 2, 3], [0, 1, 3], [0, 1, 2])))
def test_output_labels_are_unique_and_terminal_is_single(
    clip_factory, image_factory, text_factory, timeline_factory, n_clips, n_images, n_texts
) -> None:
    clips = [clip_factory()] + [_overlay_clip(clip_factory, idx) for idx in range(1, n_clips)]
    images = [image_factory(source_ref=f"images/{idx}.png") for idx in range(n_images)]
    texts = [text_factory(description=f"line {idx}") for idx in range(n_texts)]
    graph = compile_timeline(timeline_factory(clips=clips, images=images, texts=texts))

    counts = Counter(graph.output_labels)
    assert all(count == 1 for count in counts.values())
    assert graph.output_label == TERMINAL_LABEL
    assert len(graph.producers_of(TERMINAL_LABEL)) == 1
    assert graph.nodes[-1].output == TERMINAL_LABEL


def test_single_clip_compiles_to_scale_and_copy(timeline_factory) -> None:
    graph = compile_timeline(timeline_factory())

    assert len(graph.nodes) == 2
    base, terminal = graph.nodes
    assert base.operation == "scale"
    assert base.output == BASE_LABEL
    assert terminal.operation == "copy"
    assert terminal.inputs == (BASE_LABEL,)
    assert terminal.output == TERMINAL_LABEL
    assert graph.serialize() == "[0:v]scale=w=1280:h=720,setsar=sar=1[base];[base]copy[outv]"


def test_image_overlay_gate_and_placement(clip_factory, image_factory, timeline_factory) -> None:
    timeline = timeline_factory(images=[image_factory(start_time=2, end_time=5, x=100, y=100)])
    graph = compile_timeline(timeline)

    scale = graph.producers_of("scaled_img0")[0]
    assert scale.inputs == ("1:v",)
    assert scale.arg("w") == "50"
    assert scale.arg("h") == "50"

    overlay = graph.producers_of("img0")[0]
    assert overlay.operation == "overlay"
    assert overlay.inputs == (BASE_LABEL, "scaled_img0")
    assert overlay.arg("x") == "75"
    assert overlay.arg("y") == "75"
    assert overlay.arg("enable") == "'gte(t,2)*lt(t,5)'"


def test_images_follow_all_clips_in_input_order(clip_factory, image_factory, timeline_factory) -> None:
    clips = [clip_factory(), _overlay_clip(clip_factory, 1)]
    images = [image_factory(source_ref="a.png"), image_factory(source_ref="b.png")]
    graph = compile_timeline(timeline_factory(clips=clips, images=images))

    assert graph.producers_of("scaled_v1")[0].inputs == ("1:v",)
    assert graph.producers_of("scaled_img0")[0].inputs == ("2:v",)
    assert graph.producers_of("scaled_img1")[0].inputs == ("3:v",)
    assert graph.producers_of("img0")[0].inputs == ("v1", "scaled_img0")
    assert graph.producers_of("img1")[0].inputs == ("img0", "scaled_img1")


def test_texts_are_drawn_last_and_final_text_writes_terminal(
    image_factory, text_factory, timeline_factory
) -> None:
    texts = [text_factory(description="first"), text_factory(description="second")]
    graph = compile_timeline(timeline_factory(images=[image_factory()], texts=texts))

    operations = [node.operation for node in graph.nodes]
    assert operations == ["scale", "scale", "overlay", "drawtext", "drawtext"]
    assert graph.nodes[-2].inputs == ("img0",)
    assert graph.nodes[-2].output == "txt0"
    assert graph.nodes[-1].inputs == ("txt0",)
    assert graph.nodes[-1].output == TERMINAL_LABEL


def test_drawtext_arguments(text_factory, timeline_factory) -> None:
    text = text_factory(
        description="Sale", x=640, y=360, width=200, height=60, font_size=48, color="ff0000",
        start_time=1.5, end_time=4,
    )
    node = compile_timeline(timeline_factory(texts=[text])).nodes[-1]

    assert node.arg("text") == "'Sale'"
    assert node.arg("fontsize") == "48"
    assert node.arg("fontcolor") == "0xFF0000"
    assert node.arg("x") == "540"
    assert node.arg("y") == "330"
    assert node.arg("enable") == "'gte(t,1.5)*lt(t,4)'"
    # 文本按字面渲染，% 与反斜杠不再被 drawtext 二次解释
    assert node.arg("expansion") == "none"


def test_colon_in_text_is_neutralized(text_factory, timeline_factory) -> None:
    escaped = escape_drawtext("50% off: now!")
    assert escaped == "50% off\\: now!"

    node = compile_timeline(timeline_factory(texts=[text_factory(description="50% off: now!")])).nodes[-1]
    rendered = node.render()
    # 去掉转义冒号后，剩余的冒号只能是参数分隔符
    arg_section = rendered.split("drawtext=", 1)[1].replace("\\:", "")
    keys = [part.split("=", 1)[0] for part in arg_section.split(":")]
    assert keys == ["text", "fontsize", "fontcolor", "x", "y", "enable", "expansion"]


@pytest.mark.parametrize(
    "text",
    [
        "",
        "plain",
        "\\",
        "'",
        ":",
        "it's 5:00",
        "C:\\path\\to",
        "\\'",
        "\\:",
        "''::\\\\",
        "a\\'b:c\\\\'",
        "'\\''",
    ],
)
def test_escape_round_trip(text: str) -> None:
    assert unescape_drawtext(escape_drawtext(text)) == text


def test_escape_round_trip_exhaustive_short_strings() -> None:
    alphabet = ["\\", "'", ":", "a"]
    for length in range(1, 5):
        for chars in itertools.product(alphabet, repeat=length):
            text = "".join(chars)
            assert unescape_drawtext(escape_drawtext(text)) == text


def test_overlay_clip_without_size_fails(clip_factory, timeline_factory) -> None:
    timeline = timeline_factory(clips=[clip_factory(), clip_factory(source_ref="b.mp4")])
    with pytest.raises(CompileFailure):
        compile_timeline(timeline)


def test_empty_timeline_fails(timeline_factory) -> None:
    with pytest.raises(CompileFailure):
        compile_timeline(timeline_factory(clips=[]))


def test_helpers() -> None:
    assert format_seconds(2.0) == "2"
    assert format_seconds(2.5) == "2.5"
    assert format_seconds(0) == "0"
    assert enable_expression(0, 3.25) == "'gte(t,0)*lt(t,3.25)'"
    assert top_left(100, 100, 50, 50) == (75, 75)
    # 不做画布裁剪
    assert top_left(0, 0, 51, 51) == (-25, -25)
