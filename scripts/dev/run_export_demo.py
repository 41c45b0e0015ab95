#!/usr/bin/env python
"""本地导出 Demo：读取时间线 JSON，自动选择本地 / 远端后端并写出 MP4。"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:  # pragma: no cover - 路径注入
    sys.path.insert(0, str(REPO_ROOT))

from src.domain.errors import ExportFailure  # noqa: E402
from src.domain.models.export_job import ExportProgress  # noqa: E402
from src.infra.observability.otel import configure_logging  # noqa: E402
from src.services.export.orchestrator import ExportOrchestrator  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="导出一条时间线（JSON）为 MP4")
    parser.add_argument("timeline", type=Path, help="时间线 JSON 文件（camelCase 字段）")
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("artifacts/exports/final_video.mp4"),
        help="输出文件路径（默认 artifacts/exports/final_video.mp4）",
    )
    parser.add_argument("--preload", action="store_true", help="导出前预加载本地 FFmpeg 引擎")
    return parser


def _print_progress(event: ExportProgress) -> None:
    print(f"[{event.progress:5.1f}%] {event.message}")


async def run(timeline_path: Path, output: Path, preload: bool) -> int:
    payload = json.loads(timeline_path.read_text(encoding="utf-8"))
    orchestrator = ExportOrchestrator()
    if preload:
        await orchestrator.preload()
    try:
        result = await orchestrator.export_timeline(payload, _print_progress)
    except ExportFailure as exc:
        print(f"导出失败（{exc.kind}）：{exc.message}", file=sys.stderr)
        return 1

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(result.output)
    print(f"导出完成：{output}（{result.size_mb:.2f}MB，后端 {result.backend.value}）")
    return 0


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    configure_logging()
    sys.exit(asyncio.run(run(args.timeline, args.output, args.preload)))


if __name__ == "__main__":
    main()
