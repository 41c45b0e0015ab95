from __future__ import annotations

from src.domain.models.export_job import BackendKind, ExportPhase, ExportProgress, ProgressUpdate
from src.domain.services.progress_tracker import ProgressTracker, map_to_band


def test_map_to_band() -> None:
    assert map_to_band(ExportPhase.CLASSIFYING, 0) == 0
    assert map_to_band(ExportPhase.CLASSIFYING, 100) == 10
    assert map_to_band(ExportPhase.PREPARING, 50) == 30
    assert map_to_band(ExportPhase.PROCESSING, 150) == 90
    assert map_to_band(ExportPhase.FINALIZING, -10) == 90


def test_progress_never_decreases_and_completes_at_100() -> None:
    events: list[ExportProgress] = []
    tracker = ProgressTracker(events.append)
    tracker.bind_backend(BackendKind.LOCAL)

    tracker.report(ExportPhase.CLASSIFYING, 100, "Processing locally (1.00MB)...")
    tracker.on_backend_update(ProgressUpdate(ExportPhase.PROCESSING, 40, "Processing... 40%"))
    # 阶段回退时进度保持不变
    tracker.on_backend_update(ProgressUpdate(ExportPhase.PREPARING, 10, "Loading images..."))
    tracker.on_backend_update(ProgressUpdate(ExportPhase.PROCESSING, 20, "Processing... 20%"))
    tracker.complete()

    values = [event.progress for event in events]
    assert values == sorted(values)
    assert values[-1] == 100.0
    assert events[-1].message == "Export complete!"
    assert events[2].message == "Loading images..."
    assert all(event.backend is BackendKind.LOCAL for event in events)
    assert tracker.value == 100.0


def test_callback_errors_do_not_break_tracking() -> None:
    def boom(event: ExportProgress) -> None:
        raise RuntimeError("ui went away")

    tracker = ProgressTracker(boom)
    tracker.report(ExportPhase.PREPARING, 100, "Upload prepared")
    tracker.complete()

    assert [event.progress for event in tracker.history] == [50.0, 100.0]
