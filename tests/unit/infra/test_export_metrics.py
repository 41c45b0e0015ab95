from __future__ import annotations

import pytest

from src.infra.observability import export_metrics as metrics


class DummyCounter:
    def __init__(self) -> None:
        self.calls: list[tuple[int, dict]] = []

    def add(self, value: int, attributes: dict | None = None) -> None:
        self.calls.append((value, attributes or {}))


class DummyHistogram:
    def __init__(self) -> None:
        self.calls: list[tuple[float, dict]] = []

    def record(self, value: float, attributes: dict | None = None) -> None:
        self.calls.append((value, attributes or {}))


def test_export_metric_helpers(monkeypatch: pytest.MonkeyPatch) -> None:
    total = DummyCounter()
    duration = DummyHistogram()
    payload = DummyHistogram()
    engine = DummyCounter()

    monkeypatch.setattr(metrics, "export_total", total)
    monkeypatch.setattr(metrics, "export_duration_histogram", duration)
    monkeypatch.setattr(metrics, "export_payload_bytes_histogram", payload)
    monkeypatch.setattr(metrics, "engine_load_total", engine)

    metrics.record_export_outcome(backend="local", outcome="failed", reason="execution")
    metrics.record_export_outcome(backend=None, outcome="failed", reason="classification")
    metrics.observe_export_duration(812.5, backend="remote")
    metrics.observe_payload_size(1024, backend="local")
    metrics.add_engine_load("succeeded")

    assert total.calls == [
        (1, {"outcome": "failed", "backend": "local", "reason": "execution"}),
        (1, {"outcome": "failed", "reason": "classification"}),
    ]
    assert duration.calls == [(812.5, {"backend": "remote"})]
    assert payload.calls == [(1024, {"backend": "local"})]
    assert engine.calls == [(1, {"outcome": "succeeded"})]
