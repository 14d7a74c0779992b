import threading
import time
from typing import Any


_lock = threading.Lock()
_COUNTERS = (
    "sessions_started",
    "sessions_completed",
    "sessions_failed",
    "sessions_used_fallback",
    "questions_asked",
    "answers_dispatched",
    "interventions_emitted",
    "uploads_failed",
    "evaluations_timed_out",
    "evaluations_failed",
    "submissions_failed",
    "duplicate_responses_ignored",
    "deferred_question_applies",
    "synthesis_failures",
)
_metrics: dict[str, float] = {name: 0.0 for name in _COUNTERS}
_metrics.update({
    "evaluation_latency_total_ms": 0.0,
    "evaluation_latency_samples": 0.0,
})


def increment_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = float(_metrics.get(key, 0.0)) + float(amount)


def set_metric(name: str, value: float) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = max(0.0, float(value))


def observe_evaluation_latency_ms(value_ms: float) -> None:
    latency = max(0.0, float(value_ms or 0.0))
    with _lock:
        _metrics["evaluation_latency_total_ms"] = float(_metrics.get("evaluation_latency_total_ms", 0.0)) + latency
        _metrics["evaluation_latency_samples"] = float(_metrics.get("evaluation_latency_samples", 0.0)) + 1.0


def reset_metrics() -> None:
    with _lock:
        for key in list(_metrics.keys()):
            _metrics[key] = 0.0


def get_metrics_snapshot(extra: dict[str, Any] | None = None) -> dict[str, Any]:
    with _lock:
        data = dict(_metrics)

    latency_samples = max(1.0, float(data.get("evaluation_latency_samples") or 0.0))

    payload: dict[str, Any] = {"generated_at": time.time()}
    for name in _COUNTERS:
        payload[name] = int(data.get(name) or 0.0)
    payload["evaluation_latency_samples"] = int(data.get("evaluation_latency_samples") or 0.0)
    payload["avg_evaluation_latency_ms"] = round(
        float(data.get("evaluation_latency_total_ms") or 0.0) / latency_samples, 2
    )

    if extra:
        payload.update(extra)
    return payload
