"""
Observability for rotation steps.
One span per step plus a step counter and a duration histogram.
"""

import time
from contextlib import contextmanager
from typing import Iterator

from opentelemetry import metrics, trace
from opentelemetry.trace import Status, StatusCode

from .contracts import RotationRequest, StepOutcome

tracer = trace.get_tracer("dbrotation.rotation")
meter = metrics.get_meter("dbrotation.rotation")

step_counter = meter.create_counter(
    "rotation.step.count",
    description="Rotation steps handled, by step and outcome",
)

step_duration = meter.create_histogram(
    "rotation.step.duration_ms",
    description="Time taken to handle a rotation step",
    unit="milliseconds",
)


class StepTracker:
    def __init__(self, request: RotationRequest, span):
        self.request = request
        self.span = span
        self.started = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started) * 1000

    def record(self, outcome: str) -> None:
        labels = {"step": self.request.step, "outcome": outcome}
        step_counter.add(1, labels)
        step_duration.record(self.elapsed_ms, labels)
        self.span.set_attribute("rotation.outcome", outcome)


@contextmanager
def track_step(request: RotationRequest) -> Iterator[StepTracker]:
    with tracer.start_as_current_span(
        f"rotation.{request.step}",
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        span.set_attribute("secret.id", request.secret_id)
        span.set_attribute("rotation.token", request.request_token)
        tracker = StepTracker(request, span)
        try:
            yield tracker
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, type(e).__name__))
            tracker.record("failed")
            raise


def record_outcome(tracker: StepTracker, outcome: StepOutcome) -> None:
    tracker.record(outcome.value)
