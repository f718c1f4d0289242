"""Counters and latency summaries for calls to the AWS APIs."""

from __future__ import annotations

import threading
import time
from typing import Iterable

from vpccni.ec2api import AWSError


class MetricVec:
    """A metric split by a fixed set of labels.

    Each distinct combination of label values keeps its own number of
    samples and running total. Counters are incremented with ``inc``;
    summaries take samples with ``observe``.
    """

    def __init__(self, name: str, description: str, label_names: Iterable[str]) -> None:
        self.name = name
        self.description = description
        self.label_names = tuple(label_names)
        self._series: dict[tuple[str, ...], list[float]] = {}
        self._lock = threading.Lock()

    def _key(self, labels: dict) -> tuple[str, ...]:
        if set(labels) != set(self.label_names):
            raise ValueError(
                f"{self.name}: expected labels {sorted(self.label_names)}, got {sorted(labels)}"
            )
        return tuple(str(labels[name]) for name in self.label_names)

    def _add(self, key: tuple[str, ...], amount: float) -> None:
        with self._lock:
            series = self._series.setdefault(key, [0.0, 0.0])
            series[0] += 1
            series[1] += amount

    def inc(self, **kwargs: str) -> None:
        """Add one to the counter for these labels."""
        self._add(self._key(kwargs), 1.0)

    def observe(self, value: float, **kwargs: str) -> None:
        """Record one sample for these labels."""
        self._add(self._key(kwargs), float(value))

    def value(self, **kwargs: str) -> float:
        """Return the running total for these labels (0 when never touched)."""
        key = self._key(kwargs)
        with self._lock:
            return self._series.get(key, [0.0, 0.0])[1]

    def count(self, **kwargs: str) -> int:
        """Return how many increments or samples these labels received."""
        key = self._key(kwargs)
        with self._lock:
            return int(self._series.get(key, [0.0, 0.0])[0])


AWS_API_LATENCY = MetricVec(
    "awscni_aws_api_latency_ms", "AWS API call latency in ms", ("api", "error")
)
AWS_API_ERR = MetricVec(
    "awscni_aws_api_error_count", "The number of times AWS API returns an error", ("api", "error")
)
AWS_UTILS_ERR = MetricVec(
    "awscni_aws_utils_error_count",
    "The number of errors not handled in awsutils library",
    ("fn", "error"),
)


def _ms_since(start: float) -> float:
    return float(int((time.monotonic() - start) * 1000))


def api_error_inc(api: str, err: BaseException) -> None:
    """Count an AWS API error by its code; errors without a code are ignored."""
    if isinstance(err, AWSError):
        AWS_API_ERR.inc(api=api, error=err.code)


def utils_error_inc(fn: str, err: BaseException) -> None:
    """Count an error that the caller could not handle."""
    AWS_UTILS_ERR.inc(fn=fn, error=str(err))


def record_latency(api: str, failed: bool, start: float) -> None:
    """Record the whole milliseconds elapsed since ``start`` (a ``time.monotonic`` value)."""
    AWS_API_LATENCY.observe(_ms_since(start), api=api, error="true" if failed else "false")