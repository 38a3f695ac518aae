"""In-process metrics using only the Python standard library.

Counters and histograms are kept in a module-level registry and can be
exported in the Prometheus text exposition format with
:func:`generate_metrics_text`.  The POS runs as a single process, so there
is no push gateway or scrape endpoint; the shell prints the exposition on
request.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Tuple


class Metric:
    """Base class for all metrics."""

    def __init__(self, name: str, description: str, label_names: Iterable[str]):
        self.name = name
        self.description = description
        self.label_names = list(label_names)
        _METRIC_REGISTRY.append(self)

    def _key(self, labels: Dict[str, str]) -> Tuple[str, ...]:
        return tuple(labels.get(k, "") for k in self.label_names)

    def _format_labels(self, label_values: Tuple[str, ...], **more: str) -> str:
        pairs = [f'{name}="{value}"' for name, value in zip(self.label_names, label_values)]
        pairs.extend(f'{name}="{value}"' for name, value in more.items())
        return "{" + ",".join(pairs) + "}" if pairs else ""

    def to_prometheus(self) -> List[str]:
        raise NotImplementedError


class Counter(Metric):
    """Monotonic counter.  ``SALES.inc(type="empty_cart")``"""

    def __init__(self, name: str, description: str, label_names: Iterable[str] = ()):
        super().__init__(name, description, label_names)
        self._values: Dict[Tuple[str, ...], int] = defaultdict(int)

    def inc(self, **labels: str) -> None:
        self._values[self._key(labels)] += 1

    def value(self, **labels: str) -> int:
        return self._values.get(self._key(labels), 0)

    def to_prometheus(self) -> List[str]:
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} counter"]
        for label_values, value in self._values.items():
            lines.append(f"{self.name}{self._format_labels(label_values)} {value}")
        return lines


class Histogram(Metric):
    """Histogram with fixed, ascending bucket upper bounds.

    Values above the largest bucket only show up in the ``+Inf`` bucket.
    """

    def __init__(self, name: str, description: str, label_names: Iterable[str], buckets: Iterable[float]):
        super().__init__(name, description, label_names)
        self.buckets = sorted(float(b) for b in buckets)
        self.counts: Dict[Tuple[str, ...], List[int]] = defaultdict(lambda: [0] * len(self.buckets))
        self.sums: Dict[Tuple[str, ...], float] = defaultdict(float)
        self.total_counts: Dict[Tuple[str, ...], int] = defaultdict(int)

    def observe(self, value: float, **labels: str) -> None:
        key = self._key(labels)
        for idx, upper in enumerate(self.buckets):
            if value <= upper:
                self.counts[key][idx] += 1
        self.total_counts[key] += 1
        self.sums[key] += float(value)

    def to_prometheus(self) -> List[str]:
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} histogram"]
        for label_values, total in self.total_counts.items():
            # counts are already cumulative: observe() bumps every bucket >= value
            for idx, upper in enumerate(self.buckets):
                le = self._format_labels(label_values, le=str(upper))
                lines.append(f"{self.name}_bucket{le} {self.counts[label_values][idx]}")
            lines.append(f"{self.name}_bucket{self._format_labels(label_values, le='+Inf')} {total}")
            label_str = self._format_labels(label_values)
            lines.append(f"{self.name}_sum{label_str} {self.sums[label_values]}")
            lines.append(f"{self.name}_count{label_str} {total}")
        return lines


_METRIC_REGISTRY: List[Metric] = []


def generate_metrics_text() -> bytes:
    """Generate the text representation of all registered metrics."""
    lines: List[str] = []
    for metric in _METRIC_REGISTRY:
        lines.extend(metric.to_prometheus())
    return "\n".join(lines).encode("utf-8")


# -----------------------------------------------------------------------------
# Metrics used by the POS application (see sale_builder.py and app.py).
# -----------------------------------------------------------------------------

SALES_FINALIZED_TOTAL = Counter(
    name="sales_finalized_total",
    description="Total number of sales recorded in the ledger",
)

SALE_FINALIZE_ERROR_TOTAL = Counter(
    name="sale_finalize_error_total",
    description="Rejected sale finalizations, labelled by validation code",
    label_names=["type"],
)

SALE_FINALIZE_DURATION_SECONDS = Histogram(
    name="sale_finalize_duration_seconds",
    description="Duration of sale finalization in seconds",
    label_names=[],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0],
)

RECEIPT_RENDER_TOTAL = Counter(
    name="receipt_render_total",
    description="Sales tickets rendered, labelled by presentation mode",
    label_names=["mode"],
)

RECEIPT_RENDER_ERROR_TOTAL = Counter(
    name="receipt_render_error_total",
    description="Sales ticket rendering failures, labelled by presentation mode",
    label_names=["mode"],
)
