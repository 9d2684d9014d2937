import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Union

from prometheus_client import Counter, Gauge
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

from nginx_exporter.errors import ErrorType

GAUGE = "gauge"
COUNTER = "counter"

NGINX_UP = 1
NGINX_DOWN = 0

_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

# (key, help, kind)
_STUB_METRICS = (
    ("connections_active", "Active client connections", GAUGE),
    ("connections_accepted", "Accepted client connections", COUNTER),
    ("connections_handled", "Handled client connections", COUNTER),
    ("connections_reading", "Connections where NGINX is reading the request header", GAUGE),
    ("connections_writing", "Connections where NGINX is writing the response back to the client", GAUGE),
    ("connections_waiting", "Idle client connections", GAUGE),
    ("http_requests_total", "Total http requests", COUNTER),
)

MetricFamily = Union[GaugeMetricFamily, CounterMetricFamily]


@dataclass(frozen=True)
class MetricDescriptor:
    name: str
    help: str
    const_labels: Mapping[str, str]
    kind: str = GAUGE

    def _family(self) -> MetricFamily:
        labels = list(self.const_labels.keys())
        if self.kind == COUNTER:
            return CounterMetricFamily(self.name, self.help, labels=labels)
        return GaugeMetricFamily(self.name, self.help, labels=labels)

    def describe(self) -> MetricFamily:
        """Family without samples, used by the registry at register time."""
        return self._family()

    def sample(self, value: float) -> MetricFamily:
        fam = self._family()
        fam.add_metric(list(self.const_labels.values()), float(value))
        return fam


def new_global_metric(
    namespace: str, metric_name: str, doc: str, const_labels: Mapping[str, str], kind: str = GAUGE
) -> MetricDescriptor:
    return MetricDescriptor(
        name=f"{namespace}_{metric_name}",
        help=doc,
        const_labels=MappingProxyType(dict(const_labels)),
        kind=kind,
    )


def build_descriptors(namespace: str, const_labels: Mapping[str, str]) -> Dict[str, MetricDescriptor]:
    return {
        key: new_global_metric(namespace, key, doc, const_labels, kind)
        for key, doc, kind in _STUB_METRICS
    }


def new_up_metric(namespace: str, const_labels: Mapping[str, str]) -> Gauge:
    return Gauge(
        "up",
        "Status of the last metric scrape",
        list(const_labels.keys()),
        namespace=namespace,
        registry=None,
    )


def new_scrape_success_metric(namespace: str, const_labels: Mapping[str, str]) -> Gauge:
    return Gauge(
        "scrape_success",
        "Whether the last scrape of NGINX metrics was successful",
        list(const_labels.keys()),
        namespace=namespace,
        registry=None,
    )


def new_scrape_duration_metric(namespace: str, const_labels: Mapping[str, str]) -> Gauge:
    return Gauge(
        "scrape_duration_seconds",
        "Duration of the last scrape in seconds",
        list(const_labels.keys()),
        namespace=namespace,
        registry=None,
    )


def new_scrape_errors_total_metric(namespace: str, const_labels: Mapping[str, str]) -> Counter:
    if "type" in const_labels:
        raise ValueError("constant label 'type' clashes with the scrape_errors_total label")
    return Counter(
        "scrape_errors_total",
        "Total number of scrape errors by type",
        ["type"] + list(const_labels.keys()),
        namespace=namespace,
        registry=None,
    )


def bind_labels(metric: Union[Gauge, Counter], const_labels: Mapping[str, str], **extra: str):
    """
    Return the child of a labelled metric for the constant labels (plus any
    extra label values). A metric without label names is returned as is.
    """
    if not const_labels and not extra:
        return metric
    return metric.labels(**extra, **const_labels)


def error_children(counter: Counter, const_labels: Mapping[str, str]) -> Dict[ErrorType, Counter]:
    return {t: bind_labels(counter, const_labels, type=t.value) for t in ErrorType}


def merge_labels(a: Optional[Mapping[str, str]], b: Optional[Mapping[str, str]]) -> Dict[str, str]:
    merged: Dict[str, str] = {}
    merged.update(a or {})
    merged.update(b or {})
    return merged


def parse_const_labels(values: Iterable[str]) -> Dict[str, str]:
    labels: Dict[str, str] = {}
    for raw in values:
        for part in raw.split(","):
            part = part.strip()
            if not part:
                continue
            if "=" not in part:
                raise ValueError(f"invalid constant label {part!r}: expected key=value")
            k, v = part.split("=", 1)
            k = k.strip()
            if not _LABEL_NAME_RE.match(k) or k.startswith("__"):
                raise ValueError(f"invalid constant label name {k!r}")
            labels[k] = v.strip()
    return labels