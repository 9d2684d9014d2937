import logging
import threading
import time
from typing import Dict, List, Mapping, Optional

from prometheus_client.registry import Collector

from nginx_exporter.client import StatusSource, StubStats
from nginx_exporter.errors import ErrorType, classify_error
from nginx_exporter.metrics import (
    NGINX_DOWN,
    NGINX_UP,
    MetricDescriptor,
    MetricFamily,
    bind_labels,
    build_descriptors,
    error_children,
    new_scrape_duration_metric,
    new_scrape_errors_total_metric,
    new_scrape_success_metric,
    new_up_metric,
)

logger = logging.getLogger(__name__)


class NginxCollector(Collector):

    def __init__(
        self,
        source: StatusSource,
        namespace: str = "nginx",
        const_labels: Optional[Mapping[str, str]] = None,
    ):
        const_labels = dict(const_labels or {})

        self.source = source
        self.namespace = namespace
        self.const_labels = const_labels
        self.metrics: Dict[str, MetricDescriptor] = build_descriptors(namespace, const_labels)

        self._up_metric = new_up_metric(namespace, const_labels)
        self._scrape_success_metric = new_scrape_success_metric(namespace, const_labels)
        self._scrape_duration_metric = new_scrape_duration_metric(namespace, const_labels)
        self._scrape_errors_total = new_scrape_errors_total_metric(namespace, const_labels)

        self._up = bind_labels(self._up_metric, const_labels)
        self._scrape_success = bind_labels(self._scrape_success_metric, const_labels)
        self._scrape_duration = bind_labels(self._scrape_duration_metric, const_labels)
        self._errors = error_children(self._scrape_errors_total, const_labels)

        self._lock = threading.Lock()

    def describe(self) -> List[MetricFamily]:
        families: List[MetricFamily] = []
        families.extend(self._up_metric.describe())
        families.extend(self._scrape_success_metric.describe())
        families.extend(self._scrape_duration_metric.describe())
        families.extend(self._scrape_errors_total.describe())
        for desc in self.metrics.values():
            families.append(desc.describe())
        return families

    def collect(self) -> List[MetricFamily]:
        # held across the fetch: the source is not assumed re-entrant
        with self._lock:
            out: List[MetricFamily] = []

            start = time.perf_counter()
            try:
                stats = self.source.fetch()
                err = None
            except Exception as e:
                stats = None
                err = e
            self._scrape_duration.set(time.perf_counter() - start)
            out.extend(self._scrape_duration_metric.collect())

            if err is not None:
                self._handle_scrape_error(out, err)
            else:
                self._handle_scrape_success(out, stats)
            return out

    def _emit_status(self, out: List[MetricFamily]) -> None:
        out.extend(self._up_metric.collect())
        out.extend(self._scrape_success_metric.collect())
        out.extend(self._scrape_errors_total.collect())

    def _handle_scrape_error(self, out: List[MetricFamily], err: Exception) -> None:
        error_msg = str(err)
        error_type = classify_error(error_msg)

        self._up.set(NGINX_DOWN if error_type is ErrorType.NETWORK else NGINX_UP)
        self._errors[error_type].inc()
        self._scrape_success.set(0)

        self._emit_status(out)

        logger.error("error getting stats error=%r type=%s", error_msg, error_type.value)

    def _handle_scrape_success(self, out: List[MetricFamily], stats: StubStats) -> None:
        self._up.set(NGINX_UP)
        self._scrape_success.set(1)

        self._emit_status(out)

        m = self.metrics
        conns = stats.connections
        out.append(m["connections_active"].sample(conns.active))
        out.append(m["connections_accepted"].sample(conns.accepted))
        out.append(m["connections_handled"].sample(conns.handled))
        out.append(m["connections_reading"].sample(conns.reading))
        out.append(m["connections_writing"].sample(conns.writing))
        out.append(m["connections_waiting"].sample(conns.waiting))
        out.append(m["http_requests_total"].sample(stats.requests))
