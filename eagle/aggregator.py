"""Result channel consumer and the Prometheus registry it feeds.

The Aggregator is the only writer of the Registry. Scrapes read it
concurrently through prometheus_client, whose metric values are guarded
by their own locks.
"""
import logging
import queue
import threading
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

from eagle.config import Settings
from eagle.loadtest import CycleDone, Result

logger = logging.getLogger(__name__)

# Queued after the last result; the aggregator exits once it reaches it.
STOP = object()

LATENCY_BUCKETS = (.001, .0025, .005, .01, .025, .05, .1, .25, .5, 1.0, 2.5, 5.0, 10.0, 30.0)


def new_channel(settings: Settings) -> queue.Queue:
    return queue.Queue(maxsize=settings.queue_size)


class Registry:
    def __init__(self, test_name: str, settings: Optional[Settings] = None):
        self.test_name = test_name
        self.settings = settings or Settings()
        self.label_names = tuple(self.settings.labels) + ("test",)
        self.registry = CollectorRegistry()

        namespace = self.settings.namespace
        self.requests_total = Counter(
            'requests_total', 'Total number of requests sent, by response code',
            self.label_names, namespace=namespace, registry=self.registry,
        )
        self.request_duration = Histogram(
            'request_duration_seconds', 'Latency of requests sent by the load test',
            self.label_names, namespace=namespace, buckets=LATENCY_BUCKETS, registry=self.registry,
        )
        self.attack_cycles = Counter(
            'attack_cycles_total', 'Number of finished attack cycles per endpoint',
            ['target', 'endpoint', 'test'], namespace=namespace, registry=self.registry,
        )

    def labels_for(self, target: str, endpoint: str, code) -> dict:
        values = {"target": target, "endpoint": endpoint, "code": str(code)}
        labels = {name: values[name] for name in self.settings.labels}
        labels["test"] = self.test_name
        return labels

    def observe(self, result: Result):
        labels = self.labels_for(result.target, result.endpoint, result.code)
        self.requests_total.labels(**labels).inc()
        self.request_duration.labels(**labels).observe(result.latency)

    def cycle_done(self, marker: CycleDone):
        self.attack_cycles.labels(target=marker.target, endpoint=marker.endpoint, test=self.test_name).inc()

    def count(self, target: str, endpoint: str, code) -> float:
        value = self.registry.get_sample_value(
            f"{self.settings.namespace}_requests_total",
            self.labels_for(target, endpoint, code),
        )
        return value or 0.0

    def cycles(self, target: str, endpoint: str) -> float:
        value = self.registry.get_sample_value(
            f"{self.settings.namespace}_attack_cycles_total",
            {"target": target, "endpoint": endpoint, "test": self.test_name},
        )
        return value or 0.0

    def exposition(self):
        return generate_latest(self.registry), CONTENT_TYPE_LATEST


class Aggregator(threading.Thread):
    """Drains the result channel into the registry until it receives STOP."""

    def __init__(self, channel: queue.Queue, registry: Registry):
        super().__init__(name="aggregator", daemon=True)
        self.channel = channel
        self.registry = registry
        self.processed = 0

    def fold(self, item) -> bool:
        """Apply one channel item; returns False for the STOP sentinel."""
        if item is STOP:
            return False
        if isinstance(item, Result):
            self.registry.observe(item)
            self.processed += 1
        elif isinstance(item, CycleDone):
            self.registry.cycle_done(item)
        else:
            logger.warning("Ignoring unexpected item on result channel: %r", item)
        return True

    def run(self):
        logger.debug("Aggregator started")
        while True:
            item = self.channel.get()
            try:
                if not self.fold(item):
                    break
            except Exception:
                logger.exception("Failed to fold %r", item)
            finally:
                self.channel.task_done()
        logger.info("Aggregator stopped after %d results", self.processed)

    def drain(self) -> int:
        """Fold everything currently queued without blocking."""
        folded = 0
        while True:
            try:
                item = self.channel.get_nowait()
            except queue.Empty:
                return folded
            try:
                if not self.fold(item):
                    return folded
                folded += 1
            finally:
                self.channel.task_done()

    def stop(self, timeout: Optional[float] = None):
        """Queue STOP behind pending results and wait for the thread to fold them."""
        self.channel.put(STOP)
        if self.is_alive():
            self.join(timeout)
