"""Rate-paced HTTP traffic generator.

An attack sends ``rate * duration`` GET requests to one prepared target,
spacing request starts ``1 / rate`` seconds apart, and hands back one Hit
per request in completion order.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import urlsplit

import numpy as np
import requests
from requests.adapters import HTTPAdapter

from eagle.config import Settings
from eagle.errors import ConstructionError

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMES = ("http", "https")


@dataclass(frozen=True)
class Hit:
    """Outcome of one request. Transport failures carry code 0."""

    code: int
    latency: float
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.code < 400


@dataclass(frozen=True)
class Summary:
    requests: int
    success: int
    p50: float
    p95: float
    p99: float

    @property
    def ratio(self) -> float:
        return self.success / self.requests if self.requests else 0.0

    def log_line(self, prefix: str) -> str:
        return "[%s] success: %d / %d (50th: %d 95th: %d 99th: %d)" % (
            prefix,
            self.success,
            self.requests,
            round(self.p50 * 1e6),
            round(self.p95 * 1e6),
            round(self.p99 * 1e6),
        )


def summarize(hits: List[Hit]) -> Summary:
    if not hits:
        return Summary(requests=0, success=0, p50=0.0, p95=0.0, p99=0.0)
    latencies = np.array([hit.latency for hit in hits], dtype=float)
    p50, p95, p99 = np.percentile(latencies, [50, 95, 99])
    return Summary(
        requests=len(hits),
        success=sum(1 for hit in hits if hit.ok),
        p50=float(p50),
        p95=float(p95),
        p99=float(p99),
    )


class Attacker:
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.timeout = settings.timeout
        self.max_workers = settings.max_workers
        self.prepared = 0
        self.owns_session = session is None
        self.session = session or requests.Session()
        if self.owns_session:
            self._mount_pool()

    def _mount_pool(self):
        # Every prepared target runs its own loop with up to max_workers requests in flight.
        concurrency = self.max_workers * max(1, self.prepared)
        adapter = HTTPAdapter(pool_connections=max(self.max_workers, self.prepared), pool_maxsize=concurrency)
        self.session.mount('http://', adapter)
        self.session.mount('https://', adapter)

    def build_target(self, url: str, headers: Optional[Dict[str, str]] = None) -> requests.PreparedRequest:
        """Prepare a GET request for url, raising ConstructionError when it is malformed."""
        try:
            parts = urlsplit(url)
        except ValueError as e:
            raise ConstructionError(f"invalid URL format {url}: {e}") from e
        if parts.scheme not in SUPPORTED_SCHEMES:
            raise ConstructionError(f"invalid URL format {url}: unsupported scheme '{parts.scheme}'")
        if not parts.hostname:
            raise ConstructionError(f"invalid URL format {url}: missing host")

        try:
            prepared = requests.Request("GET", url, headers=headers or {}).prepare()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise ConstructionError(f"invalid URL format {url}: {e}") from e

        self.prepared += 1
        if self.owns_session:
            self._mount_pool()
        return prepared

    def _hit(self, target: requests.PreparedRequest) -> Hit:
        start = time.perf_counter()
        try:
            response = self.session.send(target.copy(), timeout=self.timeout)
            latency = time.perf_counter() - start
            response.close()
            return Hit(code=response.status_code, latency=latency)
        except requests.exceptions.RequestException as e:
            logger.debug("Request to %s failed: %s", target.url, e)
            return Hit(code=0, latency=time.perf_counter() - start, error=str(e))
        except Exception as e:
            logger.debug("Request to %s failed unexpectedly: %s", target.url, e)
            return Hit(code=0, latency=time.perf_counter() - start, error=str(e))

    def attack(self, target: requests.PreparedRequest, rate: int, duration: float) -> List[Hit]:
        """Send rate * duration requests paced at rate per second and wait for all of them."""
        total = max(1, int(round(rate * duration)))
        interval = 1.0 / rate
        hits = []

        start = time.monotonic()
        with ThreadPoolExecutor(max_workers=min(self.max_workers, total)) as executor:
            futures = []
            for i in range(total):
                delay = start + i * interval - time.monotonic()
                if delay > 0:
                    time.sleep(delay)
                futures.append(executor.submit(self._hit, target))

            for future in as_completed(futures):
                hits.append(future.result())

        return hits

    def close(self):
        self.session.close()
