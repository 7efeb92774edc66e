"""Load test state model: a LoadTest owns Layers, a Layer owns one AttackLoop per endpoint.

Every AttackLoop repeats attack cycles against its endpoint until the
shared stop token is set, pushing one Result per request onto the result
channel followed by a CycleDone marker.
"""
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional

from eagle.attacker import Attacker, summarize
from eagle.config import Settings, parse_duration, parse_rate
from eagle.errors import ValidationError

logger = logging.getLogger(__name__)

# Requests per second sent to each endpoint.
DEFAULT_RATE = 100

# Length of one attack cycle in seconds.
DEFAULT_DURATION = 1.0


@dataclass(frozen=True)
class Result:
    """One completed request against an endpoint."""

    target: str
    endpoint: str
    test: str
    code: int
    latency: float


@dataclass(frozen=True)
class CycleDone:
    target: str
    endpoint: str
    requests: int


class Layer:
    """A named group of endpoints sharing rate, duration and headers.

    Rate and duration are a snapshot of the load test's values at
    registration time; a layer never changes once the test runs.
    """

    def __init__(self, name: str, endpoints: List[str], rate: int, duration: float,
                 test_name: str, settings: Settings, headers: Optional[Dict[str, str]] = None):
        self.name = name
        self.endpoints = list(OrderedDict.fromkeys(endpoints))
        self.rate = rate
        self.duration = duration
        self.test_name = test_name
        self.settings = settings
        self.extra_headers = dict(headers or {})
        self.targets = OrderedDict()
        self.loops: List["AttackLoop"] = []

    def headers_for(self, endpoint: str) -> Dict[str, str]:
        headers = dict(self.extra_headers)
        headers.update(self.settings.standard_headers(endpoint, self.name, self.test_name))
        return headers

    def prepare(self, attacker: Attacker):
        """Build the request of every endpoint; raises ConstructionError on the first bad one."""
        for endpoint in self.endpoints:
            self.targets[endpoint] = attacker.build_target(endpoint, self.headers_for(endpoint))

    def __repr__(self):
        return f"Layer({self.name!r}, endpoints={self.endpoints}, rate={self.rate}, duration={self.duration})"


class AttackLoop(threading.Thread):
    """Attacks one endpoint of a layer over and over until stopped."""

    def __init__(self, layer: Layer, endpoint: str, attacker: Attacker, sink, stop_event: threading.Event):
        super().__init__(name=f"attack-{layer.name}-{endpoint}", daemon=True)
        self.layer = layer
        self.endpoint = endpoint
        self.target = layer.targets[endpoint]
        self.attacker = attacker
        self.sink = sink
        self.stop_event = stop_event
        self.cycles = 0

    def cycle(self):
        hits = self.attacker.attack(self.target, self.layer.rate, self.layer.duration)
        for hit in hits:
            self.sink.put(Result(
                target=self.layer.name,
                endpoint=self.endpoint,
                test=self.layer.test_name,
                code=hit.code,
                latency=hit.latency,
            ))
        self.sink.put(CycleDone(target=self.layer.name, endpoint=self.endpoint, requests=len(hits)))
        self.cycles += 1

        logger.info(summarize(hits).log_line(f"{self.layer.name}/{self.endpoint}"))

    def run(self):
        logger.debug("Attack loop for %s/%s started", self.layer.name, self.endpoint)
        while not self.stop_event.is_set():
            try:
                self.cycle()
            except Exception:
                logger.exception("Attack cycle against %s/%s failed", self.layer.name, self.endpoint)
                self.stop_event.wait(self.layer.duration)
        logger.debug("Attack loop for %s/%s stopped after %d cycles", self.layer.name, self.endpoint, self.cycles)


class LoadTest:
    def __init__(self, name: str, settings: Optional[Settings] = None, attacker: Optional[Attacker] = None,
                 rate: int = DEFAULT_RATE, duration: float = DEFAULT_DURATION):
        if not name:
            raise ValidationError("empty loadtest name")

        self.name = name
        self.rate = parse_rate(rate)
        self.duration = parse_duration(duration)
        self.settings = settings or Settings()
        self.attacker = attacker or Attacker(self.settings)
        self.layers: Dict[str, Layer] = OrderedDict()
        self.stop_event = threading.Event()
        self._started = False

    @property
    def loops(self) -> List[AttackLoop]:
        return [loop for layer in self.layers.values() for loop in layer.loops]

    def register(self, name: str, endpoints: List[str], rate: Optional[int] = None,
                 duration: Optional[float] = None, headers: Optional[Dict[str, str]] = None) -> Layer:
        """Add a layer, inheriting the test's current rate and duration unless overridden."""
        if not name:
            raise ValidationError("missing layer name")
        if not endpoints:
            raise ValidationError("missing layer endpoints")
        if name in self.layers:
            raise ValidationError(f"duplicate layer '{name}'")
        if self._started:
            raise RuntimeError(f"load test '{self.name}' is already running")

        layer = Layer(
            name=name,
            endpoints=endpoints,
            rate=self.rate if rate is None else parse_rate(rate),
            duration=self.duration if duration is None else parse_duration(duration),
            test_name=self.name,
            settings=self.settings,
            headers=headers,
        )
        layer.prepare(self.attacker)
        self.layers[name] = layer

        logger.info("Registered %r", layer)
        return layer

    def run(self, sink) -> List[AttackLoop]:
        """Start one attack loop per (layer, endpoint) and return without blocking."""
        if not self.layers:
            raise ValidationError(f"load test '{self.name}' has no layers")
        if self._started:
            raise RuntimeError(f"load test '{self.name}' was already started")
        self._started = True

        for layer in self.layers.values():
            for endpoint in layer.endpoints:
                loop = AttackLoop(layer, endpoint, self.attacker, sink, self.stop_event)
                layer.loops.append(loop)
                loop.start()

        logger.info("Load test '%s' started %d attack loops", self.name, len(self.loops))
        return self.loops

    def stop(self):
        """Ask every loop to exit after its in-flight cycle."""
        self.stop_event.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the loops to exit; returns False if any is still alive."""
        for loop in self.loops:
            loop.join(timeout)
        alive = [loop.name for loop in self.loops if loop.is_alive()]
        if alive:
            logger.warning("Attack loops still running: %s", ", ".join(alive))
        return not alive
