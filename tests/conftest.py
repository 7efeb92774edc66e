import threading
import time

import pytest

from eagle.attacker import Attacker, Hit
from eagle.config import Settings


class FakeAttacker(Attacker):
    """Attacker whose cycles return scripted hits instead of sending requests."""

    def __init__(self, settings, hits_for=None, cycle_delay=0.0):
        super().__init__(settings)
        self.hits_for = hits_for or (lambda endpoint: [Hit(code=200, latency=0.01)])
        self.cycle_delay = cycle_delay
        self.calls = []
        self.lock = threading.Lock()

    def attack(self, target, rate, duration):
        with self.lock:
            self.calls.append((target.url, dict(target.headers), rate, duration))
        if self.cycle_delay:
            threading.Event().wait(self.cycle_delay)
        return list(self.hits_for(target.url))


@pytest.fixture
def settings():
    return Settings(queue_size=0, timeout=1.0, max_workers=4)


@pytest.fixture
def fake_attacker(settings):
    attacker = FakeAttacker(settings)
    yield attacker
    attacker.close()


@pytest.fixture
def srv_records():
    records = {
        "_http._tcp.api.service.consul": [("node-1.consul.", 8080), ("node-2.consul.", 8081)],
        "_http._tcp.empty.service.consul": [],
    }

    def lookup(name):
        return records[name]

    return lookup


def wait_for(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return False
