import queue
import threading

import pytest

from eagle.attacker import Hit
from eagle.errors import ConstructionError, ValidationError
from eagle.loadtest import DEFAULT_DURATION, DEFAULT_RATE, CycleDone, LoadTest, Result

from conftest import FakeAttacker, wait_for


def test_new_load_test_requires_a_name(settings, fake_attacker):
    with pytest.raises(ValidationError):
        LoadTest("", settings=settings, attacker=fake_attacker)


def test_new_load_test_has_defaults_and_no_layers(settings, fake_attacker):
    test = LoadTest("x", settings=settings, attacker=fake_attacker)
    assert test.rate == DEFAULT_RATE
    assert test.duration == DEFAULT_DURATION
    assert len(test.layers) == 0


def test_register_rejects_empty_name_and_endpoints(settings, fake_attacker):
    test = LoadTest("x", settings=settings, attacker=fake_attacker)
    with pytest.raises(ValidationError):
        test.register("", ["http://a/"])
    with pytest.raises(ValidationError):
        test.register("l", [])
    assert len(test.layers) == 0


def test_register_snapshots_rate_and_duration(settings, fake_attacker):
    test = LoadTest("x", settings=settings, attacker=fake_attacker)
    test.rate = 25
    test.duration = 2.0
    layer = test.register("l", ["http://a/"])
    test.rate = 500

    assert layer.rate == 25
    assert layer.duration == 2.0
    assert layer.endpoints == ["http://a/"]


def test_register_overrides(settings, fake_attacker):
    test = LoadTest("x", settings=settings, attacker=fake_attacker)
    layer = test.register("l", ["http://a/"], rate=7, duration=0.5, headers={"Authorization": "Bearer t"})
    assert (layer.rate, layer.duration) == (7, 0.5)
    assert layer.headers_for("http://a/")["Authorization"] == "Bearer t"

    with pytest.raises(ValidationError):
        test.register("m", ["http://a/"], rate=0)


def test_standard_headers_identify_the_request(settings, fake_attacker):
    test = LoadTest("canary", settings=settings, attacker=fake_attacker)
    layer = test.register("api", ["http://a/"], headers={"X-Eagle-Test": "spoofed"})
    assert layer.headers_for("http://a/") == {
        "X-Eagle-Endpoint": "http://a/",
        "X-Eagle-Target": "api",
        "X-Eagle-Test": "canary",
    }


def test_duplicate_layer_is_rejected(settings, fake_attacker):
    test = LoadTest("x", settings=settings, attacker=fake_attacker)
    test.register("l", ["http://a/"])
    with pytest.raises(ValidationError):
        test.register("l", ["http://b/"])


@pytest.mark.parametrize("endpoint", ["localhost:9999", "ftp://a/", "http:///nohost"])
def test_malformed_endpoint_fails_at_registration(settings, fake_attacker, endpoint):
    test = LoadTest("x", settings=settings, attacker=fake_attacker)
    with pytest.raises(ConstructionError):
        test.register("l", ["http://ok/", endpoint])
    assert "l" not in test.layers
    assert fake_attacker.calls == []


def test_run_without_layers_fails(settings, fake_attacker):
    test = LoadTest("x", settings=settings, attacker=fake_attacker)
    with pytest.raises(ValidationError):
        test.run(queue.Queue())


def test_run_twice_fails(settings, fake_attacker):
    test = LoadTest("x", settings=settings, attacker=fake_attacker)
    test.register("l", ["http://a/"])
    test.run(queue.Queue())
    try:
        with pytest.raises(RuntimeError):
            test.run(queue.Queue())
    finally:
        test.stop()
        test.join(5)


def test_loop_pushes_results_in_generator_order(settings):
    hits = [Hit(code=200, latency=0.01), Hit(code=503, latency=0.2), Hit(code=0, latency=1.0, error="refused")]
    attacker = FakeAttacker(settings, hits_for=lambda url: hits)
    test = LoadTest("canary", settings=settings, attacker=attacker, rate=3)
    test.register("api", ["http://localhost:9999/"])
    channel = queue.Queue()

    loop = test.run(channel)[0]
    assert wait_for(lambda: loop.cycles >= 1)
    test.stop()
    assert test.join(5)

    items = []
    while not channel.empty():
        items.append(channel.get_nowait())

    first_cycle = items[:4]
    assert first_cycle == [
        Result(target="api", endpoint="http://localhost:9999/", test="canary", code=200, latency=0.01),
        Result(target="api", endpoint="http://localhost:9999/", test="canary", code=503, latency=0.2),
        Result(target="api", endpoint="http://localhost:9999/", test="canary", code=0, latency=1.0),
        CycleDone(target="api", endpoint="http://localhost:9999/", requests=3),
    ]
    assert attacker.calls[0][2:] == (3, DEFAULT_DURATION)
    assert attacker.calls[0][1]["X-Eagle-Target"] == "api"


def test_one_loop_per_endpoint(settings, fake_attacker):
    test = LoadTest("x", settings=settings, attacker=fake_attacker)
    test.register("a", ["http://a1/", "http://a2/"])
    test.register("b", ["http://b1/"])
    loops = test.run(queue.Queue())
    try:
        assert sorted(loop.endpoint for loop in loops) == ["http://a1/", "http://a2/", "http://b1/"]
        assert all(loop.daemon for loop in loops)
    finally:
        test.stop()
        test.join(5)


def test_blocked_endpoint_does_not_delay_the_other(settings):
    release = threading.Event()

    def hits_for(url):
        if "slow" in url:
            release.wait(10)
        return [Hit(code=200, latency=0.001)]

    attacker = FakeAttacker(settings, hits_for=hits_for)
    test = LoadTest("x", settings=settings, attacker=attacker)
    test.register("api", ["http://slow/", "http://fast/"])
    loops = {loop.endpoint: loop for loop in test.run(queue.Queue())}
    try:
        assert wait_for(lambda: loops["http://fast/"].cycles >= 5)
        assert loops["http://slow/"].cycles == 0
    finally:
        test.stop()
        release.set()
        assert test.join(5)


def test_failing_cycle_does_not_kill_the_loop(settings):
    calls = []

    def hits_for(url):
        calls.append(url)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return [Hit(code=200, latency=0.001)]

    attacker = FakeAttacker(settings, hits_for=hits_for)
    test = LoadTest("x", settings=settings, attacker=attacker, duration=0.01)
    test.register("api", ["http://a/"])
    loop = test.run(queue.Queue())[0]
    try:
        assert wait_for(lambda: loop.cycles >= 1)
    finally:
        test.stop()
        test.join(5)


def test_stop_lets_in_flight_cycle_finish(settings):
    attacker = FakeAttacker(settings, cycle_delay=0.2)
    test = LoadTest("x", settings=settings, attacker=attacker)
    test.register("api", ["http://a/"])
    channel = queue.Queue()
    loop = test.run(channel)[0]

    assert wait_for(lambda: len(attacker.calls) == 1)
    test.stop()
    assert test.join(5)
    assert loop.cycles == 1
    assert isinstance(list(channel.queue)[-1], CycleDone)
