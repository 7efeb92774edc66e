import dns.resolver
import pytest

from eagle import resolver
from eagle.config import TargetSpec
from eagle.errors import ResolutionError, ValidationError
from eagle.resolver import describe_targets, parse_target, resolve, resolve_targets


def unreachable(name):
    raise AssertionError(f"unexpected lookup of {name}")


def test_literal_url_is_returned_unchanged():
    assert resolve("http://localhost:9999/", unreachable) == ["http://localhost:9999/"]
    assert resolve("https://api.example.com/v1/health?x=1", unreachable) == ["https://api.example.com/v1/health?x=1"]


def test_literal_url_resolution_is_stable():
    assert resolve("http://a/", unreachable) == resolve("http://a/", unreachable)


def test_srv_records_become_http_endpoints(srv_records):
    assert resolve("_http._tcp.api.service.consul", srv_records) == [
        "http://node-1.consul:8080/",
        "http://node-2.consul:8081/",
    ]


def test_duplicate_records_are_dropped():
    endpoints = resolve("svc", lambda name: [("a.", 80), ("b.", 80), ("a.", 80)])
    assert endpoints == ["http://a:80/", "http://b:80/"]


def test_empty_srv_answer_fails(srv_records):
    with pytest.raises(ResolutionError):
        resolve("_http._tcp.empty.service.consul", srv_records)


def test_failed_lookup_fails():
    def broken(name):
        raise ResolutionError("NXDOMAIN")

    with pytest.raises(ResolutionError):
        resolve("_http._tcp.missing.service.consul", broken)


def test_empty_locator_fails():
    with pytest.raises(ValidationError):
        resolve("", unreachable)


def test_srv_lookup_maps_dns_errors(monkeypatch):
    def nxdomain(name, rdtype):
        raise dns.resolver.NXDOMAIN()

    monkeypatch.setattr(resolver.dns.resolver, "resolve", nxdomain)
    with pytest.raises(ResolutionError):
        resolver.srv_lookup("_http._tcp.nowhere.consul")


def test_parse_target_splits_on_first_colon():
    spec = parse_target("api:http://localhost:9999/")
    assert spec.name == "api"
    assert spec.locator == "http://localhost:9999/"


@pytest.mark.parametrize("value", ["api", ":http://a/", "api:"])
def test_parse_target_rejects_malformed_values(value):
    with pytest.raises(ValidationError):
        parse_target(value)


def test_resolve_targets_keeps_order_and_rejects_duplicates(srv_records):
    specs = [
        TargetSpec(name="web", locator="http://web/"),
        TargetSpec(name="api", locator="_http._tcp.api.service.consul"),
    ]
    resolved = resolve_targets(specs, srv_records)
    assert list(resolved) == ["web", "api"]
    assert describe_targets(resolved) == (
        "web: http://web/\n"
        "api: http://node-1.consul:8080/, http://node-2.consul:8081/"
    )

    with pytest.raises(ValidationError):
        resolve_targets(specs + [TargetSpec(name="web", locator="http://other/")], srv_records)


def test_resolve_targets_names_the_failing_target(srv_records):
    with pytest.raises(ResolutionError, match="empty"):
        resolve_targets([TargetSpec(name="empty", locator="_http._tcp.empty.service.consul")], srv_records)
