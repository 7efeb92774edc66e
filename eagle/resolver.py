"""Turn target locators into concrete endpoint URLs.

A locator is either an absolute URL, used as-is, or a DNS service name
whose SRV records are expanded to ``http://host:port/`` endpoints.
Resolution happens once at startup; the endpoint sets are frozen after.
"""
import logging
from collections import OrderedDict
from typing import Callable, Dict, Iterable, List, Tuple
from urllib.parse import urlsplit

import dns.exception
import dns.resolver

from eagle.config import TargetSpec
from eagle.errors import ResolutionError, ValidationError

logger = logging.getLogger(__name__)

SrvLookup = Callable[[str], List[Tuple[str, int]]]


def srv_lookup(name: str) -> List[Tuple[str, int]]:
    """Return the (host, port) pairs of the SRV records published for name."""
    try:
        answer = dns.resolver.resolve(name, "SRV")
    except dns.exception.DNSException as e:
        raise ResolutionError(f"SRV lookup for '{name}' failed: {e}") from e
    return [(record.target.to_text(), record.port) for record in answer]


def is_url(locator: str) -> bool:
    try:
        return bool(urlsplit(locator).scheme) and "://" in locator
    except ValueError:
        return False


def resolve(locator: str, lookup: SrvLookup = srv_lookup) -> List[str]:
    """Resolve a locator into an ordered list of unique endpoint URLs."""
    if not locator:
        raise ValidationError("empty locator")

    if is_url(locator):
        return [locator]

    endpoints = []
    for host, port in lookup(locator):
        endpoint = f"http://{host.strip('.')}:{port}/"
        if endpoint not in endpoints:
            endpoints.append(endpoint)

    if not endpoints:
        raise ResolutionError(f"no endpoints for '{locator}'")

    logger.debug("Resolved %s to %s", locator, ", ".join(endpoints))
    return endpoints


def parse_target(value: str) -> TargetSpec:
    """Parse the command line form ``name:locator``."""
    name, sep, locator = value.partition(":")
    if not sep:
        raise ValidationError(f"invalid target format '{value}', expected name:locator")
    if not name:
        raise ValidationError(f"missing target name in '{value}'")
    if not locator:
        raise ValidationError(f"missing locator in '{value}'")
    return TargetSpec(name=name, locator=locator)


def resolve_targets(specs: Iterable[TargetSpec], lookup: SrvLookup = srv_lookup) -> Dict[str, Tuple[TargetSpec, List[str]]]:
    resolved = OrderedDict()
    for spec in specs:
        if not spec.name:
            raise ValidationError("missing target name")
        if spec.name in resolved:
            raise ValidationError(f"duplicate target '{spec.name}'")
        try:
            resolved[spec.name] = (spec, resolve(spec.locator, lookup))
        except ResolutionError as e:
            raise ResolutionError(f"target '{spec.name}': {e}") from e
    return resolved


def describe_targets(resolved) -> str:
    return "\n".join(
        f"{name}: {', '.join(endpoints)}" for name, (_, endpoints) in resolved.items()
    )
