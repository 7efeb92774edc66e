import os
import re
import tomllib
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from eagle.errors import ValidationError


def _coerce_bool(value: str) -> bool:
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _coerce_labels(value: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in str(value).split(",") if part.strip())


CONFIG_SCHEMA = {
    "EAGLE_LISTEN": (":7800", str),
    "EAGLE_RATE": (100, int),
    "EAGLE_DURATION": (1.0, float),
    "EAGLE_QUEUE_SIZE": (1024, int),
    "EAGLE_TIMEOUT": (30.0, float),
    "EAGLE_MAX_WORKERS": (64, int),
    "EAGLE_LOG_LEVEL": ("INFO", str),
    "EAGLE_NAMESPACE": ("eagle", str),
    "EAGLE_LABELS": (("target", "endpoint", "code"), _coerce_labels),
    "SQUIRREL_LISTEN": (":7801", str),
    "SQUIRREL_DELAY": (0.0, float),
    "SQUIRREL_LOG_REQUESTS": (False, _coerce_bool),
}


def _cast_value(raw_value, caster, default):
    try:
        return caster(raw_value)
    except (TypeError, ValueError):
        return default


def _load_config(environ=None):
    environ = os.environ if environ is None else environ
    config = {}
    for key, (default, caster) in CONFIG_SCHEMA.items():
        raw = environ.get(key)
        if raw is None or raw == "":
            config[key] = default
        else:
            config[key] = _cast_value(raw, caster, default)
    return config


CONFIG = _load_config()

HEADER_ENDPOINT = "X-Eagle-Endpoint"
HEADER_TARGET = "X-Eagle-Target"
HEADER_TEST = "X-Eagle-Test"

KNOWN_LABELS = ("target", "endpoint", "code")


@dataclass(frozen=True)
class Settings:
    """Process-wide knobs shared by the loops, the generator and the aggregator."""

    header_endpoint: str = HEADER_ENDPOINT
    header_target: str = HEADER_TARGET
    header_test: str = HEADER_TEST
    namespace: str = "eagle"
    labels: Tuple[str, ...] = KNOWN_LABELS
    queue_size: int = 1024
    timeout: float = 30.0
    max_workers: int = 64

    def __post_init__(self):
        unknown = [label for label in self.labels if label not in KNOWN_LABELS]
        if unknown:
            raise ValidationError(f"unknown metric labels: {', '.join(unknown)}")
        if not self.labels:
            raise ValidationError("at least one metric label is required")
        if self.max_workers < 1:
            raise ValidationError("max_workers must be at least 1")

    @classmethod
    def from_config(cls, config=None) -> "Settings":
        config = CONFIG if config is None else config
        return cls(
            namespace=config["EAGLE_NAMESPACE"],
            labels=tuple(config["EAGLE_LABELS"]),
            queue_size=max(0, config["EAGLE_QUEUE_SIZE"]),
            timeout=config["EAGLE_TIMEOUT"],
            max_workers=config["EAGLE_MAX_WORKERS"],
        )

    def standard_headers(self, endpoint: str, target: str, test: str) -> Dict[str, str]:
        return {
            self.header_endpoint: endpoint,
            self.header_target: target,
            self.header_test: test,
        }


@dataclass(frozen=True)
class TargetSpec:
    name: str
    locator: str
    rate: Optional[int] = None
    duration: Optional[float] = None
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TestConfig:
    __test__ = False

    name: str
    rate: Optional[int] = None
    duration: Optional[float] = None
    targets: List[TargetSpec] = field(default_factory=list)


_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


def parse_duration(value) -> float:
    """Seconds from a number or a string like ``500ms``, ``2s`` or ``1m``."""
    if isinstance(value, bool):
        raise ValidationError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        match = _DURATION_RE.match(str(value))
        if not match:
            raise ValidationError(f"invalid duration: {value!r}")
        seconds = float(match.group(1)) * _DURATION_UNITS[match.group(2)]
    if seconds <= 0:
        raise ValidationError(f"duration must be positive, got {value!r}")
    return seconds


def parse_rate(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"rate must be an integer, got {value!r}")
    if value <= 0:
        raise ValidationError(f"rate must be positive, got {value!r}")
    return value


def _parse_target(name: str, table) -> TargetSpec:
    if not isinstance(table, dict):
        raise ValidationError(f"test '{name}' must be a table")

    url = table.get("url")
    address = table.get("address")
    if bool(url) == bool(address):
        raise ValidationError(f"test '{name}' needs exactly one of 'url' or 'address'")

    headers = table.get("headers", {})
    if not isinstance(headers, dict):
        raise ValidationError(f"headers of test '{name}' must be a table")

    return TargetSpec(
        name=name,
        locator=url or address,
        rate=parse_rate(table["rate"]) if "rate" in table else None,
        duration=parse_duration(table["duration"]) if "duration" in table else None,
        headers={str(k): str(v) for k, v in headers.items()},
    )


def parse_test_config(data: dict) -> TestConfig:
    name = data.get("name", "")
    if not isinstance(name, str) or not name:
        raise ValidationError("missing test name")

    tests = data.get("test", {})
    if not isinstance(tests, dict):
        raise ValidationError("'test' must be a table of targets")

    return TestConfig(
        name=name,
        rate=parse_rate(data["rate"]) if "rate" in data else None,
        duration=parse_duration(data["duration"]) if "duration" in data else None,
        targets=[_parse_target(target, table) for target, table in tests.items()],
    )


def load_test_file(path: str) -> TestConfig:
    """Parse a TOML test description into a TestConfig."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except OSError as e:
        raise ValidationError(f"cannot read config {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValidationError(f"invalid config {path}: {e}") from e
    return parse_test_config(data)
