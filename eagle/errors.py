"""Exceptions raised while configuring and starting a load test.

Per-request failures are never exceptions: they travel as ordinary hits
with their status code (0 for transport errors).
"""


class EagleError(Exception):
    """Base class for every configuration-time failure."""


class ValidationError(EagleError, ValueError):
    """Empty names, empty endpoint sets, missing layers, bad config values."""


class ResolutionError(EagleError, LookupError):
    """A discovery lookup failed or returned no records."""


class ConstructionError(EagleError, ValueError):
    """An endpoint can't be turned into a request for the traffic generator."""
