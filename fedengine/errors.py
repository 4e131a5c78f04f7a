# fedengine/errors.py
"""
Exception types shared across the federation engine.

Outward-facing handlers convert these into result objects; they only
propagate out of the boundary helpers and the HTTP client.
"""


class FederationError(Exception):
    """Base class for federation engine errors."""


class FetchError(FederationError, ConnectionError):
    """A remote fetch could not be completed (network failure, bad payload)."""


class ActivityValidationError(FederationError, ValueError):
    """An inbound activity document is malformed."""
