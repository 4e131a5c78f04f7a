# fedengine/activitypub/result.py
"""Result type returned by inbox handlers and outbox operations."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class HandlerResult:
    """
    Outcome of processing an activity.

    Handlers return failures instead of raising; remote redelivery and
    unknown targets are successes.
    """
    success: bool
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **details: Any) -> "HandlerResult":
        return cls(success=True, details=details)

    @classmethod
    def fail(cls, error: str, **details: Any) -> "HandlerResult":
        return cls(success=False, error=error, details=details)
