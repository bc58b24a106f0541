"""
TaskTrack Identity — the authenticated caller handed in by the AuthProvider.

The core never derives or caches identities: every service call receives
one explicitly. ``execution_id`` only correlates log entries of one call.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict

from tasktrack.engine.errors import ValidationError


@dataclass(frozen=True)
class Identity:
    """Verified caller identity: ``{id, username}``."""

    id: str
    username: str
    execution_id: str = field(
        default_factory=lambda: f"exec_{uuid.uuid4().hex[:12]}",
        compare=False,
    )

    def __post_init__(self) -> None:
        if not self.id or not str(self.id).strip():
            raise ValidationError("Identity id is required")
        if not self.username or not str(self.username).strip():
            raise ValidationError("Identity username is required")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging."""
        return {
            "user_id": self.id,
            "username": self.username,
            "execution_id": self.execution_id,
        }
