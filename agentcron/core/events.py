"""
agentcron event system: types and constants.

Job mutations and run state transitions produce events.
Tests and the CLI subscribe to them through the EventBus.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
import time
import uuid


class EventType:
    """
    Event type constants.

    Hierarchical naming: "category:action"
    Supports wildcard matching: "run:*" matches "run:started"
    """

    # Job records
    JOB_CREATED = "job:created"
    JOB_UPDATED = "job:updated"
    JOB_DELETED = "job:deleted"

    # Manual runs
    RUN_SPAWNING = "run:spawning"
    RUN_STARTED = "run:started"
    RUN_COMPLETE = "run:complete"
    RUN_FAILED = "run:failed"

    # Wildcard
    ALL = "*"


@dataclass(slots=True)
class Event:
    """A single event: typed, timestamped, with an event-specific payload."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    source: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    timestamp: float = field(default_factory=time.time)
