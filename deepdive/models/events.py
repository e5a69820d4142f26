from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    STAGE_UPDATE = "stage_update"
    TOKEN = "token"
    TIER_SELECTED = "tier_selected"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class SSEEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        return f"event: {self.event.value}\ndata: {json.dumps(self.data, default=str)}\n\n"

    def to_sse(self) -> dict[str, str]:
        return {"event": self.event.value, "data": json.dumps(self.data, default=str)}
