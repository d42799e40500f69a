from __future__ import annotations

from datetime import datetime, timezone

from ...core.ports.services import Clock


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)
