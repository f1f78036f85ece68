"""Client-side view of a mining session."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from coremine.timeutil import ensure_utc


def _parse(value: str | None) -> datetime | None:
    return ensure_utc(datetime.fromisoformat(value)) if value else None


@dataclass(frozen=True)
class LocalSession:
    """Session state held by the accumulator and buffered by the offline ledger.

    ``last_update`` is local bookkeeping and is never sent to the server.
    """

    id: str
    user_id: str
    start_time: datetime
    last_update: datetime
    tokens_mined: float = 0.0
    active: bool = True
    end_time: datetime | None = None
    epoch_id: int | None = None

    def to_sync_body(self) -> dict[str, Any]:
        """Body for ``PUT /api/v1/mining/sessions/{id}``."""
        return {
            "start_time": self.start_time.isoformat(),
            "tokens_mined": self.tokens_mined,
            "active": self.active,
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }

    def to_json(self) -> str:
        data = asdict(self)
        for key in ("start_time", "last_update", "end_time"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> LocalSession:
        data = json.loads(raw)
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            start_time=_parse(data["start_time"]),  # type: ignore[arg-type]
            last_update=_parse(data["last_update"]),  # type: ignore[arg-type]
            tokens_mined=float(data.get("tokens_mined", 0.0)),
            active=bool(data.get("active", False)),
            end_time=_parse(data.get("end_time")),
            epoch_id=data.get("epoch_id"),
        )

    @classmethod
    def from_api(cls, data: dict[str, Any], last_update: datetime | None = None) -> LocalSession:
        """Build from a server ``SessionResponse`` payload."""
        start = _parse(data["start_time"])
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            start_time=start,  # type: ignore[arg-type]
            last_update=last_update or start,  # type: ignore[arg-type]
            tokens_mined=float(data.get("tokens_mined", 0.0)),
            active=bool(data.get("active", True)),
            end_time=_parse(data.get("end_time")),
            epoch_id=data.get("epoch_id"),
        )
