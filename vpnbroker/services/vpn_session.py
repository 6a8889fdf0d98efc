from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol


class ControlChannel(Protocol):
    """Bidirectional message channel owned by one logged-in client."""

    async def send(self, message: dict[str, Any]) -> None: ...


@dataclass
class SpeedWindow:
    started_at: float
    bytes_down: int = 0
    bytes_up: int = 0

    def reset(self, now: float) -> None:
        self.started_at = now
        self.bytes_down = 0
        self.bytes_up = 0


@dataclass
class VpnSession:
    connection_id: int
    user_id: int
    server_id: int
    channel: ControlChannel
    remote_ip: str
    proxy_target: str
    window: SpeedWindow
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    data_used_bytes: int = 0

    def owned_by(self, channel: ControlChannel) -> bool:
        return self.channel is channel
