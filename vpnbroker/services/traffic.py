"""Per-session traffic accounting.

Speed samples are produced lazily: the elapsed-time check runs only when a
byte count arrives, so a session without traffic stays silent instead of
reporting zero speeds on a timer.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from vpnbroker.schemas.control import stats_message
from vpnbroker.services.registry import ConnectionRegistry
from vpnbroker.services.vpn_session import ControlChannel, SpeedWindow, VpnSession

logger = logging.getLogger(__name__)

BITS_PER_BYTE = 8
BYTES_PER_MEGABIT_UNIT = 1024 * 1024
BYTES_PER_KB = 1024


@dataclass(frozen=True)
class StatsSample:
    download_mbps: float
    upload_mbps: float
    data_used_kb: float

    def to_message(self) -> dict:
        return stats_message(self.download_mbps, self.upload_mbps, self.data_used_kb)


class TrafficAccountant:
    def __init__(
        self,
        registry: ConnectionRegistry,
        *,
        window_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._registry = registry
        self._clock = clock
        self.window_seconds = window_seconds

    def new_window(self) -> SpeedWindow:
        return SpeedWindow(started_at=self._clock())

    async def on_request_sent(self, connection_id: int, byte_length: int) -> StatsSample | None:
        return await self._observe(connection_id, up=byte_length, down=0)

    async def on_response_received(self, connection_id: int, byte_length: int) -> StatsSample | None:
        return await self._observe(connection_id, up=0, down=byte_length)

    async def _observe(self, connection_id: int, *, up: int, down: int) -> StatsSample | None:
        result = self._registry.apply(connection_id, lambda s: self._record(s, up=up, down=down))
        if result is None:
            logger.debug("Traffic for inactive connection_id=%s ignored", connection_id)
            return None
        channel, sample = result
        if sample is not None:
            await self._publish(channel, connection_id, sample)
        return sample

    def _record(self, session: VpnSession, *, up: int, down: int) -> tuple[ControlChannel, StatsSample | None]:
        up = max(0, int(up or 0))
        down = max(0, int(down or 0))
        now = self._clock()

        session.data_used_bytes += up + down
        window = session.window
        window.bytes_up += up
        window.bytes_down += down

        elapsed = now - window.started_at
        if elapsed < self.window_seconds:
            return session.channel, None

        sample = StatsSample(
            download_mbps=window.bytes_down * BITS_PER_BYTE / elapsed / BYTES_PER_MEGABIT_UNIT,
            upload_mbps=window.bytes_up * BITS_PER_BYTE / elapsed / BYTES_PER_MEGABIT_UNIT,
            data_used_kb=session.data_used_bytes / BYTES_PER_KB,
        )
        window.reset(now)
        return session.channel, sample

    async def _publish(self, channel: ControlChannel, connection_id: int, sample: StatsSample) -> None:
        try:
            await channel.send(sample.to_message())
        except Exception as exc:
            logger.debug("Stats delivery skipped for connection_id=%s: %s", connection_id, exc)
