from __future__ import annotations

import logging
import threading
from collections import Counter
from typing import Callable, TypeVar

from vpnbroker.services.errors import DuplicateSessionError
from vpnbroker.services.vpn_session import ControlChannel, VpnSession

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConnectionRegistry:
    """Live VPN sessions keyed by connection id.

    Every read-modify-write goes through one lock so that a removal racing a
    counter update cannot leave a half-updated session behind. Iteration works
    on snapshots taken under the lock.
    """

    def __init__(self) -> None:
        self._sessions: dict[int, VpnSession] = {}
        self._lock = threading.Lock()

    def register(self, session: VpnSession) -> None:
        with self._lock:
            if session.connection_id in self._sessions:
                raise DuplicateSessionError(session.connection_id)
            self._sessions[session.connection_id] = session
        logger.info(
            "Registered session connection_id=%s user_id=%s server_id=%s target=%s",
            session.connection_id, session.user_id, session.server_id, session.proxy_target,
        )

    def get(self, connection_id: int) -> VpnSession | None:
        with self._lock:
            return self._sessions.get(connection_id)

    def remove(self, connection_id: int) -> VpnSession | None:
        with self._lock:
            session = self._sessions.pop(connection_id, None)
        if session is not None:
            logger.info("Removed session connection_id=%s", connection_id)
        return session

    def remove_if(self, connection_id: int, predicate: Callable[[VpnSession], bool]) -> VpnSession | None:
        with self._lock:
            session = self._sessions.get(connection_id)
            if session is None or not predicate(session):
                return None
            del self._sessions[connection_id]
        logger.info("Removed session connection_id=%s", connection_id)
        return session

    def remove_by_channel(self, channel: ControlChannel) -> list[VpnSession]:
        with self._lock:
            owned = [s for s in self._sessions.values() if s.owned_by(channel)]
            for session in owned:
                del self._sessions[session.connection_id]
        if owned:
            logger.info(
                "Removed %d session(s) owned by closed channel: %s",
                len(owned), ",".join(str(s.connection_id) for s in owned),
            )
        return owned

    def apply(self, connection_id: int, fn: Callable[[VpnSession], T]) -> T | None:
        """Run ``fn`` against a live session under the registry lock.

        Returns ``None`` without calling ``fn`` when the id is not registered.
        """
        with self._lock:
            session = self._sessions.get(connection_id)
            if session is None:
                return None
            return fn(session)

    def snapshot(self) -> list[VpnSession]:
        with self._lock:
            return list(self._sessions.values())

    def server_usage(self) -> dict[int, int]:
        return dict(Counter(s.server_id for s in self.snapshot()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._sessions
