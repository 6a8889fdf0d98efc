class BrokerError(Exception):
    """Base class for session broker failures."""


class SessionValidationError(BrokerError):
    """A control message was malformed or referenced something that does not exist."""


class DuplicateSessionError(SessionValidationError):
    def __init__(self, connection_id: int):
        super().__init__(f"Connection {connection_id} is already active")
        self.connection_id = connection_id


class NotConnectedError(BrokerError):
    def __init__(self, connection_id: int | None = None):
        super().__init__("Not connected to VPN")
        self.connection_id = connection_id


class UpstreamForwardError(BrokerError):
    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code
