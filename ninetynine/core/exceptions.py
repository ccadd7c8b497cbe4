"""Custom exceptions for the game sync client."""


class SyncError(Exception):
    """Base exception for sync-related errors."""
    pass


class TransportError(SyncError):
    """Exception raised for pub/sub session errors."""
    pass


class ConnectionFailedError(TransportError):
    """Exception raised when the socket or the STOMP handshake fails."""
    pass


class NotConnectedError(TransportError):
    """Exception raised when sending or subscribing without a live session."""
    pass


class DecodeError(SyncError):
    """Exception raised for inbound payloads that cannot be decoded."""
    pass


class FrameError(DecodeError):
    """Exception raised for malformed STOMP frames."""
    pass


class ServerError(SyncError):
    """Exception carrying an ERROR message announced by the server."""
    pass


class JoinTimeoutError(SyncError):
    """Raised (or surfaced) when a join request goes unanswered."""

    def __init__(self, message: str = "Room not found - Please enter an existing Room ID"):
        super().__init__(message)


class ClientError(SyncError):
    """Exception raised by the broker for malformed client traffic."""
    pass
