"""
Error taxonomy for the ARSnova feedback client
"""

from typing import Optional


class ArsnovaError(Exception):
    """Base class for all client errors"""
    pass


class ConfigurationError(ArsnovaError):
    """Raised when configuration is invalid or missing"""
    pass


# Push channel errors

class ConnectionError(ArsnovaError):
    """
    Transient push channel failure.

    Raised when the WebSocket cannot be opened or drops unexpectedly.
    Triggers a reconnect with backoff.
    """
    pass


class ConnectionExhausted(ArsnovaError):
    """Terminal push channel failure after all reconnect attempts were used"""

    def __init__(self, room_id: str, attempts: int, last_error: Optional[BaseException] = None):
        self.room_id = room_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Connection for room {room_id} failed after {attempts} attempts"
            + (f": {last_error}" if last_error else "")
        )


class DecodeError(ArsnovaError):
    """A single inbound frame could not be decoded"""
    pass


class StompError(ConnectionError):
    """The server answered with a STOMP ERROR frame"""
    pass


# Registry errors

class RegistrationError(ArsnovaError):
    """A handler registration was refused"""
    pass


class HandlerDeliveryError(ArsnovaError):
    """Delivery to a single handler failed"""

    def __init__(self, registration_id: str, reason: str):
        self.registration_id = registration_id
        self.reason = reason
        super().__init__(f"Delivery to handler {registration_id} failed: {reason}")


# HTTP API errors

class ApiError(ArsnovaError):
    """Base class for request/response errors of the REST API"""
    pass


class ApiConnectionError(ApiError):
    def __init__(self, message: str = "Cannot connect"):
        super().__init__(message)


class LoginError(ApiError):
    def __init__(self, message: str = "Cannot login"):
        super().__init__(message)


class RoomNotFoundError(ApiError):
    def __init__(self, short_id: str):
        self.short_id = short_id
        super().__init__(f"Requested room '{short_id}' not found")


class ParserError(ApiError):
    def __init__(self, message: str):
        super().__init__(f"Cannot parse response: {message}")
