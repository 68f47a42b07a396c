"""Exception hierarchy for push-dispatch.

Validation and ownership errors are raised to the caller before any registry
mutation or gateway call. Transport errors are raised by gateways and
captured per chunk by the dispatch engine; they never escape a dispatch.
"""


class PushDispatchError(Exception):
    """Base class for all push-dispatch errors."""


class RequestValidationError(PushDispatchError):
    """Caller input is malformed (missing fields, unknown platform, empty ids)."""


class InvalidIntentError(RequestValidationError):
    """A notification intent cannot be shaped into the requested message variant."""


class TokenNotFoundError(PushDispatchError):
    """Token does not exist or is not owned by the given recipient."""

    token: str
    recipient_id: str

    def __init__(self, recipient_id: str, token: str) -> None:
        super().__init__(f"Token not registered for recipient {recipient_id!r}")
        self.recipient_id = recipient_id
        self.token = token


class TransportError(PushDispatchError):
    """A gateway call failed as a whole (network, authentication, quota)."""


class CircuitOpenError(TransportError):
    """Gateway calls are short-circuited while the circuit breaker is open."""
