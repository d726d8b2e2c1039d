"""Call signaling exceptions.

The engine API raises ``Unauthenticated``, ``CallNotFound``,
``TransportFailure`` and, for an unusable destination, ``InvalidAddress``.
``DecodeError`` is raised by the codec and absorbed by the engine.
"""

from __future__ import annotations


class CallSignalingError(Exception):
    default_detail: str = "Call signaling error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class Unauthenticated(CallSignalingError):
    default_detail = "No authenticated user on the messaging session"


class CallNotFound(CallSignalingError):
    default_detail = "Call not found"

    def __init__(self, call_id: str) -> None:
        super().__init__(f"Call not found: {call_id}")
        self.call_id = call_id


class TransportFailure(CallSignalingError):
    default_detail = "Failed to send stanza"


class SignalingUnavailable(CallSignalingError):
    default_detail = "Call signaling is not enabled"


class DecodeError(CallSignalingError):
    default_detail = "Malformed call stanza"


class InvalidAddress(CallSignalingError):
    default_detail = "Destination is not a valid phone number or address"
