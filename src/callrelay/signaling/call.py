"""Call state dataclasses."""

from __future__ import annotations

import dataclasses
import time
from enum import StrEnum
from typing import Any


def now_ms() -> int:
    return int(time.time() * 1000)


class CallStatus(StrEnum):
    """Externally visible call status."""

    OFFER = "offer"
    ACCEPT = "accept"
    REJECT = "reject"
    TERMINATE = "terminate"
    TIMEOUT = "timeout"
    RINGING = "ringing"
    CONNECTED = "connected"


# Statuses after which a call is gone from every registry
TERMINAL_STATUSES = frozenset(
    {CallStatus.REJECT, CallStatus.TERMINATE, CallStatus.TIMEOUT}
)


class SignalType(StrEnum):
    OFFER = "offer"
    ACCEPT = "accept"
    REJECT = "reject"
    TERMINATE = "terminate"


@dataclasses.dataclass
class CallOffer:
    """A call that is still negotiable (inbound offer or outbound initiation)."""

    call_id: str
    from_user: str
    from_address: str
    is_video: bool = False
    is_group: bool = False
    call_key: bytes | None = None
    has_encrypted_key: bool = False
    sdp: str | None = None
    outgoing: bool = False
    to_address: str | None = None
    created_at: int = dataclasses.field(default_factory=now_ms)


@dataclasses.dataclass
class SignalEvent:
    """Internal event produced from either inbound channel."""

    type: SignalType
    call_id: str
    offer: CallOffer | None = None
    reason: str | None = None


@dataclasses.dataclass
class RelayData:
    ip: str | None = None
    port: str | None = None
    token: str | None = None

    def to_dict(self) -> dict[str, str]:
        return {
            k: v
            for k, v in (("ip", self.ip), ("port", self.port), ("token", self.token))
            if v is not None
        }


@dataclasses.dataclass
class CallEvent:
    """Normalized call lifecycle event handed to outward consumers."""

    id: str
    from_user: str
    to: str
    status: CallStatus
    timestamp: int = dataclasses.field(default_factory=now_ms)
    is_video: bool | None = None
    is_group: bool | None = None
    call_key: str | None = None
    sdp: str | None = None
    relay_data: RelayData | None = None
    outgoing: bool = False

    @classmethod
    def from_offer(cls, offer: CallOffer, to: str) -> CallEvent:
        return cls(
            id=offer.call_id,
            from_user=offer.from_user,
            to=to,
            status=CallStatus.OFFER,
            is_video=offer.is_video,
            is_group=offer.is_group,
            call_key=offer.call_key.hex() if offer.call_key else None,
            sdp=offer.sdp,
        )

    def to_dict(self) -> dict[str, Any]:
        """Wire shape used by the relay service.  Unset optionals are omitted."""
        data: dict[str, Any] = {
            "id": self.id,
            "from": self.from_user,
            "to": self.to,
            "status": str(self.status),
            "timestamp": self.timestamp,
        }
        optional = (
            ("isVideo", self.is_video),
            ("isGroup", self.is_group),
            ("callKey", self.call_key),
            ("sdp", self.sdp),
        )
        for key, value in optional:
            if value is not None:
                data[key] = value
        if self.relay_data is not None:
            data["relayData"] = self.relay_data.to_dict()
        return data


@dataclasses.dataclass
class OutgoingCallRequest:
    phone_number: str
    is_video: bool = False


@dataclasses.dataclass
class PlacedCall:
    """Result of a successfully sent outbound offer."""

    call_id: str
    to_address: str
    success: bool = True
