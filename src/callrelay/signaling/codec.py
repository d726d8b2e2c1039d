"""Call stanza decoder and builders.

Pure functions: decoding turns ``call`` stanza children (and structured
call-list entries) into domain values, building produces ``call`` envelopes
ready for the session transport.
"""

from __future__ import annotations

import random
import secrets
import time
from collections.abc import Iterable, Mapping
from typing import Any

from callrelay.errors import DecodeError
from callrelay.signaling.address import is_group_address, user_part
from callrelay.signaling.call import CallOffer
from callrelay.signaling.node import ProtocolNode

DEFAULT_REJECT_REASON = "busy"

# Fixed capability advertisement, not negotiated against the callee
_AUDIO_RATES = ("16000", "8000")
_CAPABILITY_BLOB = bytes([1, 4, 255, 131, 207, 4])
_NET_MEDIUM = "3"
_KEYGEN_VERSION = "2"
_VIDEO_CODEC = "vp8"


def generate_call_id() -> str:
    """16 random bytes as uppercase hex."""
    return secrets.token_hex(16).upper()


def generate_message_tag() -> str:
    """Correlation tag ``<epoch ms>.<0..999999>``.  Uniqueness is best-effort."""
    return f"{int(time.time() * 1000)}.{random.randint(0, 999999)}"


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _require_call_id(node: ProtocolNode) -> str:
    call_id = node.attr("call-id")
    if call_id is None:
        raise DecodeError(f"<{node.tag}> without call-id")
    return call_id


def decode_offer_node(
    envelope_attrs: Mapping[str, str], offer: ProtocolNode
) -> CallOffer:
    """Decode an ``offer`` child of a ``call`` envelope.

    The envelope must carry ``from`` and the offer ``call-id``.  An ``enc``
    child only flags that key material was sent; it is not decrypted.
    """
    call_id = _require_call_id(offer)
    from_address = envelope_attrs.get("from") or ""
    if not from_address:
        raise DecodeError(f"Offer {call_id} without sender address")

    is_video = False
    has_encrypted_key = False
    for child in offer.children():
        if child.tag == "video":
            is_video = True
        elif child.tag == "enc" and child.content:
            has_encrypted_key = True

    return CallOffer(
        call_id=call_id,
        from_user=user_part(from_address),
        from_address=from_address,
        is_video=is_video,
        is_group=is_group_address(from_address),
        has_encrypted_key=has_encrypted_key,
    )


def decode_accept_node(node: ProtocolNode) -> str:
    return _require_call_id(node)


def decode_reject_node(node: ProtocolNode) -> tuple[str, str | None]:
    """Return ``(call_id, reason)``; reason is ``None`` when absent."""
    return _require_call_id(node), node.attr("reason")


def decode_terminate_node(node: ProtocolNode) -> str:
    return _require_call_id(node)


def decode_call_list_entry(entry: Mapping[str, Any]) -> CallOffer:
    """Decode one structured ``status == "offer"`` call notification."""
    call_id = entry.get("id")
    from_address = entry.get("from")
    if not call_id or not from_address:
        raise DecodeError("Call-list offer without id or sender")
    from_address = str(from_address)
    return CallOffer(
        call_id=str(call_id),
        from_user=user_part(from_address),
        from_address=from_address,
        is_video=bool(entry.get("isVideo", False)),
        is_group=bool(entry.get("isGroup", False)),
    )


def decode_call_list_event(entries: Iterable[Mapping[str, Any]]) -> list[CallOffer]:
    """Offers contained in a call-list notification.

    Entries with any other status are left to the state machine; malformed
    offer entries are skipped.
    """
    offers: list[CallOffer] = []
    for entry in entries:
        if not isinstance(entry, Mapping) or entry.get("status") != "offer":
            continue
        try:
            offers.append(decode_call_list_entry(entry))
        except DecodeError:
            continue
    return offers


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------


def _audio_nodes() -> list[ProtocolNode]:
    return [
        ProtocolNode("audio", {"enc": "opus", "rate": rate}) for rate in _AUDIO_RATES
    ]


def build_call_envelope(
    to: str, child: ProtocolNode, *, message_tag: str | None = None
) -> ProtocolNode:
    """Wrap a signaling child in a ``call`` envelope with a correlation tag."""
    return ProtocolNode(
        "call",
        {"to": to, "id": message_tag or generate_message_tag()},
        [child],
    )


def build_offer_node(
    target_address: str,
    call_id: str,
    caller_address: str,
    is_video: bool = False,
    *,
    message_tag: str | None = None,
) -> ProtocolNode:
    content = _audio_nodes()
    content += [
        ProtocolNode("net", {"medium": _NET_MEDIUM}),
        ProtocolNode("capability", {"ver": "1"}, _CAPABILITY_BLOB),
        ProtocolNode("encopt", {"keygen": _KEYGEN_VERSION}),
    ]
    if is_video:
        content.append(ProtocolNode("video", {"enc": _VIDEO_CODEC}))
    offer = ProtocolNode(
        "offer", {"call-id": call_id, "call-creator": caller_address}, content
    )
    return build_call_envelope(target_address, offer, message_tag=message_tag)


def build_accept_node(
    call_id: str,
    offerer_address: str,
    call_creator_address: str,
    *,
    message_tag: str | None = None,
) -> ProtocolNode:
    accept = ProtocolNode(
        "accept",
        {"call-id": call_id, "call-creator": call_creator_address},
        _audio_nodes(),
    )
    return build_call_envelope(offerer_address, accept, message_tag=message_tag)


def build_reject_node(
    call_id: str,
    offerer_address: str,
    call_creator_address: str,
    reason: str = DEFAULT_REJECT_REASON,
    *,
    message_tag: str | None = None,
) -> ProtocolNode:
    reject = ProtocolNode(
        "reject",
        {
            "call-id": call_id,
            "call-creator": call_creator_address,
            "reason": reason,
        },
    )
    return build_call_envelope(offerer_address, reject, message_tag=message_tag)


def build_terminate_node(
    call_id: str,
    target_address: str,
    call_creator_address: str,
    *,
    message_tag: str | None = None,
) -> ProtocolNode:
    terminate = ProtocolNode(
        "terminate", {"call-id": call_id, "call-creator": call_creator_address}
    )
    return build_call_envelope(target_address, terminate, message_tag=message_tag)
