"""Call signaling engine: pending-call registry and call flows."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from callrelay.errors import (
    CallNotFound,
    DecodeError,
    InvalidAddress,
    TransportFailure,
    Unauthenticated,
)
from callrelay.events import EventEmitter
from callrelay.signaling.address import (
    AddressNormalizer,
    CountryPrefixNormalizer,
    user_part,
)
from callrelay.signaling.call import (
    CallOffer,
    OutgoingCallRequest,
    PlacedCall,
    SignalEvent,
    SignalType,
)
from callrelay.signaling.codec import (
    DEFAULT_REJECT_REASON,
    build_accept_node,
    build_offer_node,
    build_reject_node,
    build_terminate_node,
    decode_accept_node,
    decode_call_list_event,
    decode_offer_node,
    decode_reject_node,
    decode_terminate_node,
    generate_call_id,
)
from callrelay.signaling.node import ProtocolNode
from callrelay.signaling.session import (
    CALL_ACK_EVENT,
    CALL_LIST_EVENT,
    CALL_NODE_EVENT,
    MessagingSession,
)

logger = logging.getLogger(__name__)

_SIGNAL = "signal"

_NodeHandler = Callable[[ProtocolNode, ProtocolNode], None]
SignalHandler = Callable[[SignalEvent], None]


class CallSignalingEngine:
    """Tracks negotiable calls and drives offer/accept/reject/terminate.

    Inbound ``call`` stanzas and structured call-list notifications are both
    turned into ``SignalEvent`` values and merged through one registry keyed
    by call id (last write wins).  The registry holds only calls that can
    still be answered; accepting, rejecting or terminating removes them.

    With ``listen_call_list=False`` the owner feeds call-list entries to
    ``handle_call_list`` itself, e.g. to interleave them with its own
    status handling.
    """

    def __init__(
        self,
        session: MessagingSession,
        *,
        normalizer: AddressNormalizer | None = None,
        log: logging.Logger | None = None,
        listen_call_list: bool = True,
    ) -> None:
        self._session = session
        self._pending: dict[str, CallOffer] = {}
        self._normalize = normalizer or CountryPrefixNormalizer()
        self._log = log or logger
        self._signals = EventEmitter(log=self._log)
        self._node_handlers: dict[str, _NodeHandler] = {
            "offer": self._on_offer,
            "accept": self._on_accept,
            "reject": self._on_reject,
            "terminate": self._on_terminate,
        }
        self._subscriptions: list[tuple[str, Callable[[Any], None]]] = [
            (CALL_NODE_EVENT, self.handle_call_node),
            (CALL_ACK_EVENT, self.handle_call_ack),
        ]
        if listen_call_list:
            self._subscriptions.append((CALL_LIST_EVENT, self.handle_call_list))
        for event, handler in self._subscriptions:
            session.events.on(event, handler)

    def close(self) -> None:
        """Detach from the session event stream and drop all state."""
        for event, handler in self._subscriptions:
            self._session.events.off(event, handler)
        self._subscriptions = []
        self._pending.clear()
        self._signals.clear()

    # ------------------------------------------------------------------
    # Signal channel
    # ------------------------------------------------------------------

    def on_signal(self, handler: SignalHandler) -> None:
        self._signals.on(_SIGNAL, handler)

    def off_signal(self, handler: SignalHandler) -> None:
        self._signals.off(_SIGNAL, handler)

    def _emit(self, signal: SignalEvent) -> None:
        self._signals.emit(_SIGNAL, signal)

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def get_pending_call(self, call_id: str) -> CallOffer | None:
        return self._pending.get(call_id)

    def get_pending_calls(self) -> list[CallOffer]:
        return list(self._pending.values())

    def evict(self, call_id: str) -> CallOffer | None:
        """Drop a pending call without signaling.  No-op for unknown ids."""
        offer = self._pending.pop(call_id, None)
        if offer is not None:
            self._log.debug("Evicted pending call %s", call_id)
        return offer

    def _store_offer(self, offer: CallOffer) -> None:
        if offer.call_id in self._pending:
            self._log.debug("Replacing pending offer %s", offer.call_id)
        self._pending[offer.call_id] = offer
        self._emit(SignalEvent(SignalType.OFFER, offer.call_id, offer=offer))

    def _answerable(self, call_id: str) -> CallOffer:
        # Outgoing entries are pending on the remote side, not ours to answer
        offer = self._pending.get(call_id)
        if offer is None or offer.outgoing:
            raise CallNotFound(call_id)
        return offer

    # ------------------------------------------------------------------
    # Inbound channels
    # ------------------------------------------------------------------

    def handle_call_node(self, raw: ProtocolNode | dict[str, Any]) -> None:
        """Handle a ``call`` stanza from the session stream."""
        try:
            node = ProtocolNode.coerce(raw)
        except DecodeError as exc:
            self._log.warning("Dropping undecodable call stanza: %s", exc)
            return

        self._log.debug("Call stanza: %s", str(node.to_dict())[:500])
        for child in node.children():
            handler = self._node_handlers.get(child.tag)
            if handler is None:
                self._log.debug("Ignoring <%s> in call stanza", child.tag)
                continue
            try:
                handler(node, child)
            except DecodeError as exc:
                self._log.warning("Dropping <%s>: %s", child.tag, exc)

    def handle_call_ack(self, raw: ProtocolNode | dict[str, Any]) -> None:
        self._log.debug("Call ack: %s", str(raw)[:200])

    def handle_call_list(self, entries: Sequence[dict[str, Any]]) -> None:
        """Handle a structured call-list notification.

        Only ``offer`` entries are handled here; other statuses are left to
        whoever forwards events to outward consumers.
        """
        if not isinstance(entries, (list, tuple)):
            self._log.warning("Ignoring call-list event of type %s", type(entries))
            return
        offers = decode_call_list_event(entries)
        expected = sum(
            1 for e in entries if isinstance(e, dict) and e.get("status") == "offer"
        )
        if expected > len(offers):
            self._log.warning(
                "Dropped %d malformed call-list offer(s)", expected - len(offers)
            )
        for offer in offers:
            self._store_offer(offer)

    def _on_offer(self, envelope: ProtocolNode, child: ProtocolNode) -> None:
        offer = decode_offer_node(envelope.attrs, child)
        if offer.has_encrypted_key:
            self._log.debug("Offer %s carries encrypted call key", offer.call_id)
        self._log.info(
            "Incoming %s call %s from %s",
            "video" if offer.is_video else "audio",
            offer.call_id,
            offer.from_address,
        )
        self._store_offer(offer)

    def _on_accept(self, envelope: ProtocolNode, child: ProtocolNode) -> None:
        call_id = decode_accept_node(child)
        self._log.info("Call accepted: %s", call_id)
        self._pending.pop(call_id, None)
        self._emit(SignalEvent(SignalType.ACCEPT, call_id))

    def _on_reject(self, envelope: ProtocolNode, child: ProtocolNode) -> None:
        call_id, reason = decode_reject_node(child)
        self._log.info("Call rejected: %s (%s)", call_id, reason)
        self._pending.pop(call_id, None)
        self._emit(SignalEvent(SignalType.REJECT, call_id, reason=reason))

    def _on_terminate(self, envelope: ProtocolNode, child: ProtocolNode) -> None:
        call_id = decode_terminate_node(child)
        self._log.info("Call terminated: %s", call_id)
        self._pending.pop(call_id, None)
        self._emit(SignalEvent(SignalType.TERMINATE, call_id))

    # ------------------------------------------------------------------
    # Outbound flows
    # ------------------------------------------------------------------

    def _require_identity(self) -> str:
        me = self._session.user_id
        if not me:
            raise Unauthenticated()
        return me

    async def _send(self, node: ProtocolNode, action: str, call_id: str) -> None:
        try:
            await self._session.send_node(node)
        except Exception as exc:
            self._log.warning(
                "Failed to send %s for call %s: %s", action, call_id, exc
            )
            raise TransportFailure(str(exc) or type(exc).__name__) from exc

    async def _resolve_devices(self, address: str) -> list[str]:
        try:
            devices = await self._session.resolve_device_addresses([address])
        except Exception as exc:
            self._log.info(
                "Device lookup for %s failed (%s), using primary address",
                address,
                exc,
            )
            return [address]
        return list(devices) or [address]

    async def initiate_call(self, request: OutgoingCallRequest) -> PlacedCall:
        """Send an offer to ``request.phone_number``.

        Device lookup and encryption-session assertion are best effort; only
        a failed send aborts the call.  No retry is attempted.
        """
        me = self._require_identity()
        call_id = generate_call_id()
        try:
            to_address = self._normalize(request.phone_number)
        except ValueError as exc:
            raise InvalidAddress(str(exc)) from exc
        self._log.info("Starting call %s to %s", call_id, to_address)

        devices = await self._resolve_devices(to_address)
        try:
            await self._session.assert_sessions(devices, False)
        except Exception as exc:
            self._log.warning("Session assertion for %s failed: %s", to_address, exc)

        # Registered before the send so an accept racing the send finds it
        self._pending[call_id] = CallOffer(
            call_id=call_id,
            from_user=user_part(me),
            from_address=me,
            is_video=request.is_video,
            outgoing=True,
            to_address=to_address,
        )
        node = build_offer_node(to_address, call_id, me, request.is_video)
        try:
            await self._send(node, "offer", call_id)
        except TransportFailure:
            self._pending.pop(call_id, None)
            raise
        self._log.info("Offer for call %s sent", call_id)
        return PlacedCall(call_id=call_id, to_address=to_address)

    async def accept_call(self, call_id: str) -> CallOffer:
        offer = self._answerable(call_id)
        self._require_identity()
        node = build_accept_node(call_id, offer.from_address, offer.from_address)
        await self._send(node, "accept", call_id)
        self._pending.pop(call_id, None)
        self._log.info("Call %s accepted", call_id)
        return offer

    async def reject_call(
        self, call_id: str, reason: str = DEFAULT_REJECT_REASON
    ) -> CallOffer:
        offer = self._answerable(call_id)
        self._require_identity()
        node = build_reject_node(
            call_id, offer.from_address, offer.from_address, reason
        )
        await self._send(node, "reject", call_id)
        self._pending.pop(call_id, None)
        self._log.info("Call %s rejected (%s)", call_id, reason)
        return offer

    async def terminate_call(self, call_id: str, target_address: str) -> None:
        """Send a terminate whether or not ``call_id`` is pending."""
        me = self._require_identity()
        node = build_terminate_node(call_id, target_address, me)
        await self._send(node, "terminate", call_id)
        self._pending.pop(call_id, None)
        self._log.info("Call %s terminated", call_id)
