"""Bridge between a messaging session and the remote call relay.

The bridge forwards raw call traffic from the session to the relay, turns
engine signals and call-list status updates into outward ``CallEvent``
notifications, and serves the commands the relay sends back (placing and
answering calls, plus plain passthrough of a few account operations).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from callrelay.config import RelayOptions
from callrelay.errors import CallNotFound, SignalingUnavailable
from callrelay.events import EventEmitter
from callrelay.relay import ConnectionStatus, RelayConnection
from callrelay.signaling.address import CountryPrefixNormalizer, user_part
from callrelay.signaling.call import (
    TERMINAL_STATUSES,
    CallEvent,
    CallStatus,
    OutgoingCallRequest,
    PlacedCall,
    SignalEvent,
    SignalType,
)
from callrelay.signaling.codec import DEFAULT_REJECT_REASON, generate_message_tag
from callrelay.signaling.engine import CallSignalingEngine
from callrelay.signaling.node import ProtocolNode
from callrelay.signaling.session import (
    CALL_ACK_EVENT,
    CALL_LIST_EVENT,
    CALL_NODE_EVENT,
    AccountSession,
)

logger = logging.getLogger(__name__)

# Outward events
INCOMING_CALL = "incoming-call"
CALL_ACCEPTED = "call-accepted"
CALL_ENDED = "call-ended"
STATUS_UPDATE = "connection.update:status"

SESSION_OPEN = "open"

_Result = dict[str, Any]

_SIGNAL_STATUS = {
    SignalType.ACCEPT: CallStatus.CONNECTED,
    SignalType.REJECT: CallStatus.REJECT,
    SignalType.TERMINATE: CallStatus.TERMINATE,
}

_CALL_LIST_STATUS = {
    "accept": CallStatus.CONNECTED,
    "reject": CallStatus.REJECT,
    "timeout": CallStatus.TIMEOUT,
    "terminate": CallStatus.TERMINATE,
}


def _ok(**data: Any) -> _Result:
    return {"success": True, **data}


def _fail(exc: BaseException | str) -> _Result:
    return {"success": False, "error": str(exc)}


class VoiceCallBridge:
    """Per-account bridge to the call relay."""

    def __init__(
        self,
        token: str,
        session: AccountSession,
        status: str,
        *,
        options: RelayOptions | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.token = token
        self.session = session
        self.session_status = status
        self.options = options or RelayOptions()
        self._log = log or logger
        # Module loggers are shared between bridges; only tune injected ones
        if log is not None and self.options.log_level:
            log.setLevel(self.options.log_level.upper())

        self.active_calls: dict[str, CallEvent] = {}
        self._events = EventEmitter(log=self._log)
        self.relay = RelayConnection(
            self.options.server_url,
            token,
            options=self.options,
            log=self._log,
        )
        self.engine: CallSignalingEngine | None = None
        self._forwarders: list[tuple[str, Callable[[Any], None]]] = []
        self._commands: dict[str, Callable[..., Any]] = {
            "sendNode": self._cmd_send_node,
            "makeCall": self._cmd_make_call,
            "acceptCall": self._cmd_accept_call,
            "rejectCall": self._cmd_reject_call,
            "terminateCall": self._cmd_terminate_call,
            "generateMessageTag": self._cmd_generate_message_tag,
            "signalRepository:decryptMessage": self._cmd_decrypt_message,
            "createParticipantNodes": self._cmd_create_participant_nodes,
            "assertSessions": self._cmd_assert_sessions,
            "onWhatsApp": self._cmd_on_whatsapp,
            "profilePictureUrl": self._cmd_profile_picture_url,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Wire everything up and connect, if the session is open."""
        if self.session_status != SESSION_OPEN:
            self._log.info(
                "Session status is %r, not connecting to relay", self.session_status
            )
            return
        if self._forwarders:
            return

        for name, handler in self._commands.items():
            self.relay.on(name, handler)
        self.relay.on_connect(self._on_relay_connect)
        self.relay.on_status(self._on_relay_status)

        self._forwarders = [
            (CALL_NODE_EVENT, self._forward_call_node),
            (CALL_ACK_EVENT, self._forward_call_ack),
            (CALL_LIST_EVENT, self._on_call_list),
        ]
        for event, handler in self._forwarders:
            self.session.events.on(event, handler)

        if self.options.enable_call_signaling:
            self.engine = CallSignalingEngine(
                self.session,
                normalizer=CountryPrefixNormalizer(self.options.default_country_code),
                log=self._log,
                listen_call_list=False,
            )
            self.engine.on_signal(self._on_signal)
            self._log.info("Call signaling initialized")

        self.relay.start()

    async def close(self) -> None:
        for event, handler in self._forwarders:
            self.session.events.off(event, handler)
        self._forwarders = []
        if self.engine is not None:
            self.engine.close()
            self.engine = None
        await self.relay.close()
        self.active_calls.clear()

    def _on_relay_connect(self) -> None:
        self.relay.emit(
            "init", self.session.user, {"token": self.token}, self.session_status
        )

    def _on_relay_status(self, status: ConnectionStatus) -> None:
        self._events.emit(STATUS_UPDATE, status)

    # ------------------------------------------------------------------
    # Outward surface
    # ------------------------------------------------------------------

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._events.on(event, handler)

    def off(self, event: str, handler: Callable[..., Any]) -> None:
        self._events.off(event, handler)

    def get_connection_status(self) -> ConnectionStatus:
        return self.relay.status

    def get_active_calls(self) -> list[CallEvent]:
        return list(self.active_calls.values())

    def _publish(self, name: str, event: CallEvent) -> None:
        self.relay.emit(name, event.to_dict())
        self._events.emit(name, event)

    def _mark(self, call_id: str, status: CallStatus) -> CallEvent | None:
        """Move a known call to ``status`` and publish the matching event.

        Unknown ids and non-monotonic moves (e.g. a second accept) are ignored.
        """
        event = self.active_calls.get(call_id)
        if event is None:
            self._log.debug("No active call %s for status %s", call_id, status)
            return None
        if status == CallStatus.CONNECTED:
            if event.status != CallStatus.OFFER:
                return None
            event.status = status
            self._publish(CALL_ACCEPTED, event)
            return event
        if status in TERMINAL_STATUSES:
            event.status = status
            del self.active_calls[call_id]
            self._publish(CALL_ENDED, event)
            return event
        return None

    # ------------------------------------------------------------------
    # Session traffic
    # ------------------------------------------------------------------

    def _forward_call_node(self, node: Any) -> None:
        self.relay.emit(CALL_NODE_EVENT, _node_payload(node))

    def _forward_call_ack(self, node: Any) -> None:
        self.relay.emit(CALL_ACK_EVENT, _node_payload(node))

    def _on_call_list(self, entries: Sequence[dict[str, Any]]) -> None:
        """Forward call-list notifications and apply them entry by entry.

        Offers go through the engine, which answers with an offer signal;
        every other status is applied here.  Entries of one notification are
        handled in list order.
        """
        self._log.debug("Call-list event: %s", entries)
        self.relay.emit(CALL_LIST_EVENT, entries)
        if not isinstance(entries, (list, tuple)):
            self._log.warning("Ignoring call-list event of type %s", type(entries))
            return
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            if entry.get("status") == "offer":
                if self.engine is not None:
                    self.engine.handle_call_list([entry])
                continue
            status = _CALL_LIST_STATUS.get(entry.get("status", ""))
            call_id = entry.get("id")
            if status is None or not call_id:
                continue
            # Connected and ended calls are no longer negotiable
            if self.engine is not None:
                self.engine.evict(call_id)
            self._mark(call_id, status)

    def _on_signal(self, signal: SignalEvent) -> None:
        self._log.debug("Signal %s for call %s", signal.type, signal.call_id)
        if signal.type != SignalType.OFFER:
            self._mark(signal.call_id, _SIGNAL_STATUS[signal.type])
            return
        if signal.offer is None:
            self._log.warning("Offer signal for %s without offer", signal.call_id)
            return

        event = CallEvent.from_offer(signal.offer, self.session.user_id or "")
        existing = self.active_calls.get(signal.call_id)
        if existing is None:
            self.active_calls[signal.call_id] = event
            self._publish(INCOMING_CALL, event)
        elif existing.status == CallStatus.OFFER:
            # Same offer seen on the other channel: keep the newest fields
            event.timestamp = existing.timestamp
            self.active_calls[signal.call_id] = event
        else:
            self._log.debug(
                "Late offer for %s call %s", existing.status, signal.call_id
            )
            if self.engine is not None:
                self.engine.evict(signal.call_id)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def _require_engine(self) -> CallSignalingEngine:
        if self.engine is None:
            raise SignalingUnavailable()
        return self.engine

    async def make_call(self, phone_number: str, is_video: bool = False) -> PlacedCall:
        engine = self._require_engine()
        placed = await engine.initiate_call(
            OutgoingCallRequest(phone_number=phone_number, is_video=is_video)
        )
        self.active_calls[placed.call_id] = CallEvent(
            id=placed.call_id,
            from_user=user_part(self.session.user_id or ""),
            to=placed.to_address,
            status=CallStatus.OFFER,
            is_video=is_video,
            outgoing=True,
        )
        return placed

    async def accept_call(self, call_id: str) -> None:
        await self._require_engine().accept_call(call_id)
        self._mark(call_id, CallStatus.CONNECTED)

    async def reject_call(
        self, call_id: str, reason: str = DEFAULT_REJECT_REASON
    ) -> None:
        await self._require_engine().reject_call(call_id, reason)
        self._mark(call_id, CallStatus.REJECT)

    async def terminate_call(
        self, call_id: str, target_address: str | None = None
    ) -> None:
        """End a call.  ``target_address`` defaults to the other party."""
        engine = self._require_engine()
        if target_address is None:
            target_address = self._peer_address(call_id)
        await engine.terminate_call(call_id, target_address)
        self._mark(call_id, CallStatus.TERMINATE)

    def _peer_address(self, call_id: str) -> str:
        event = self.active_calls.get(call_id)
        if event is None:
            raise CallNotFound(call_id)
        if event.outgoing:
            return event.to
        pending = self.engine.get_pending_call(call_id) if self.engine else None
        if pending is not None:
            return pending.from_address
        return CountryPrefixNormalizer(self.options.default_country_code)(
            event.from_user
        )

    # ------------------------------------------------------------------
    # Relay commands
    # ------------------------------------------------------------------

    async def _cmd_send_node(self, stanza: dict[str, Any]) -> _Result:
        try:
            await self.session.send_node(ProtocolNode.coerce(stanza))
        except Exception as exc:
            self._log.warning("sendNode failed: %s", exc)
            return _fail(exc)
        return _ok()

    async def _cmd_make_call(self, data: dict[str, Any]) -> _Result:
        try:
            placed = await self.make_call(
                str(data.get("phoneNumber", "")), bool(data.get("isVideo", False))
            )
        except Exception as exc:
            return _fail(exc)
        return _ok(callId=placed.call_id)

    async def _cmd_accept_call(self, call_id: str) -> _Result:
        try:
            await self.accept_call(call_id)
        except Exception as exc:
            return _fail(exc)
        return _ok()

    async def _cmd_reject_call(
        self, call_id: str, reason: str = DEFAULT_REJECT_REASON
    ) -> _Result:
        try:
            await self.reject_call(call_id, reason)
        except Exception as exc:
            return _fail(exc)
        return _ok()

    async def _cmd_terminate_call(
        self, call_id: str, target_address: str | None = None
    ) -> _Result:
        try:
            await self.terminate_call(call_id, target_address)
        except Exception as exc:
            return _fail(exc)
        return _ok()

    async def _cmd_generate_message_tag(self) -> str:
        try:
            return self.session.generate_message_tag()
        except Exception as exc:
            self._log.debug("Session tag generation failed (%s), using local", exc)
            return generate_message_tag()

    async def _cmd_decrypt_message(self, data: Any) -> _Result:
        try:
            result = await self.session.decrypt_message(data)
        except Exception as exc:
            return _fail(exc)
        return _ok(data=result)

    async def _cmd_create_participant_nodes(self, data: dict[str, Any]) -> _Result:
        try:
            result = await self.session.create_participant_nodes(
                data.get("jids") or [], data.get("category"), data.get("extraAttrs")
            )
        except Exception as exc:
            return _fail(exc)
        return _ok(data=result)

    async def _cmd_assert_sessions(self, addresses: list[str]) -> _Result:
        try:
            await self.session.assert_sessions(addresses, False)
        except Exception as exc:
            return _fail(exc)
        return _ok()

    async def _cmd_on_whatsapp(self, addresses: list[str]) -> _Result:
        try:
            result = await self.session.on_whatsapp(addresses)
        except Exception as exc:
            return _fail(exc)
        return _ok(data=result)

    async def _cmd_profile_picture_url(self, address: str, kind: str) -> _Result:
        try:
            url = await self.session.profile_picture_url(address, kind)
        except Exception as exc:
            return _fail(exc)
        return _ok(data=url)


def _node_payload(node: Any) -> Any:
    if isinstance(node, ProtocolNode):
        return node.to_dict()
    return node


def use_voice_calls(
    token: str,
    session: AccountSession,
    status: str,
    options: RelayOptions | None = None,
    log: logging.Logger | None = None,
) -> VoiceCallBridge:
    """Create and start a bridge.  Must be called from a running event loop."""
    bridge = VoiceCallBridge(
        token,
        session,
        status,
        options=options or RelayOptions.from_env(),
        log=log,
    )
    bridge.start()
    return bridge
