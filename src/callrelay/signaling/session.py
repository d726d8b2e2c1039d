"""Messaging session contract required by the signaling engine and bridge.

Every method listed here must exist on the session object.  A session that
cannot resolve devices or assert encryption sessions should implement those
as returning the input unchanged / doing nothing, rather than omitting them.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, Protocol

from callrelay.signaling.node import ProtocolNode

# Events emitted by the session's event source
CALL_LIST_EVENT = "call"
CALL_NODE_EVENT = "CB:call"
CALL_ACK_EVENT = "CB:ack,class:call"


class EventSource(Protocol):
    def on(self, event: str, handler: Callable[..., Any]) -> None: ...

    def off(self, event: str, handler: Callable[..., Any]) -> None: ...


class MessagingSession(Protocol):
    @property
    def user_id(self) -> str | None:
        """Address of the authenticated local user, ``None`` before login."""
        ...

    @property
    def events(self) -> EventSource: ...

    async def send_node(self, node: ProtocolNode) -> Any: ...

    async def assert_sessions(self, addresses: Sequence[str], force: bool) -> None: ...

    async def resolve_device_addresses(
        self, addresses: Sequence[str]
    ) -> list[str]: ...


class AccountSession(MessagingSession, Protocol):
    """Session with the account operations the relay may ask to run."""

    @property
    def user(self) -> Any:
        """Account descriptor sent to the relay on connect."""
        ...

    def generate_message_tag(self) -> str: ...

    async def decrypt_message(self, data: Any) -> Any: ...

    async def create_participant_nodes(
        self,
        addresses: Sequence[str],
        category: Any,
        extra_attrs: dict[str, str] | None,
    ) -> Any: ...

    async def on_whatsapp(self, addresses: Sequence[str]) -> Any: ...

    async def profile_picture_url(self, address: str, kind: str) -> str | None: ...
