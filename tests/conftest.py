"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest

from callrelay.events import EventEmitter
from callrelay.signaling.engine import CallSignalingEngine
from callrelay.signaling.node import ProtocolNode

ME = "5511900000000@s.whatsapp.net"


class FakeSession:
    """In-memory messaging session that records what the engine sends."""

    def __init__(self, user_id: str | None = ME) -> None:
        self.user_id = user_id
        self.user = {"id": user_id, "name": "Test"} if user_id else None
        self.events = EventEmitter()
        self.sent: list[ProtocolNode] = []
        self.asserted: list[tuple[list[str], bool]] = []
        self.device_lookups: list[list[str]] = []
        self.devices: list[str] | None = None
        self.send_error: Exception | None = None
        self.device_error: Exception | None = None
        self.assert_error: Exception | None = None

    async def send_node(self, node: ProtocolNode) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(node)

    async def assert_sessions(self, addresses: Sequence[str], force: bool) -> None:
        self.asserted.append((list(addresses), force))
        if self.assert_error is not None:
            raise self.assert_error

    async def resolve_device_addresses(self, addresses: Sequence[str]) -> list[str]:
        self.device_lookups.append(list(addresses))
        if self.device_error is not None:
            raise self.device_error
        return self.devices if self.devices is not None else list(addresses)

    def generate_message_tag(self) -> str:
        return "session-tag-1"

    async def decrypt_message(self, data: Any) -> Any:
        return {"plaintext": data}

    async def create_participant_nodes(
        self,
        addresses: Sequence[str],
        category: Any,
        extra_attrs: dict[str, str] | None,
    ) -> Any:
        return {"nodes": list(addresses), "category": category}

    async def on_whatsapp(self, addresses: Sequence[str]) -> Any:
        return [{"jid": a, "exists": True} for a in addresses]

    async def profile_picture_url(self, address: str, kind: str) -> str | None:
        return f"https://pics.example/{address}/{kind}"


def call_stanza(
    child_tag: str,
    *,
    call_id: str | None = "CALL1",
    sender: str | None = "5511988887777@s.whatsapp.net",
    children: list[dict[str, Any]] | None = None,
    extra_attrs: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Inbound ``call`` stanza as a session would deliver it."""
    attrs: dict[str, str] = {"call-creator": sender or ""}
    if call_id is not None:
        attrs["call-id"] = call_id
    if extra_attrs:
        attrs.update(extra_attrs)
    envelope_attrs = {"id": "msg-1", "t": "1700000000"}
    if sender is not None:
        envelope_attrs["from"] = sender
    child: dict[str, Any] = {"tag": child_tag, "attrs": attrs}
    if children is not None:
        child["content"] = children
    return {"tag": "call", "attrs": envelope_attrs, "content": [child]}


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def make_stanza():
    return call_stanza


@pytest.fixture
def engine(session: FakeSession):
    eng = CallSignalingEngine(session)
    yield eng
    eng.close()
