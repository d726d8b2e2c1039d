"""Protocol-tree node: a tag, string attributes and optional content."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from typing import Any

from callrelay.errors import DecodeError


@dataclasses.dataclass
class ProtocolNode:
    """A single protocol-tree node.

    ``content`` is either a list of child nodes, opaque bytes, or ``None``.
    """

    tag: str
    attrs: dict[str, str] = dataclasses.field(default_factory=dict)
    content: list[ProtocolNode] | bytes | None = None

    def attr(self, name: str) -> str | None:
        value = self.attrs.get(name)
        if value is None or value == "":
            return None
        return value

    def children(self, tag: str | None = None) -> list[ProtocolNode]:
        """Child nodes, optionally filtered by tag.  Empty for byte content."""
        if not isinstance(self.content, list):
            return []
        if tag is None:
            return list(self.content)
        return [c for c in self.content if c.tag == tag]

    def child(self, tag: str) -> ProtocolNode | None:
        for c in self.children():
            if c.tag == tag:
                return c
        return None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"tag": self.tag, "attrs": dict(self.attrs)}
        if isinstance(self.content, list):
            data["content"] = [c.to_dict() for c in self.content]
        elif self.content is not None:
            data["content"] = bytes(self.content)
        return data

    @classmethod
    def coerce(cls, value: ProtocolNode | Mapping[str, Any]) -> ProtocolNode:
        """Build a node from a node or a ``{"tag", "attrs", "content"}`` mapping.

        Sessions and the relay deliver nodes as plain mappings; nested child
        mappings are coerced recursively.  Attribute values are stringified.
        """
        if isinstance(value, ProtocolNode):
            return value
        if not isinstance(value, Mapping):
            raise DecodeError(f"Expected a node mapping, got {type(value).__name__}")
        tag = value.get("tag")
        if not tag:
            raise DecodeError("Node has no tag")

        raw_attrs = value.get("attrs") or {}
        attrs = {str(k): str(v) for k, v in raw_attrs.items() if v is not None}

        raw_content = value.get("content")
        content: list[ProtocolNode] | bytes | None
        if raw_content is None:
            content = None
        elif isinstance(raw_content, (bytes, bytearray, memoryview)):
            content = bytes(raw_content)
        elif isinstance(raw_content, str):
            content = raw_content.encode("utf-8")
        elif isinstance(raw_content, (list, tuple)):
            content = [cls.coerce(c) for c in raw_content]
        else:
            raise DecodeError(f"Unsupported node content for <{tag}>")
        return cls(tag=str(tag), attrs=attrs, content=content)
