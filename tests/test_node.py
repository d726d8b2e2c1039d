import pytest

from callrelay.errors import DecodeError
from callrelay.signaling.node import ProtocolNode


def test_coerce_nested_mapping():
    node = ProtocolNode.coerce(
        {
            "tag": "call",
            "attrs": {"from": "a@s.whatsapp.net", "t": 1700000000, "skip": None},
            "content": [
                {
                    "tag": "offer",
                    "attrs": {"call-id": "X"},
                    "content": [{"tag": "audio"}],
                },
                {"tag": "enc", "content": b"\x00\x01"},
                {"tag": "note", "content": "hi"},
            ],
        }
    )
    assert node.attrs == {"from": "a@s.whatsapp.net", "t": "1700000000"}
    offer = node.child("offer")
    assert offer is not None
    assert offer.children("audio")[0].tag == "audio"
    enc = node.child("enc")
    assert enc is not None and enc.content == b"\x00\x01"
    note = node.child("note")
    assert note is not None and note.content == b"hi"


def test_coerce_returns_nodes_unchanged():
    node = ProtocolNode("call")
    assert ProtocolNode.coerce(node) is node


@pytest.mark.parametrize(
    "value",
    ["call", {"attrs": {}}, {"tag": ""}, {"tag": "call", "content": 42}],
)
def test_coerce_rejects_malformed(value):
    with pytest.raises(DecodeError):
        ProtocolNode.coerce(value)


def test_attr_treats_empty_as_missing():
    node = ProtocolNode("offer", {"call-id": "", "reason": "busy"})
    assert node.attr("call-id") is None
    assert node.attr("reason") == "busy"
    assert node.attr("missing") is None


def test_children_of_byte_content():
    node = ProtocolNode("enc", content=b"abc")
    assert node.children() == []
    assert node.child("anything") is None


def test_to_dict():
    node = ProtocolNode(
        "call",
        {"to": "x"},
        [ProtocolNode("capability", {"ver": "1"}, b"\x01"), ProtocolNode("net")],
    )
    assert node.to_dict() == {
        "tag": "call",
        "attrs": {"to": "x"},
        "content": [
            {"tag": "capability", "attrs": {"ver": "1"}, "content": b"\x01"},
            {"tag": "net", "attrs": {}},
        ],
    }
