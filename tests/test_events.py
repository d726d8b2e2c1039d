from callrelay.events import EventEmitter


def test_emit_in_registration_order():
    emitter = EventEmitter()
    calls = []
    emitter.on("x", lambda v: calls.append(("a", v)))
    emitter.on("x", lambda v: calls.append(("b", v)))
    assert emitter.emit("x", 1) is True
    assert calls == [("a", 1), ("b", 1)]


def test_emit_without_handlers():
    assert EventEmitter().emit("nothing") is False


def test_off_and_listener_count():
    emitter = EventEmitter()
    calls = []

    def handler():
        calls.append(1)

    emitter.on("x", handler)
    assert emitter.listener_count("x") == 1
    emitter.off("x", handler)
    emitter.off("x", handler)
    assert emitter.listener_count("x") == 0
    emitter.emit("x")
    assert calls == []


def test_once():
    emitter = EventEmitter()
    calls = []
    emitter.once("x", calls.append)
    emitter.emit("x", 1)
    emitter.emit("x", 2)
    assert calls == [1]


def test_failing_handler_is_logged_and_skipped(caplog):
    emitter = EventEmitter()
    calls = []

    def broken(_):
        raise RuntimeError("boom")

    emitter.on("x", broken)
    emitter.on("x", calls.append)
    emitter.emit("x", "payload")
    assert calls == ["payload"]
    assert "Handler for 'x' failed" in caplog.text


def test_clear():
    emitter = EventEmitter()
    emitter.on("x", print)
    emitter.clear()
    assert emitter.listener_count("x") == 0
