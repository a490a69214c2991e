from relaypool.events import READY, SOURCE_FETCH, EventEmitter


def test_emit_calls_listeners_in_order():
    emitter = EventEmitter()
    calls = []
    emitter.on(SOURCE_FETCH, lambda relays, name: calls.append(("first", name)))
    emitter.on(SOURCE_FETCH, lambda relays, name: calls.append(("second", name)))

    assert emitter.emit(SOURCE_FETCH, ["r"], "src") == 2
    assert calls == [("first", "src"), ("second", "src")]


def test_failing_listener_does_not_block_others(caplog):
    emitter = EventEmitter()
    calls = []

    def broken():
        raise RuntimeError("listener bug")

    emitter.on(READY, broken).on(READY, lambda: calls.append("ok"))
    emitter.emit(READY)

    assert calls == ["ok"]
    assert "listener bug" in caplog.text


def test_off_removes_listener():
    emitter = EventEmitter()
    calls = []
    listener = calls.append
    emitter.on(READY, listener)
    emitter.off(READY, listener)
    emitter.off(READY, listener)

    assert emitter.listener_count(READY) == 0
    assert emitter.emit(READY) == 0
