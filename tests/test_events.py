from __future__ import annotations

import pytest

from plexdigest.events import EventDispatcher


def test_listeners_called_in_registration_order() -> None:
    calls = []
    d = EventDispatcher()
    d.on("newMedia", lambda item: calls.append(("first", item)))
    d.on("newMedia", lambda item: calls.append(("second", item)))

    assert d.emit("newMedia", "x") is True
    assert calls == [("first", "x"), ("second", "x")]


def test_emit_without_listeners_returns_false() -> None:
    assert EventDispatcher().emit("endDigest") is False


def test_off_removes_single_listener() -> None:
    calls = []
    d = EventDispatcher()

    def keep() -> None:
        calls.append("keep")

    def drop() -> None:
        calls.append("drop")

    d.on("start", keep).on("start", drop).off("start", drop)
    d.emit("start")

    assert calls == ["keep"]
    assert d.listeners("start") == [keep]


def test_remove_all_listeners() -> None:
    d = EventDispatcher()
    d.on("start", lambda: None).on("stop", lambda: None)

    d.remove_all_listeners("start")
    assert d.listeners("start") == []
    assert len(d.listeners("stop")) == 1

    d.remove_all_listeners()
    assert d.listeners("stop") == []


def test_listener_errors_propagate_by_default() -> None:
    d = EventDispatcher()

    def boom() -> None:
        raise RuntimeError("boom")

    d.on("start", boom)
    with pytest.raises(RuntimeError, match="boom"):
        d.emit("start")


def test_isolated_listener_errors_are_logged(caplog) -> None:
    calls = []
    d = EventDispatcher(isolate_listeners=True)

    def boom() -> None:
        raise RuntimeError("boom")

    d.on("start", boom).on("start", lambda: calls.append("ran"))
    with caplog.at_level("ERROR", logger="plexdigest"):
        d.emit("start")

    assert calls == ["ran"]
    assert "Listener for 'start' failed" in caplog.text


def test_listener_may_unregister_itself() -> None:
    d = EventDispatcher()
    calls = []

    def once() -> None:
        calls.append(1)
        d.off("start", once)

    d.on("start", once)
    d.emit("start")
    d.emit("start")

    assert calls == [1]


def test_on_rejects_non_callable() -> None:
    with pytest.raises(TypeError):
        EventDispatcher().on("start", None)
