import itertools
from typing import List

import pytest

from router import FOCUS_ORDER, Focus, KeyEvent, Router, Tier
from settings import Keymap


class Recorder:
    """Component handler that claims the given actions."""

    def __init__(self, claims=()):
        self.claims = set(claims)
        self.seen: List[str] = []

    def __call__(self, event, actions):
        self.seen.append(event.key)
        return any(a in self.claims for a in actions)


@pytest.fixture
def router():
    return Router(Keymap())


class TestPriority:
    def test_component_before_app(self, router):
        pane = Recorder(claims={"down"})
        app = Recorder(claims={"down"})
        router.register(Focus.CONNECTIONS, pane)
        router.app_handler = app
        assert router.dispatch(KeyEvent("j")) is Tier.COMPONENT
        assert app.seen == []

    def test_unclaimed_key_reaches_app(self, router):
        router.register(Focus.CONNECTIONS, Recorder())
        app = Recorder(claims={"quit"})
        router.app_handler = app
        assert router.dispatch(KeyEvent("q")) is Tier.APP
        assert app.seen == ["q"]

    def test_unbound_key(self, router):
        assert router.dispatch(KeyEvent("z", "z")) is Tier.UNHANDLED

    def test_error_swallows_everything(self, router):
        pane = Recorder(claims={"down", "quit"})
        router.register(Focus.CONNECTIONS, pane)
        router.show_error("Query failed", "syntax error")
        for key in ("j", "c-c", "tab", "?", "z"):
            assert router.dispatch(KeyEvent(key)) is Tier.ERROR
        assert pane.seen == []
        assert router.error is not None

    def test_error_dismissed_by_escape(self, router):
        router.focus = Focus.TABLE
        router.show_error("Query failed", "syntax error")
        assert router.dispatch(KeyEvent("escape")) is Tier.ERROR
        assert router.error is None
        assert router.focus is Focus.TABLE

    def test_help_toggles(self, router):
        assert router.dispatch(KeyEvent("?")) is Tier.APP
        assert router.help_visible
        assert router.dispatch(KeyEvent("j")) is Tier.HELP
        assert router.help_visible
        assert router.dispatch(KeyEvent("?")) is Tier.HELP
        assert not router.help_visible

    def test_error_over_help(self, router):
        router.dispatch(KeyEvent("?"))
        router.show_error("Connection lost", "server closed the connection")
        assert not router.help_visible
        assert router.dispatch(KeyEvent("?")) is Tier.ERROR


class TestFocus:
    def test_tab_cycles(self, router):
        seen = []
        for _ in range(4):
            router.dispatch(KeyEvent("tab"))
            seen.append(router.focus)
        assert seen == [Focus.SCHEMA, Focus.TABLE, Focus.CONNECTIONS, Focus.SCHEMA]
        router.dispatch(KeyEvent("s-tab"))
        assert router.focus is Focus.CONNECTIONS

    def test_direct_tabs(self, router):
        router.dispatch(KeyEvent("3"))
        assert router.focus is Focus.TABLE
        router.dispatch(KeyEvent("1"))
        assert router.focus is Focus.CONNECTIONS

    def test_set_focus_refused_while_modal(self, router):
        router.show_error("x", "y")
        assert not router.set_focus(Focus.TABLE)
        assert router.focus is Focus.CONNECTIONS

    def test_forced_return_focus(self, router):
        router.focus = Focus.TABLE
        router.show_error("Connection lost", "gone", return_focus=Focus.CONNECTIONS)
        router.dismiss_error()
        assert router.focus is Focus.CONNECTIONS

    def test_second_error_keeps_first_return_focus(self, router):
        router.focus = Focus.SCHEMA
        router.show_error("first", "a")
        router.focus = Focus.TABLE
        router.show_error("second", "b")
        assert router.error.title == "second"
        router.dismiss_error()
        assert router.focus is Focus.SCHEMA

    def test_every_state_and_key_leaves_one_valid_focus(self):
        """No key in any overlay state loses focus or raises."""
        keymap = Keymap()
        keys = keymap.all_keys() + ["z", "f5"]
        for focus, error, help_on, key in itertools.product(
            FOCUS_ORDER, (False, True), (False, True), keys
        ):
            router = Router(keymap, focus=focus)
            for f in FOCUS_ORDER:
                router.register(f, Recorder(claims={"down", "select"}))
            router.app_handler = Recorder(claims={"quit"})
            router.help_visible = help_on
            if error:
                router.show_error("e", "m")
            tier = router.dispatch(KeyEvent(key))
            assert router.focus in FOCUS_ORDER
            if error:
                assert tier is Tier.ERROR
                assert router.focus is focus
            elif help_on:
                assert tier is Tier.HELP
                assert router.focus is focus
            assert not (router.error is not None and router.help_visible)
