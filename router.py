from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from settings import Keymap


class Focus(Enum):
    CONNECTIONS = "connections"
    SCHEMA = "schema"
    TABLE = "table"


FOCUS_ORDER = [Focus.CONNECTIONS, Focus.SCHEMA, Focus.TABLE]


class Tier(Enum):
    """Which layer consumed a key event."""

    ERROR = "error"
    HELP = "help"
    COMPONENT = "component"
    APP = "app"
    UNHANDLED = "unhandled"


@dataclass(frozen=True)
class KeyEvent:
    key: str
    # printable text for character keys, used by the inline prompts
    data: str = ""


@dataclass(frozen=True)
class ErrorNotice:
    title: str
    message: str
    return_focus: Focus


# handler(event, actions bound to the key) -> handled?
Handler = Callable[[KeyEvent, List[str]], bool]


class Router:
    """Routes key events by priority: error overlay, help overlay, the
    focused pane, then application-wide bindings."""

    def __init__(self, keymap: Keymap, focus: Focus = Focus.CONNECTIONS) -> None:
        self.keymap = keymap
        self.focus = focus
        self.error: Optional[ErrorNotice] = None
        self.help_visible = False
        self.components: Dict[Focus, Handler] = {}
        self.app_handler: Optional[Handler] = None

    def register(self, focus: Focus, handler: Handler) -> None:
        self.components[focus] = handler

    @property
    def modal(self) -> bool:
        return self.error is not None or self.help_visible

    def dispatch(self, event: KeyEvent) -> Tier:
        actions = self.keymap.actions_for(event.key)

        if self.error is not None:
            # the overlay swallows everything until dismissed
            if "dismiss" in actions:
                self.dismiss_error()
            return Tier.ERROR

        if self.help_visible:
            if "dismiss" in actions or "help" in actions:
                self.help_visible = False
            return Tier.HELP

        handler = self.components.get(self.focus)
        if handler is not None and handler(event, actions):
            return Tier.COMPONENT

        if self._navigate(actions):
            return Tier.APP
        if self.app_handler is not None and self.app_handler(event, actions):
            return Tier.APP
        return Tier.UNHANDLED

    def _navigate(self, actions: List[str]) -> bool:
        for action in actions:
            if action == "help":
                self.help_visible = True
                return True
            if action in ("focus_next", "focus_prev"):
                step = 1 if action == "focus_next" else -1
                idx = FOCUS_ORDER.index(self.focus)
                self.focus = FOCUS_ORDER[(idx + step) % len(FOCUS_ORDER)]
                return True
            if action.startswith("tab_"):
                self.focus = FOCUS_ORDER[int(action[4:]) - 1]
                return True
        return False

    def set_focus(self, focus: Focus) -> bool:
        """Move focus unless an overlay holds it (clicks, auto transitions)."""
        if self.modal:
            return False
        self.focus = focus
        return True

    def show_error(self, title: str, message: str, return_focus: Optional[Focus] = None) -> None:
        """Show an error; the newest replaces any visible one.

        The focus restored on dismissal is the one held before the first
        of a run of errors, unless the caller forces one.
        """
        if return_focus is None:
            return_focus = self.error.return_focus if self.error is not None else self.focus
        self.error = ErrorNotice(title, message, return_focus)
        self.help_visible = False

    def dismiss_error(self) -> None:
        if self.error is None:
            return
        self.focus = self.error.return_focus
        self.error = None
