import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from prompt_toolkit.keys import ALL_KEYS, KEY_ALIASES

from cells import NULL_TEXT
from database import CONFIG_DIR, ConfigError
from table_state import END_POLICIES

SETTINGS_FILE = CONFIG_DIR / "settings.json"

# action -> keys; a key may serve several actions, the focused pane decides
DEFAULT_KEYMAP: Dict[str, List[str]] = {
    "down": ["j", "down"],
    "up": ["k", "up"],
    "left": ["h", "left"],
    "right": ["l", "right"],
    "extend_down": ["J"],
    "extend_up": ["K"],
    "extend_left": ["H"],
    "extend_right": ["L"],
    "page_down": ["c-d", "pagedown"],
    "page_up": ["c-u", "pageup"],
    "first": ["g", "home"],
    "last": ["G", "end"],
    "select": ["enter"],
    "filter": ["w"],
    "search": ["/"],
    "sort": ["s"],
    "clear_filter": ["c"],
    "copy": ["y"],
    "export_csv": ["x"],
    "export_json": ["X"],
    "columns": ["i"],
    "execute": [":"],
    "refresh": ["r"],
    "add_connection": ["a"],
    "disconnect": ["D"],
    "dismiss": ["escape", "enter", "q"],
    "focus_next": ["tab"],
    "focus_prev": ["s-tab"],
    "tab_1": ["1"],
    "tab_2": ["2"],
    "tab_3": ["3"],
    "help": ["?"],
    "quit": ["q", "c-c"],
}

ACTION_HELP: Dict[str, str] = {
    "down": "move down",
    "up": "move up",
    "left": "move left / collapse",
    "right": "move right / expand",
    "extend_down": "extend selection down",
    "extend_up": "extend selection up",
    "extend_left": "extend selection left",
    "extend_right": "extend selection right",
    "page_down": "page down",
    "page_up": "page up",
    "first": "first row",
    "last": "last row",
    "select": "connect / open",
    "filter": "WHERE filter",
    "search": "search",
    "sort": "sort by column",
    "clear_filter": "clear filter, search and sort",
    "copy": "copy selection",
    "export_csv": "export rows to CSV",
    "export_json": "export rows to JSON",
    "columns": "show table columns",
    "execute": "run a statement",
    "refresh": "refresh",
    "add_connection": "add a connection",
    "disconnect": "disconnect",
    "dismiss": "close overlay",
    "focus_next": "next pane",
    "focus_prev": "previous pane",
    "tab_1": "connections",
    "tab_2": "schema",
    "tab_3": "table",
    "help": "this help",
    "quit": "quit",
}


class Keymap:
    """Two-way lookup between actions and abstract key names."""

    def __init__(self, bindings: Optional[Dict[str, List[str]]] = None) -> None:
        self.bindings: Dict[str, List[str]] = {a: list(k) for a, k in DEFAULT_KEYMAP.items()}
        if bindings:
            for action, keys in bindings.items():
                self.bindings[action] = list(keys)
        self._by_key: Dict[str, List[str]] = {}
        for action, keys in self.bindings.items():
            for key in keys:
                self._by_key.setdefault(key, []).append(action)

    def actions_for(self, key: str) -> List[str]:
        return self._by_key.get(key, [])

    def keys_for(self, action: str) -> List[str]:
        return self.bindings.get(action, [])

    def all_keys(self) -> List[str]:
        return list(self._by_key)

    def describe(self) -> List[List[str]]:
        return [[", ".join(self.bindings[a]) or "-", ACTION_HELP[a]] for a in DEFAULT_KEYMAP]


@dataclass
class Settings:
    keymap: Keymap = field(default_factory=Keymap)
    end_policy: str = "exact"
    null_text: str = NULL_TEXT
    max_buffered_pages: int = 5


def valid_key(key: str) -> bool:
    """Single characters and the key names prompt_toolkit understands."""
    return len(key) == 1 or key in ALL_KEYS or key in KEY_ALIASES


def _parse_keybindings(raw) -> Dict[str, List[str]]:
    if not isinstance(raw, dict):
        raise ConfigError("keybindings: expected an object of action -> keys")
    parsed: Dict[str, List[str]] = {}
    for action, keys in raw.items():
        if action not in DEFAULT_KEYMAP:
            raise ConfigError(f"keybindings: unknown action {action!r}")
        if isinstance(keys, str):
            keys = [keys]
        if not isinstance(keys, list) or not all(isinstance(k, str) and k for k in keys):
            raise ConfigError(f"keybindings: {action!r} needs a key or a list of keys")
        for key in keys:
            if not valid_key(key):
                raise ConfigError(f"keybindings: unknown key {key!r} for {action!r}")
        parsed[action] = keys
    return parsed


def parse_settings(data) -> Settings:
    if not isinstance(data, dict):
        raise ConfigError("settings: expected an object")
    settings = Settings()
    if "keybindings" in data:
        settings.keymap = Keymap(_parse_keybindings(data["keybindings"]))
    policy = data.get("end_policy", settings.end_policy)
    if policy not in END_POLICIES:
        raise ConfigError(f"end_policy must be one of {', '.join(END_POLICIES)}")
    settings.end_policy = policy
    null_text = data.get("null_text", settings.null_text)
    if not isinstance(null_text, str):
        raise ConfigError("null_text must be a string")
    settings.null_text = null_text
    pages = data.get("max_buffered_pages", settings.max_buffered_pages)
    if isinstance(pages, bool) or not isinstance(pages, int) or pages < 2:
        raise ConfigError("max_buffered_pages must be an integer >= 2")
    settings.max_buffered_pages = pages
    return settings


def load_settings(path: Optional[Path] = None) -> Settings:
    path = path or SETTINGS_FILE
    if not path.exists():
        return Settings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    return parse_settings(data)
