import re
from typing import Any, Dict, List, Optional, Tuple

import termtables as tt
from prompt_toolkit import Application
from prompt_toolkit.application import get_app
from prompt_toolkit.document import Document
from prompt_toolkit.filters import Condition
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.keys import Keys
from prompt_toolkit.layout import ConditionalContainer, Float, FloatContainer, HSplit, Layout, VSplit, Window
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.lexers import PygmentsLexer
from prompt_toolkit.mouse_events import MouseEventType
from prompt_toolkit.styles import Style
from prompt_toolkit.widgets import Frame
from pygments.lexers.sql import SqlLexer

from controller import Controller, ViewModel
from database import load_saved_connections
from router import Focus, KeyEvent
from settings import Settings
from table_state import TableSnapshot
from utils import format_size

style = Style.from_dict(
    {
        "title": "bold underline",
        "menu": "bold",
        "error": "fg:red bold",
        "success": "fg:green bold",
        "hint": "fg:#888888",
        "large-table": "fg:red",
        "medium-table": "fg:yellow",
        "null": "fg:#888888 italic",
        "selected": "reverse",
        "cursor": "reverse bold",
        "error-overlay": "bg:#400000 fg:#ffffff",
    }
)

LEFT_WIDTH = 26
MIDDLE_WIDTH = 40
STATUS_HEIGHT = 6
# title, column header and separator above the rows, prompt line below
TABLE_CHROME = 4
MAX_CELL_WIDTH = 30

LARGE_TABLE = 100 * 1024 * 1024
MEDIUM_TABLE = 10 * 1024 * 1024

# prompt_toolkit names a few keys after their control codes
_KEY_ALIASES = {
    Keys.ControlI: "tab",
    Keys.ControlM: "enter",
    Keys.ControlJ: "enter",
    Keys.ControlH: "backspace",
    Keys.BackTab: "s-tab",
}

_sql_lexer = PygmentsLexer(SqlLexer)

Fragments = List[Tuple[str, str]]


def decode_key(key: Any, data: str = "") -> KeyEvent:
    """Turn a prompt_toolkit key press into an abstract KeyEvent."""
    if isinstance(key, Keys):
        if key == Keys.BracketedPaste:
            return KeyEvent("paste", data)
        return KeyEvent(_KEY_ALIASES.get(key, key.value))
    return KeyEvent(key, key)


class ClickableTextControl(FormattedTextControl):
    """
    Extension of FormattedTextControl that allows attaching a mouse handler.
    """

    def __init__(self, *args, on_click=None, **kwargs):
        super().__init__(*args, **kwargs)
        self._on_click = on_click

    def mouse_handler(self, mouse_event):
        if self._on_click:
            return self._on_click(mouse_event)
        return super().mouse_handler(mouse_event)


def clean_cell(text: str, width: int = MAX_CELL_WIDTH) -> str:
    # one cell, one line
    text = re.sub(r"\s+", " ", text)
    if len(text) > width:
        text = text[: width - 3] + "..."
    return text


def _pane_title(title: str, focused: bool) -> Tuple[str, str]:
    return ("class:title reverse" if focused else "class:title", f"{title}\n")


def render_connections(view: ViewModel) -> Fragments:
    focused = view.focus is Focus.CONNECTIONS
    result: Fragments = [_pane_title("Connections", focused)]
    if not view.connections:
        result.append(("class:hint", "  (no connections)\n"))
    markers = {"connected": "●", "connecting": "…", "lost": "✗"}
    for line in view.connections:
        prefix = "➤ " if line.selected else "  "
        marker = markers.get(line.state, " ")
        style_name = "reverse" if (focused and line.selected) else ""
        if line.state == "lost":
            style_name = f"{style_name} class:error".strip()
        result.append((style_name, f"{prefix}{marker} {line.label}\n"))
    result.append(("class:menu", "\n[ ADD ]\n"))
    return result


def render_schema(view: ViewModel, height: int) -> Fragments:
    focused = view.focus is Focus.SCHEMA
    title = "Schema"
    if view.schema_search:
        title += f"  /{view.schema_search}"
    result: Fragments = [_pane_title(title, focused)]
    lines = view.schema_lines
    if not lines:
        result.append(("class:hint", "  (not connected)\n"))
        return result
    for i in range(view.schema_top, min(len(lines), view.schema_top + height)):
        line = lines[i]
        selected = focused and i == view.schema_cursor
        prefix = "➤ " if i == view.schema_cursor else "  "
        if line.depth == 0:
            arrow = "▾" if line.expanded else "▸"
            suffix = " (loading...)" if line.loading else ""
            result.append(("reverse" if selected else "class:menu", f"{prefix}{arrow} {line.label}{suffix}\n"))
            continue
        table = line.table
        label = f"{prefix}  {line.label}"
        if table.is_view:
            label += " [view]"
        elif table.size:
            label += f" ({format_size(table.size)})"
        # Цветовая индикация размера: большие таблицы выделяем
        if table.size > LARGE_TABLE:
            size_style = "class:large-table"
        elif table.size > MEDIUM_TABLE:
            size_style = "class:medium-table"
        else:
            size_style = ""
        if selected:
            size_style = f"reverse {size_style}".strip()
        result.append((size_style, f"{label}\n"))
    return result


def _position_text(snap: TableSnapshot) -> str:
    if not snap.window:
        return "No data"
    first = snap.window[0][1] + 1
    last = snap.window[-1][1] + 1
    if snap.total_rows is None:
        total = f"{snap.base_offset + snap.buffered}+" if not snap.exhausted else str(snap.base_offset + snap.buffered)
    elif snap.total_exact:
        total = f"{snap.total_rows:,}"
    else:
        total = f"~{snap.total_rows:,}"
    return f"Rows {first}-{last} of {total}"


def _column_widths(snap: TableSnapshot) -> List[int]:
    widths = []
    for col, name in enumerate(snap.columns):
        width = len(name)
        for _i, _abs, row in snap.window:
            if col < len(row):
                width = max(width, len(row[col].display(snap.null_text)))
        widths.append(max(1, min(width, MAX_CELL_WIDTH)))
    return widths


def render_table(view: ViewModel, width: int) -> Fragments:
    snap = view.table
    focused = view.focus is Focus.TABLE
    title = snap.title or "Data"
    result: Fragments = [("class:title reverse" if focused else "class:title", title)]
    if snap.kind == "empty":
        result.append(("", "\n"))
        result.append(("class:hint", "  open a table from the schema pane\n"))
        return result

    info = f"  {_position_text(snap)}"
    if snap.where:
        info += f"  WHERE {snap.where}"
    if snap.sort is not None:
        info += f"  ORDER BY {snap.sort.label()}"
    if snap.search:
        info += f"  /{snap.search} ({snap.matching} of {snap.buffered} buffered)"
    if snap.loading:
        info += "  loading..."
    result.append(("class:hint", info + "\n"))

    if not snap.columns:
        result.append(("", "  (no columns)\n"))
        return result

    widths = _column_widths(snap)
    gutter = len(str(snap.window[-1][1] + 1)) if snap.window else 1

    # columns from the scroll position on, as many as fit
    shown: List[int] = []
    used = gutter + 1
    for col in range(snap.left, len(snap.columns)):
        if shown and used + widths[col] + 3 > width:
            break
        shown.append(col)
        used += widths[col] + 3

    header: Fragments = [("", " " * gutter + " ")]
    for col in shown:
        name = clean_cell(snap.columns[col], widths[col])
        style_name = "class:menu"
        if snap.sort is not None and snap.sort.column == snap.columns[col]:
            name = clean_cell(f"{name}{'↓' if snap.sort.descending else '↑'}", widths[col])
        header.append((style_name, f"│ {name.ljust(widths[col])} "))
    result.extend(header)
    result.append(("", "\n"))
    result.append(("", "─" * (gutter + 1) + "".join("┼" + "─" * (widths[c] + 2) for c in shown) + "\n"))

    if not snap.window:
        result.append(("class:hint", "  (no rows)\n"))
        return result

    for visible_idx, absolute, row in snap.window:
        result.append(("class:hint", f"{str(absolute + 1).rjust(gutter)} "))
        for col in shown:
            cell = row[col] if col < len(row) else None
            text = clean_cell(cell.display(snap.null_text), widths[col]) if cell is not None else ""
            style_name = "class:null" if cell is not None and cell.is_null else ""
            if snap.cursor == (visible_idx, col):
                style_name = f"{style_name} class:cursor".strip()
            elif snap.selection is not None and snap.selection.contains(visible_idx, col):
                style_name = f"{style_name} class:selected".strip()
            result.append(("", "│"))
            result.append((style_name, f" {text.ljust(widths[col])} "))
        result.append(("", "\n"))
    return result


def render_prompt(view: ViewModel) -> Fragments:
    prompt = view.prompt
    if prompt is None:
        return [("class:hint", "? help  tab pane  / search  w filter  s sort  : sql  q quit")]
    result: Fragments = [("class:menu", f"{prompt.label}: ")]
    if prompt.kind == "execute" and prompt.text:
        result.extend(_sql_lexer.lex_document(Document(prompt.text))(0))
    else:
        result.append(("", prompt.text))
    result.append(("reverse", " "))
    return result


def render_status(status: Tuple[str, ...]) -> Fragments:
    result: Fragments = [("class:title", "Status\n")]
    if not status:
        result.append(("", "  no messages\n"))
        return result
    for msg in status:
        result.append(("", f"  {msg}\n"))
    return result


def render_help(view: ViewModel) -> Fragments:
    table_str = tt.to_string(
        [list(row) for row in view.help_rows],
        header=["Keys", "Action"],
        style=tt.styles.thin_thick,
    )
    result: Fragments = []
    for line in table_str.splitlines():
        result.append(("", line + "\n"))
    result.append(("class:hint", "esc / ? to close"))
    return result


def render_error(view: ViewModel) -> Fragments:
    notice = view.error
    if notice is None:
        return []
    return [
        ("class:error", f"{notice.title}\n\n"),
        ("", f"{notice.message}\n\n"),
        ("class:hint", "esc / enter to dismiss"),
    ]


def browse_connections_ui_once(settings: Optional[Settings] = None) -> str:
    """
    Full-screen mode:
    - left column: saved connections + ADD button at bottom
    - middle: schema tree of the active connection
    - right: rows of the open table
    Returns:
    - "quit": just exit
    - "add": open the form to add a new connection
    """
    settings = settings or Settings()
    saved = load_saved_connections()
    controller = Controller(list(saved.values()), settings)
    frame: Dict[str, Any] = {"view": controller.view(), "table_width": 80, "schema_height": 20}

    def view() -> ViewModel:
        return frame["view"]

    def before_render(app: Application) -> None:
        controller.poll()
        size = app.output.get_size()
        body = max(1, size.rows - STATUS_HEIGHT)
        frame["table_width"] = max(10, size.columns - LEFT_WIDTH - MIDDLE_WIDTH - 2)
        frame["schema_height"] = max(1, body - 1)
        controller.set_viewport(
            max(1, body - TABLE_CHROME),
            max(1, frame["table_width"] // (MAX_CELL_WIDTH + 3)),
            frame["schema_height"],
        )
        frame["view"] = controller.view()

    def on_key(event) -> None:
        press = event.key_sequence[0]
        controller.dispatch(decode_key(press.key, press.data))
        if controller.exit_request:
            event.app.exit(result=controller.exit_request)

    kb = KeyBindings()
    kb.add(Keys.Any)(on_key)
    # bound keys must be named too, or the default bindings shadow Keys.Any
    for key in settings.keymap.all_keys():
        kb.add(key)(on_key)

    def scroll_or_click(focus: Focus, mouse_event, first_line: int = 1) -> None:
        app = get_app()
        if mouse_event.event_type == MouseEventType.SCROLL_UP:
            if controller.router.set_focus(focus):
                controller.dispatch(KeyEvent("up"))
        elif mouse_event.event_type == MouseEventType.SCROLL_DOWN:
            if controller.router.set_focus(focus):
                controller.dispatch(KeyEvent("down"))
        elif mouse_event.event_type == MouseEventType.MOUSE_UP:
            controller.click(focus, mouse_event.position.y - first_line)
        else:
            return
        app.invalidate()

    def connections_mouse_handler(mouse_event) -> None:
        y = mouse_event.position.y
        # y = 0 заголовок, затем подключения, последняя строка: кнопка ADD
        if (
            mouse_event.event_type == MouseEventType.MOUSE_UP
            and y > len(controller.connections) + 1
            and not controller.router.modal
        ):
            get_app().exit(result="add")
            return
        scroll_or_click(Focus.CONNECTIONS, mouse_event)

    def schema_mouse_handler(mouse_event) -> None:
        scroll_or_click(Focus.SCHEMA, mouse_event)

    def table_mouse_handler(mouse_event) -> None:
        if mouse_event.event_type == MouseEventType.MOUSE_UP:
            controller.click(Focus.TABLE)
            get_app().invalidate()
            return
        scroll_or_click(Focus.TABLE, mouse_event)

    left_window = Window(
        ClickableTextControl(lambda: render_connections(view()), on_click=connections_mouse_handler),
        wrap_lines=False,
        width=LEFT_WIDTH,
    )
    middle_window = Window(
        ClickableTextControl(lambda: render_schema(view(), frame["schema_height"]), on_click=schema_mouse_handler),
        wrap_lines=False,
        width=MIDDLE_WIDTH,
    )
    right_window = HSplit(
        [
            Window(
                ClickableTextControl(lambda: render_table(view(), frame["table_width"]), on_click=table_mouse_handler),
                wrap_lines=False,
            ),
            Window(FormattedTextControl(lambda: render_prompt(view())), height=1),
        ]
    )
    root_container = VSplit([left_window, middle_window, right_window], padding=1)
    status_window = Window(
        FormattedTextControl(lambda: render_status(view().status)),
        height=STATUS_HEIGHT,
        wrap_lines=True,
    )

    help_visible = Condition(lambda: view().help_visible and view().error is None)
    error_visible = Condition(lambda: view().error is not None)

    body = FloatContainer(
        content=HSplit([root_container, status_window]),
        floats=[
            Float(
                ConditionalContainer(
                    Frame(Window(FormattedTextControl(lambda: render_help(view())), wrap_lines=False), title="Keys"),
                    filter=help_visible,
                ),
                top=1,
            ),
            Float(
                ConditionalContainer(
                    Frame(
                        Window(FormattedTextControl(lambda: render_error(view())), wrap_lines=True, width=60),
                        style="class:error-overlay",
                    ),
                    filter=error_visible,
                ),
            ),
        ],
    )

    app = Application(
        layout=Layout(body),
        key_bindings=kb,
        full_screen=True,
        style=style,
        mouse_support=True,
        refresh_interval=0.5,
        before_render=before_render,
    )
    # workers wake the paint loop when a result lands
    controller.orchestrator.notify = app.invalidate
    try:
        result = app.run()
    finally:
        controller.shutdown()
    return result or "quit"
