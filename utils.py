import csv
import json
import subprocess
import sys
import time
from pathlib import Path
from typing import List, Optional, Sequence

from prompt_toolkit import prompt
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.validation import ValidationError, Validator

from cells import NULL_TEXT, Row

status_messages: List[str] = []
MAX_STATUS_MESSAGES = 30


def push_status(message: str) -> None:
    timestamp = time.strftime("%H:%M:%S")
    status_messages.append(f"[{timestamp}] {message}")
    if len(status_messages) > MAX_STATUS_MESSAGES:
        del status_messages[: len(status_messages) - MAX_STATUS_MESSAGES]


class IntValidator(Validator):
    def validate(self, document) -> None:
        text = document.text.strip()
        if not text:
            raise ValidationError(message="Value cannot be empty")
        if not text.isdigit():
            raise ValidationError(message="Enter an integer")


def print_header(text: str) -> None:
    print()
    print("=" * 80)
    print(text)
    print("=" * 80)


def input_with_default(
    message: str,
    default: Optional[str] = None,
    is_password: bool = False,
    validator: Optional[Validator] = None,
    completer: Optional[WordCompleter] = None,
) -> str:
    suffix = f" [{default}]" if default is not None else ""
    full_message = f"{message}{suffix}: "
    text = prompt(
        full_message,
        is_password=is_password,
        validator=validator,
        validate_while_typing=False if validator else None,
        completer=completer,
    ).strip()
    if not text and default is not None:
        return str(default)
    return text


def format_size(num_bytes: int) -> str:
    if num_bytes is None:
        return "0 B"
    num = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if num < 1024 or unit == "TB":
            if unit == "B":
                return f"{int(num)} {unit}"
            return f"{num:.1f} {unit}"
        num /= 1024
    return f"{int(num)} B"


def clipboard_command() -> Optional[List[str]]:
    if sys.platform == "darwin":
        return ["pbcopy"]
    if sys.platform.startswith("linux"):
        return ["xclip", "-selection", "clipboard"]
    if sys.platform == "win32":
        return ["clip"]
    return None


def copy_to_clipboard(text: str) -> bool:
    """Hand text to the OS clipboard; False when no clipboard tool works."""
    command = clipboard_command()
    if command is None:
        push_status(f"Value: {text[:100]}")
        return False
    try:
        subprocess.run(command, input=text.encode("utf-8"), check=True, timeout=1)
    except (subprocess.TimeoutExpired, subprocess.CalledProcessError, FileNotFoundError):
        push_status(f"Clipboard unavailable ({command[0]}); value: {text[:100]}")
        return False
    push_status(f"Copied: {text[:50]}{'...' if len(text) > 50 else ''}")
    return True


def export_filename(connection: str, table: str, extension: str, directory: Optional[Path] = None) -> Path:
    timestamp = time.strftime("%Y%m%d_%H%M%S")
    name = f"{connection}_{table or 'data'}_{timestamp}.{extension}"
    return (directory or Path.cwd()) / name


def export_csv(path: Path, columns: Sequence[str], rows: Sequence[Row], null_text: str = NULL_TEXT) -> Path:
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(columns)
        for row in rows:
            # CSV has no NULL; an empty field would read back as ''
            writer.writerow([cell.display(null_text) for cell in row])
    push_status(f"Exported {len(rows)} rows to {path.name}")
    return path


def export_json(path: Path, columns: Sequence[str], rows: Sequence[Row]) -> Path:
    data = [{col: cell.to_json() for col, cell in zip(columns, row)} for row in rows]
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    push_status(f"Exported {len(rows)} rows to {path.name}")
    return path
