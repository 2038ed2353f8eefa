from __future__ import annotations

import re

from calsync.identity import todo_identity
from calsync.models import TodoRecord

# - [ ] Task text(1h30m)        estimate only
# - [x] Task text (2h)(1h45m)   estimate followed by actual duration
DURATION_GROUP = r"\((\d+(?:\.\d+)?h)?(\d+m)?\)"
TODO_PATTERN = re.compile(
    r"^\s*- \[( |\S)\]\s+(.+?) ?" + DURATION_GROUP + r"(?:" + DURATION_GROUP + r")?\s*$"
)


def parse_duration(hours: str | None, minutes: str | None) -> int:
    total = 0.0
    if hours:
        total += float(hours[:-1]) * 60
    if minutes:
        total += int(minutes[:-1])
    return int(round(total))


def parse_todo_line(line: str, document_path: str, line_number: int = 0) -> TodoRecord | None:
    match = TODO_PATTERN.match(line)
    if not match:
        return None
    marker, raw_text, est_h, est_m, act_h, act_m = match.groups()
    estimated = parse_duration(est_h, est_m)
    if estimated <= 0:
        return None
    text = raw_text.strip()
    actual: int | None = None
    if act_h is not None or act_m is not None:
        actual = parse_duration(act_h, act_m)
    return TodoRecord(
        text=text,
        estimated_minutes=estimated,
        actual_minutes=actual,
        completed=marker != " ",
        source_line=line_number,
        raw_line=line,
        identifier=todo_identity(document_path, text, estimated),
    )


def parse_todos(content: str, document_path: str) -> list[TodoRecord]:
    todos: list[TodoRecord] = []
    for index, line in enumerate(content.splitlines()):
        todo = parse_todo_line(line, document_path, index)
        if todo is not None:
            todos.append(todo)
    return todos
