from __future__ import annotations

import hashlib

IDENTIFIER_LENGTH = 16


def todo_identity(document_path: str, text: str, estimated_minutes: int) -> str:
    """Stable identifier for a todo within its document.

    Completion state, actual duration and line position are not part of the
    digest: ticking a box or moving a line keeps the same remote event.
    """
    payload = f"{document_path}::{text}::{int(estimated_minutes)}"
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()[:IDENTIFIER_LENGTH]  # nosec B324
