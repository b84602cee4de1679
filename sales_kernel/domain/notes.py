"""Free-text note helpers for sale records."""

from __future__ import annotations

from datetime import datetime


def append_note(
    existing: str | None,
    note: str,
    *,
    label: str,
    at: datetime,
) -> str:
    """
    Append a labelled, timestamped note to a sale's notes.

    Earlier text is never rewritten.  Each appended note starts on its own
    line as ``[<iso timestamp>] <LABEL>: <note>``.
    """
    line = f"[{at.isoformat(timespec='seconds')}] {label}: {note.strip()}"
    if not existing:
        return line
    return f"{existing}\n{line}"
