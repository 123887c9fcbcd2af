"""Transcript merging: combine message lists without duplicates or reordering.

Two messages are the same entry when their ids match, or when they share role
and content and were created less than the dedup window apart. The second rule
is what folds an optimistic message into its confirmed copy, and a pushed
message into the one already fetched.
"""

from datetime import timedelta
from typing import Iterable

from app.services.chat.types import Message

DEDUP_WINDOW = timedelta(milliseconds=5000)


def is_duplicate(a: Message, b: Message, window: timedelta = DEDUP_WINDOW) -> bool:
    if a.id == b.id:
        return True
    if a.role != b.role or a.content != b.content:
        return False
    return abs(a.created_at - b.created_at) < window


def merge_messages(*lists: Iterable[Message], window: timedelta = DEDUP_WINDOW) -> list[Message]:
    """Merge message lists, keeping the first occurrence of each entry.

    A confirmed message (non-temporary id) takes the place of the temporary
    entries it duplicates, as long as it duplicates nothing else.
    """
    kept: list[Message] = []
    for candidate in (m for messages in lists for m in messages):
        matches = [i for i, existing in enumerate(kept) if is_duplicate(existing, candidate, window)]
        if not matches:
            kept.append(candidate)
            continue
        if candidate.is_temporary or not all(kept[i].is_temporary for i in matches):
            continue
        first = matches[0]
        kept[first] = candidate
        for i in reversed(matches[1:]):
            del kept[i]

    # stable: equal timestamps keep arrival order
    kept.sort(key=lambda m: m.created_at)
    return kept


def apply_push(
    transcript: list[Message], incoming: Message, window: timedelta = DEDUP_WINDOW
) -> tuple[list[Message], bool]:
    """Merge a live-feed message into a transcript.

    Events not strictly newer than the last message are dropped, as are
    duplicates. Returns the resulting transcript and whether it changed.
    """
    if transcript and incoming.created_at <= transcript[-1].created_at:
        return transcript, False
    merged = merge_messages(transcript, [incoming], window=window)
    if merged == transcript:
        return transcript, False
    return merged, True
