"""Event IDs for resumable streams and Accept header checks for the streamable transport."""

from __future__ import annotations

import re
from typing import Iterable

__all__ = ["format_event_id", "parse_event_id", "parse_accept", "check_accept"]

_INTEGER = re.compile(r"[+-]?[0-9]+", re.ASCII)
_INT64_LIMIT = 2**63

JSON_MEDIA_TYPE = "application/json"
EVENT_STREAM_MEDIA_TYPE = "text/event-stream"


def format_event_id(stream_id: int, index: int) -> str:
    """Return the event ID ``<stream_id>_<index>`` for a message in a logical stream."""
    return f"{stream_id}_{index}"


def _parse_non_negative(text: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise ValueError(f"invalid integer {text!r}")
    value = int(text)
    if value < 0 or value >= _INT64_LIMIT:
        raise ValueError(f"integer {text!r} out of range")
    return value


def parse_event_id(event_id: str) -> tuple[int, int]:
    """Split an event ID into its stream ID and index.

    Raises ValueError if the ID is malformed.
    """
    parts = event_id.split("_")
    if len(parts) != 2:
        raise ValueError(f"malformed event ID {event_id!r}")
    try:
        return _parse_non_negative(parts[0]), _parse_non_negative(parts[1])
    except ValueError as exc:
        raise ValueError(f"malformed event ID {event_id!r}") from exc


def parse_accept(values: Iterable[str]) -> frozenset[str]:
    """Return the media types listed across one or more Accept header values."""
    return frozenset(item.strip() for item in ",".join(values).split(","))


def check_accept(method: str, values: Iterable[str]) -> None:
    """Check that the Accept headers allow the responses a request may receive.

    GET requests must accept event streams; other requests must accept both
    JSON and event streams. Raises ValueError otherwise.
    """
    accepted = parse_accept(values)
    stream_ok = EVENT_STREAM_MEDIA_TYPE in accepted
    json_ok = JSON_MEDIA_TYPE in accepted
    if method == "GET":
        if not stream_ok:
            raise ValueError("Accept must contain 'text/event-stream' for GET requests")
    elif not (json_ok and stream_ok):
        raise ValueError("Accept must contain both 'application/json' and 'text/event-stream'")