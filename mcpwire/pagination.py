"""Ordered feature collections and cursor-based pagination over them."""

from __future__ import annotations

import base64
import binascii
import bisect
import json
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterator, Optional, TypeVar

__all__ = [
    "DEFAULT_PAGE_SIZE",
    "InvalidCursorError",
    "FeatureSet",
    "Page",
    "encode_cursor",
    "decode_cursor",
    "paginate",
]

DEFAULT_PAGE_SIZE = 1000

T = TypeVar("T")

_CURSOR_FIELD = "LastUID"


class InvalidCursorError(ValueError):
    """A pagination cursor could not be decoded."""


class FeatureSet(Generic[T]):
    """A collection of features keyed by a unique ID, iterated in ID order.

    Adding a feature whose ID is already present replaces the old one.
    """

    def __init__(self, key: Callable[[T], str]) -> None:
        self._key = key
        self._lock = threading.Lock()
        self._features: dict[str, T] = {}
        self._sorted_ids: list[str] = []

    def unique_id(self, feature: T) -> str:
        """Return the unique ID of a feature."""
        return self._key(feature)

    def add(self, *args: T) -> None:
        """Add features, replacing any with the same ID."""
        with self._lock:
            for feature in args:
                uid = self._key(feature)
                if uid not in self._features:
                    bisect.insort(self._sorted_ids, uid)
                self._features[uid] = feature

    def remove(self, *args: str) -> bool:
        """Remove the features with the given IDs; report whether any was present."""
        removed = False
        with self._lock:
            for uid in args:
                if self._features.pop(uid, None) is None and uid not in self._features:
                    index = bisect.bisect_left(self._sorted_ids, uid)
                    if index < len(self._sorted_ids) and self._sorted_ids[index] == uid:
                        del self._sorted_ids[index]
                        removed = True
                    continue
                index = bisect.bisect_left(self._sorted_ids, uid)
                del self._sorted_ids[index]
                removed = True
        return removed

    def get(self, key: str) -> Optional[T]:
        """Return the feature with the given ID, or None if there is none."""
        with self._lock:
            return self._features.get(key)

    def above(self, key: str) -> Iterator[T]:
        """Yield the features whose IDs sort strictly after ``key``, in order."""
        with self._lock:
            start = bisect.bisect_right(self._sorted_ids, key)
            snapshot = [self._features[uid] for uid in self._sorted_ids[start:]]
        yield from snapshot

    def __len__(self) -> int:
        with self._lock:
            return len(self._features)

    def __iter__(self) -> Iterator[T]:
        with self._lock:
            snapshot = [self._features[uid] for uid in self._sorted_ids]
        return iter(snapshot)


@dataclass
class Page(Generic[T]):
    """One page of a listing; ``next_cursor`` is empty on the last page."""

    items: list[T] = field(default_factory=list)
    next_cursor: str = ""


def encode_cursor(uid: str) -> str:
    """Encode the ID of the last feature seen as an opaque cursor."""
    payload = json.dumps({_CURSOR_FIELD: uid}, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(payload).decode("ascii")


def decode_cursor(cursor: str) -> str:
    """Return the feature ID held by a cursor; raise InvalidCursorError if it is malformed."""
    try:
        raw = base64.b64decode(cursor.encode("ascii"), altchars=b"-_", validate=True)
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise InvalidCursorError(f"failed to decode cursor: {exc}") from exc
    try:
        token: Any = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as exc:
        raise InvalidCursorError(
            f"failed to decode page token: {exc}, cursor: {cursor}"
        ) from exc
    if not isinstance(token, dict) or not isinstance(token.get(_CURSOR_FIELD), str):
        raise InvalidCursorError(f"failed to decode page token, cursor: {cursor}")
    return token[_CURSOR_FIELD]


def paginate(
    features: FeatureSet[T], page_size: int, cursor: Optional[str] = None
) -> Page[T]:
    """Return the page of ``features`` that follows ``cursor``.

    Without a cursor the first page is returned. Raises InvalidCursorError
    for a malformed cursor and ValueError for a page size below one.
    """
    if page_size < 1:
        raise ValueError(f"invalid page size {page_size}")
    if not cursor:
        seq: Iterator[T] = iter(features)
    else:
        seq = features.above(decode_cursor(cursor))

    items: list[T] = []
    more = False
    for feature in seq:
        if len(items) == page_size:
            more = True
            break
        items.append(feature)

    page: Page[T] = Page(items=items)
    if more:
        page.next_cursor = encode_cursor(features.unique_id(items[-1]))
    return page