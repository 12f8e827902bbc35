"""JSON-RPC message decoding, batch payloads, and tracking of incoming batches."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

__all__ = ["BatchError", "read_batch", "marshal_messages", "BatchTracker"]

Message = dict[str, Any]

_VERSION = "2.0"


class BatchError(ValueError):
    """A JSON-RPC payload or batch is malformed."""


def _normalize_id(raw: Any) -> Any:
    if raw is None or isinstance(raw, str):
        return raw
    if isinstance(raw, bool):
        raise BatchError(f"invalid ID type {type(raw).__name__}")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    raise BatchError(f"invalid ID type {type(raw).__name__}")


def _decode_value(value: Any) -> Message:
    if not isinstance(value, dict):
        raise BatchError("jsonrpc message is not an object")
    version = value.get("jsonrpc")
    if version != _VERSION:
        raise BatchError(f"invalid message version tag {version!r}, expected {_VERSION!r}")
    msg = dict(value)
    if "id" in msg:
        msg["id"] = _normalize_id(msg["id"])
    method = msg.get("method")
    if method:
        if not isinstance(method, str):
            raise BatchError(f"invalid method type {type(method).__name__}")
        return msg
    # Without a method the message must be a response, which needs an id.
    if msg.get("id") is None:
        raise BatchError("invalid request: response has no id")
    msg.pop("method", None)
    return msg


def _decode_message(data: bytes | str) -> Message:
    """Decode a single JSON-RPC message, raising BatchError if it is malformed."""
    try:
        value = json.loads(data)
    except (ValueError, UnicodeDecodeError) as exc:
        raise BatchError(f"unmarshaling jsonrpc message: {exc}") from exc
    return _decode_value(value)


def _encode_message(message: Message) -> bytes:
    """Encode a JSON-RPC message as compact JSON bytes."""
    payload = {"jsonrpc": _VERSION}
    payload.update((k, v) for k, v in message.items() if k != "jsonrpc")
    try:
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode()
    except (TypeError, ValueError) as exc:
        raise BatchError(f"marshaling message: {exc}") from exc


def _is_call(message: Message) -> bool:
    """A request that expects a response: it has a method and an id."""
    return bool(message.get("method")) and message.get("id") is not None


def _is_response(message: Message) -> bool:
    return not message.get("method")


def read_batch(data: bytes | str) -> tuple[list[Message], bool]:
    """Decode a payload holding one JSON-RPC message or an array of them.

    Returns the messages and whether the payload was a batch.
    Raises BatchError for an empty batch or a malformed message.
    """
    try:
        value = json.loads(data)
    except (ValueError, UnicodeDecodeError) as exc:
        raise BatchError(f"unmarshaling jsonrpc message: {exc}") from exc
    if isinstance(value, list):
        if not value:
            raise BatchError("empty batch")
        return [_decode_value(item) for item in value], True
    return [_decode_value(value)], False


def marshal_messages(messages: Iterable[Message]) -> bytes:
    """Encode messages as a JSON array, the wire form of a batch."""
    encoded = []
    for msg in messages:
        try:
            encoded.append(_encode_message(msg))
        except BatchError as exc:
            raise BatchError(f"encoding batch message: {exc}") from exc
    return b"[" + b",".join(encoded) + b"]"


@dataclass
class _Batch:
    unresolved: dict[Any, int] = field(default_factory=dict)
    responses: list[Optional[Message]] = field(default_factory=list)


class BatchTracker:
    """Correlates responses with the incoming batch whose requests they answer.

    Once every request of a batch has a response, the batch's responses are
    released together, in the order the requests arrived.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._batches: dict[Any, _Batch] = {}

    def track(self, messages: Iterable[Message]) -> bool:
        """Record the calls in an incoming batch; return whether any were recorded.

        Raises BatchError if the batch repeats an id, or uses an id that an
        earlier, still unanswered batch holds.
        """
        batch = _Batch()
        for msg in messages:
            if not _is_call(msg):
                continue
            request_id = msg["id"]
            if request_id in batch.unresolved:
                raise BatchError(f"duplicate message ID {request_id!r}")
            batch.unresolved[request_id] = len(batch.responses)
            batch.responses.append(None)
        if not batch.unresolved:
            return False
        with self._lock:
            for request_id in batch.unresolved:
                if request_id in self._batches:
                    raise BatchError(
                        f"invalid request: batch contains previously seen request {request_id!r}"
                    )
            for request_id in batch.unresolved:
                self._batches[request_id] = batch
        return True

    def resolve(self, response: Message) -> tuple[bool, Optional[list[Message]]]:
        """Record a response.

        Returns a pair: whether the response belongs to a tracked batch, and,
        if it completed that batch, the batch's full list of responses.
        """
        request_id = response.get("id")
        with self._lock:
            batch = self._batches.pop(request_id, None)
            if batch is None:
                return False, None
            index = batch.unresolved.pop(request_id)
            batch.responses[index] = response
            if batch.unresolved:
                return True, None
            return True, list(batch.responses)