"""Newline-delimited JSON-RPC connections over byte streams, with batch support."""

from __future__ import annotations

import json
import threading
from collections import deque
from typing import IO, Any, Optional, Protocol

from mcpwire.batch import (
    BatchError,
    BatchTracker,
    Message,
    _encode_message,
    _is_response,
    marshal_messages,
    read_batch,
)

__all__ = ["ConnectionClosedError", "NdjsonConnection", "LoggingConnection"]

_JSON_WHITESPACE = " \t\r\n"


class ConnectionClosedError(EOFError):
    """The connection is closed, or the peer ended the stream."""


class _Connection(Protocol):
    def read(self) -> Message: ...

    def write(self, message: Message) -> None: ...

    def close(self) -> Any: ...


class NdjsonConnection:
    """A JSON-RPC connection that delimits messages with newlines.

    Incoming payloads may be single messages or batches; the messages of a
    batch are returned one per :meth:`read`, and the responses to its calls
    are held back and written together once all of them are known.

    If ``batch_size`` is positive, outgoing requests and notifications are
    collected and sent as a batch of that many messages.
    """

    def __init__(self, reader: IO, writer: IO[bytes], batch_size: int = 0) -> None:
        if batch_size < 0:
            raise ValueError(f"invalid batch size {batch_size}")
        self._reader = reader
        self._writer = writer
        self._batch_size = batch_size
        self._buffer = ""
        self._queue: deque[Message] = deque()
        self._tracker = BatchTracker()
        self._outgoing: list[Message] = []
        self._write_lock = threading.Lock()
        self._closed = False

    def _next_value(self) -> str:
        """Return the text of the next JSON value on the stream."""
        decoder = json.JSONDecoder()
        while True:
            text = self._buffer.lstrip(_JSON_WHITESPACE)
            self._buffer = text
            if text:
                try:
                    _, end = decoder.raw_decode(text)
                except json.JSONDecodeError as exc:
                    if exc.pos < len(text):
                        raise BatchError(f"unmarshaling jsonrpc message: {exc}") from exc
                else:
                    self._buffer = text[end:]
                    return text[:end]
            line = self._reader.readline()
            if not line:
                if text:
                    raise BatchError("unexpected end of JSON input")
                raise ConnectionClosedError("connection closed")
            if isinstance(line, bytes):
                try:
                    line = line.decode("utf-8")
                except UnicodeDecodeError as exc:
                    raise BatchError(f"invalid UTF-8 in stream: {exc}") from exc
            self._buffer += line

    def read(self) -> Message:
        """Return the next incoming message.

        Raises ConnectionClosedError at the end of the stream and BatchError
        for a malformed payload.
        """
        if self._closed:
            raise ConnectionClosedError("connection closed")
        if self._queue:
            return self._queue.popleft()
        messages, is_batch = read_batch(self._next_value())
        self._queue.extend(messages[1:])
        if is_batch:
            self._tracker.track(messages)
        return messages[0]

    def _send(self, data: bytes) -> None:
        self._writer.write(data + b"\n")
        flush = getattr(self._writer, "flush", None)
        if callable(flush):
            flush()

    def write(self, message: Message) -> None:
        """Send a message, or hold it until its batch is complete."""
        with self._write_lock:
            if self._closed:
                raise ConnectionClosedError("connection closed")
            if _is_response(message):
                in_batch, responses = self._tracker.resolve(message)
                if in_batch:
                    if responses:
                        self._send(marshal_messages(responses))
                    return
            elif self._batch_size > 0:
                self._outgoing.append(message)
                if len(self._outgoing) == self._batch_size:
                    pending = list(self._outgoing)
                    self._outgoing.clear()
                    self._send(marshal_messages(pending))
                return
            self._send(_encode_message(message))

    def close(self) -> None:
        """Close both underlying streams."""
        with self._write_lock:
            if self._closed:
                return
            self._closed = True
        error: Optional[BaseException] = None
        for stream in (self._reader, self._writer):
            try:
                stream.close()
            except Exception as exc:  # close the other stream regardless
                if error is None:
                    error = exc
        if error is not None:
            raise error


class LoggingConnection:
    """A connection that delegates to another, writing a log of each message."""

    def __init__(self, delegate: _Connection, log: IO[str]) -> None:
        self._delegate = delegate
        self._log = log

    def _describe(self, message: Message) -> str:
        try:
            return _encode_message(message).decode()
        except BatchError as exc:
            self._log.write(f"LoggingTransport: failed to marshal: {exc}")
            return ""

    def read(self) -> Message:
        """Read from the delegate, logging the message or the error."""
        try:
            message = self._delegate.read()
        except Exception as exc:
            self._log.write(f"read error: {exc}")
            raise
        self._log.write(f"read: {self._describe(message)}\n")
        return message

    def write(self, message: Message) -> None:
        """Write to the delegate, logging the message or the error."""
        try:
            self._delegate.write(message)
        except Exception as exc:
            self._log.write(f"write error: {exc}")
            raise
        self._log.write(f"write: {self._describe(message)}\n")

    def close(self) -> Any:
        """Close the delegate."""
        return self._delegate.close()