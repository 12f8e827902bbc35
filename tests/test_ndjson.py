import io
import json

import pytest

from mcpwire.batch import BatchError
from mcpwire.ndjson import ConnectionClosedError, LoggingConnection, NdjsonConnection


def make_conn(data: bytes = b"", batch_size: int = 0):
    writer = io.BytesIO()
    conn = NdjsonConnection(io.BytesIO(data), writer, batch_size)
    return conn, writer


def test_batch_framing():
    conn, writer = make_conn(batch_size=2)
    conn.write({"id": 1, "method": "test"})
    assert writer.getvalue() == b""

    conn.write({"id": 2, "method": "test"})
    written = writer.getvalue()
    assert written.endswith(b"\n")
    assert written.count(b"\n") == 1

    reader_conn, _ = make_conn(written)
    got = [reader_conn.read()["id"] for _ in range(2)]
    assert got == [1, 2]


def test_single_write_is_newline_delimited():
    conn, writer = make_conn()
    conn.write({"id": 7, "method": "ping"})
    assert writer.getvalue() == b'{"jsonrpc":"2.0","id":7,"method":"ping"}\n'


def test_read_single_messages_in_order():
    data = (
        b'{"jsonrpc":"2.0","id":1,"method":"a"}\n'
        b'{"jsonrpc":"2.0","method":"notifications/x"}\n'
    )
    conn, _ = make_conn(data)
    assert conn.read()["method"] == "a"
    assert conn.read()["method"] == "notifications/x"
    with pytest.raises(ConnectionClosedError):
        conn.read()


def test_blank_lines_and_multiline_values():
    data = b'\n\n{"jsonrpc":"2.0",\n "id":3,\n "method":"m"}\n'
    conn, _ = make_conn(data)
    msg = conn.read()
    assert msg["id"] == 3
    assert msg["method"] == "m"


def test_batch_responses_written_together_in_request_order():
    data = (
        b'[{"jsonrpc":"2.0","id":1,"method":"a"},'
        b'{"jsonrpc":"2.0","method":"notify"},'
        b'{"jsonrpc":"2.0","id":2,"method":"b"}]\n'
    )
    conn, writer = make_conn(data)
    assert [conn.read().get("method") for _ in range(3)] == ["a", "notify", "b"]

    conn.write({"id": 2, "result": {"v": "two"}})
    assert writer.getvalue() == b""
    conn.write({"id": 1, "result": {"v": "one"}})

    lines = writer.getvalue().splitlines()
    assert len(lines) == 1
    batch = json.loads(lines[0])
    assert [m["id"] for m in batch] == [1, 2]
    assert batch[0]["result"] == {"v": "one"}


def test_response_outside_batch_written_alone():
    conn, writer = make_conn(b'{"jsonrpc":"2.0","id":5,"method":"a"}\n')
    conn.read()
    conn.write({"id": 5, "result": {}})
    assert json.loads(writer.getvalue()) == {"jsonrpc": "2.0", "id": 5, "result": {}}


def test_duplicate_ids_in_batch_rejected():
    data = (
        b'[{"jsonrpc":"2.0","id":1,"method":"a"},'
        b'{"jsonrpc":"2.0","id":1,"method":"b"}]\n'
    )
    conn, _ = make_conn(data)
    with pytest.raises(BatchError, match="duplicate"):
        conn.read()


def test_empty_batch_rejected():
    conn, _ = make_conn(b"[]\n")
    with pytest.raises(BatchError, match="empty batch"):
        conn.read()


def test_malformed_json_rejected():
    conn, _ = make_conn(b'{"jsonrpc": }\n')
    with pytest.raises(BatchError):
        conn.read()


def test_truncated_stream_rejected():
    conn, _ = make_conn(b'{"jsonrpc":"2.0",')
    with pytest.raises(BatchError, match="unexpected end"):
        conn.read()


def test_write_after_close_raises():
    conn, _ = make_conn()
    conn.close()
    with pytest.raises(ConnectionClosedError):
        conn.write({"id": 1, "method": "x"})
    with pytest.raises(ConnectionClosedError):
        conn.read()


def test_negative_batch_size_rejected():
    with pytest.raises(ValueError):
        NdjsonConnection(io.BytesIO(), io.BytesIO(), -1)


def test_logging_connection_logs_reads_and_writes():
    conn, writer = make_conn(b'{"jsonrpc":"2.0","id":1,"method":"a"}\n')
    log = io.StringIO()
    logged = LoggingConnection(conn, log)

    msg = logged.read()
    assert msg["method"] == "a"
    logged.write({"id": 1, "result": {}})

    assert log.getvalue() == (
        'read: {"jsonrpc":"2.0","id":1,"method":"a"}\n'
        'write: {"jsonrpc":"2.0","id":1,"result":{}}\n'
    )
    assert writer.getvalue() == b'{"jsonrpc":"2.0","id":1,"result":{}}\n'


def test_logging_connection_logs_read_errors():
    conn, _ = make_conn()
    log = io.StringIO()
    logged = LoggingConnection(conn, log)
    with pytest.raises(ConnectionClosedError):
        logged.read()
    assert log.getvalue().startswith("read error: ")