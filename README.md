# mcpwire

Building blocks for Model Context Protocol (MCP) servers, in plain Python
with no third-party dependencies.

## Modules

- `mcpwire.batch` – JSON-RPC payloads and batches. `read_batch(data)`
  decodes one message or an array of them and returns `(messages, is_batch)`;
  `marshal_messages(messages)` encodes a list as a JSON array;
  `BatchTracker` records the calls of an incoming batch (`track`) and, as
  responses arrive (`resolve`), hands back the batch's full list of
  responses, in request order, once every call in it is answered.
  Malformed payloads, empty batches and repeated IDs raise `BatchError`.
- `mcpwire.ndjson` – `NdjsonConnection(reader, writer, batch_size=0)`, a
  newline-delimited JSON-RPC connection over a pair of streams. Messages of
  an incoming batch are returned one per `read()`; responses to them are held
  back and written together as one array. With a positive `batch_size`,
  outgoing requests and notifications are sent in batches of that many.
  Reading at end of stream or using a closed connection raises
  `ConnectionClosedError`. `LoggingConnection(delegate, log)` wraps another
  connection and writes `read: ...` / `write: ...` lines (or the error) to a
  text stream.
- `mcpwire.eventids` – `format_event_id(stream_id, index)` and
  `parse_event_id(event_id)` for event IDs of the form `<stream>_<index>`
  (`parse_event_id` raises `ValueError` on anything else, including negative
  numbers); `parse_accept(values)` and `check_accept(method, values)`, which
  require `text/event-stream` for GET and both `application/json` and
  `text/event-stream` for other methods.
- `mcpwire.pagination` – `FeatureSet(key)`, a collection kept in key order
  where adding an existing key replaces the item; `encode_cursor` /
  `decode_cursor` for opaque cursors; `paginate(features, page_size, cursor)`
  returning a `Page` with `items` and `next_cursor` (empty on the last page).
  A bad cursor raises `InvalidCursorError`.
- `mcpwire.server` – `Server(name, version="", page_size=0, instructions="")`
  holds prompts, tools, resources and resource templates, reports
  `capabilities()`, lists them page by page and reads resources;
  `ServerSession` tracks initialization, the negotiated protocol version and
  the client's logging level.

## Installing

```
pip install mcpwire
```

For running the tests:

```
pip install "mcpwire[test]"
pytest
```

## Examples

A server and a session:

```python
from mcpwire.server import Server

server = Server("demo", "v1.0.0")
server.add_tool("greet", lambda args: f"hi {args['name']}")
server.add_resource(
    "file:///notes",
    lambda uri: [{"text": "some notes"}],
    "text/plain",
)

print(server.capabilities())
# {'completions': {}, 'logging': {}, 'resources': {'listChanged': True},
#  'tools': {'listChanged': True}}

print(server.read_resource("file:///notes"))
# [{'text': 'some notes', 'uri': 'file:///notes', 'mimeType': 'text/plain'}]

session = server.new_session()
session.notifier = lambda method, params: print("notify", method)
session.check_method("ping")          # allowed before initialization
result = session.initialize("2025-06-18")
session.check_method("tools/list")    # allowed once initialized

server.remove_tools("greet")          # prints: notify notifications/tools/list_changed

session.set_level("warning")
session.should_log("error")           # True
session.should_log("info")            # False
```

`add_resource` raises `ValueError` for a URI without a scheme.
`read_resource` raises `ResourceNotFoundError` (with `code` -32002) when no
resource or template serves the URI. Resource handlers take the URI and
return a list of content dicts; each gets `uri` and `mimeType` filled in
where it left them empty.

Pagination:

```python
from mcpwire.pagination import FeatureSet, paginate

names = FeatureSet(lambda s: s)
names.add("charlie", "alpha", "bravo")
first = paginate(names, 2)
print(first.items)                                  # ['alpha', 'bravo']
print(paginate(names, 2, first.next_cursor).items)  # ['charlie']
```

Newline-delimited JSON-RPC:

```python
import io
from mcpwire.ndjson import NdjsonConnection

incoming = io.BytesIO(b'{"jsonrpc":"2.0","id":1,"method":"ping"}\n')
outgoing = io.BytesIO()
conn = NdjsonConnection(incoming, outgoing)

print(conn.read())    # {'jsonrpc': '2.0', 'id': 1, 'method': 'ping'}
conn.write({"id": 1, "result": {}})
print(outgoing.getvalue())  # b'{"jsonrpc":"2.0","id":1,"result":{}}\n'
```

## What it does not do

- It does not listen on a socket or serve HTTP. There is no server-sent
  events framing and no HTTP request handler; `mcpwire.eventids` only
  formats and checks the IDs and `Accept` headers such a transport uses.
- It does not dispatch JSON-RPC requests. `Server` stores prompt and tool
  handlers but never calls them; only resource handlers are called, by
  `read_resource`. Wiring messages read from a connection to the server is
  left to the application.
- There is no command-line program.