import pytest

from mcpwire.pagination import InvalidCursorError
from mcpwire.server import (
    LATEST_PROTOCOL_VERSION,
    ResourceNotFoundError,
    Server,
)

BASE = {"completions": {}, "logging": {}}


def _prompts(s):
    s.add_prompt("p", None)


def _resources(s):
    s.add_resource("file:///r", None)


def _templates(s):
    s.add_resource_template("file:///rt", None)


def _tools(s):
    s.add_tool("t", None)


def _all(s):
    _prompts(s)
    _resources(s)
    _templates(s)
    _tools(s)


@pytest.mark.parametrize(
    "configure, want",
    [
        (lambda s: None, BASE),
        (_prompts, {**BASE, "prompts": {"listChanged": True}}),
        (_resources, {**BASE, "resources": {"listChanged": True}}),
        (_templates, {**BASE, "resources": {"listChanged": True}}),
        (_tools, {**BASE, "tools": {"listChanged": True}}),
        (
            _all,
            {
                **BASE,
                "prompts": {"listChanged": True},
                "resources": {"listChanged": True},
                "tools": {"listChanged": True},
            },
        ),
    ],
)
def test_capabilities(configure, want):
    server = Server("testServer", "v1.0.0")
    configure(server)
    assert server.capabilities() == want


def test_negative_page_size_rejected():
    with pytest.raises(ValueError):
        Server("s", page_size=-1)


def test_default_page_size():
    assert Server("s").page_size == 1000


def test_list_tools_paginates():
    server = Server("s", page_size=2)
    for name in ("c", "a", "b"):
        server.add_tool(name, None)
    first = server.list_tools()
    assert [t.name for t in first.items] == ["a", "b"]
    assert first.next_cursor
    second = server.list_tools(first.next_cursor)
    assert [t.name for t in second.items] == ["c"]
    assert second.next_cursor == ""


def test_list_invalid_cursor():
    server = Server("s")
    server.add_prompt("p", None)
    with pytest.raises(InvalidCursorError):
        server.list_prompts("not-a-valid-cursor")


def test_remove_prompts():
    server = Server("s")
    server.add_prompt("a", None)
    server.add_prompt("b", None)
    server.remove_prompts("a", "missing")
    assert [p.name for p in server.list_prompts().items] == ["b"]


def test_add_replaces_same_name():
    server = Server("s")
    server.add_tool("t", "first")
    server.add_tool("t", "second")
    items = server.list_tools().items
    assert len(items) == 1
    assert items[0].handler == "second"


def test_resource_needs_scheme():
    server = Server("s")
    with pytest.raises(ValueError, match="needs a scheme"):
        server.add_resource("relative/path", None)


def test_read_resource_fills_fields():
    server = Server("s")
    server.add_resource("file:///r", lambda uri: [{"text": "hello"}], "text/plain")
    assert server.read_resource("file:///r") == [
        {"text": "hello", "uri": "file:///r", "mimeType": "text/plain"}
    ]


def test_read_resource_keeps_handler_fields():
    server = Server("s")
    server.add_resource(
        "file:///r",
        lambda uri: [{"uri": "file:///other", "mimeType": "a/b", "text": "x"}],
        "text/plain",
    )
    assert server.read_resource("file:///r") == [
        {"uri": "file:///other", "mimeType": "a/b", "text": "x"}
    ]


def test_read_resource_via_template():
    server = Server("s")
    server.add_resource_template(
        "file:///docs/{name}", lambda uri: [{"text": uri}], "text/markdown"
    )
    got = server.read_resource("file:///docs/readme")
    assert got == [
        {"text": "file:///docs/readme", "uri": "file:///docs/readme", "mimeType": "text/markdown"}
    ]
    with pytest.raises(ResourceNotFoundError):
        server.read_resource("file:///docs/a/b")


def test_read_resource_not_found():
    server = Server("s")
    with pytest.raises(ResourceNotFoundError) as info:
        server.read_resource("file:///missing")
    assert info.value.uri == "file:///missing"
    assert info.value.code == -32002


def test_read_resource_nil_result():
    server = Server("s")
    server.add_resource("file:///r", lambda uri: None)
    with pytest.raises(ValueError, match="nil information"):
        server.read_resource("file:///r")


def test_notifications_on_change():
    server = Server("s")
    session = server.new_session()
    received = []
    session.notifier = lambda method, params: received.append((method, params))
    server.add_tool("t", None)
    server.remove_tools("missing")
    server.remove_tools("t")
    server.add_resource("file:///r", None)
    assert received == [
        ("notifications/tools/list_changed", {}),
        ("notifications/tools/list_changed", {}),
        ("notifications/resources/list_changed", {}),
    ]


def test_initialize_negotiates_version():
    server = Server("testServer", "v1.0.0", instructions="be nice")
    session = server.new_session()
    result = session.initialize("2024-11-05")
    assert result["protocolVersion"] == "2024-11-05"
    assert result["serverInfo"] == {"name": "testServer", "version": "v1.0.0"}
    assert result["instructions"] == "be nice"
    assert result["capabilities"] == BASE
    other = server.new_session().initialize("1999-01-01")
    assert other["protocolVersion"] == LATEST_PROTOCOL_VERSION


def test_check_method_before_initialize():
    session = Server("s").new_session()
    session.check_method("ping")
    session.check_method("initialize")
    with pytest.raises(ValueError, match='method "tools/call" is invalid during session initialization'):
        session.check_method("tools/call")
    session.initialize(LATEST_PROTOCOL_VERSION)
    session.check_method("tools/call")
    assert session.initialized is True


def test_log_levels():
    session = Server("s").new_session()
    assert session.should_log("emergency") is False
    session.set_level("warning")
    assert session.should_log("info") is False
    assert session.should_log("warning") is True
    assert session.should_log("error") is True
    with pytest.raises(ValueError):
        session.set_level("loud")