"""An MCP server's feature registry, capability advertising and per-session state."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional
from urllib.parse import urlsplit

from mcpwire.pagination import DEFAULT_PAGE_SIZE, FeatureSet, Page, paginate

__all__ = [
    "LATEST_PROTOCOL_VERSION",
    "SUPPORTED_PROTOCOL_VERSIONS",
    "LOGGING_LEVELS",
    "CODE_RESOURCE_NOT_FOUND",
    "ResourceNotFoundError",
    "Prompt",
    "Tool",
    "Resource",
    "ResourceTemplate",
    "Server",
    "ServerSession",
]

_log = logging.getLogger(__name__)

LATEST_PROTOCOL_VERSION = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS = (LATEST_PROTOCOL_VERSION, "2025-03-26", "2024-11-05")

LOGGING_LEVELS = (
    "debug",
    "info",
    "notice",
    "warning",
    "error",
    "critical",
    "alert",
    "emergency",
)

CODE_RESOURCE_NOT_FOUND = -32002

NOTIFICATION_PROMPT_LIST_CHANGED = "notifications/prompts/list_changed"
NOTIFICATION_TOOL_LIST_CHANGED = "notifications/tools/list_changed"
NOTIFICATION_RESOURCE_LIST_CHANGED = "notifications/resources/list_changed"

ResourceHandler = Callable[[str], Optional[list]]


class ResourceNotFoundError(LookupError):
    """No resource or resource template serves the requested URI."""

    code = CODE_RESOURCE_NOT_FOUND

    def __init__(self, uri: str) -> None:
        super().__init__(f"Resource not found: {uri}")
        self.uri = uri


@dataclass(frozen=True)
class Prompt:
    """A prompt bound to its handler."""

    name: str
    handler: Any = None


@dataclass(frozen=True)
class Tool:
    """A tool bound to its handler."""

    name: str
    handler: Any = None


@dataclass(frozen=True)
class Resource:
    """A resource with a fixed URI, bound to its read handler."""

    uri: str
    handler: Optional[ResourceHandler] = None
    mime_type: str = ""


def _expression_pattern(expression: str) -> str:
    op = expression[:1]
    if op == "+":
        return ".*"
    if op == "#":
        return r"(?:\#.*)?"
    if op == "/":
        return r"(?:/[^/?#]*)*"
    if op in ("?", "&"):
        return r"(?:[?&][^#]*)?"
    if op == ".":
        return r"(?:\.[^/?#.]*)*"
    if op == ";":
        return r"(?:;[^/?#]*)*"
    return r"[^/?#]*"


def _template_regex(template: str) -> re.Pattern[str]:
    parts = []
    pos = 0
    for match in re.finditer(r"\{([^{}]*)\}", template):
        parts.append(re.escape(template[pos : match.start()]))
        parts.append(_expression_pattern(match.group(1)))
        pos = match.end()
    parts.append(re.escape(template[pos:]))
    return re.compile("".join(parts), re.DOTALL)


@dataclass(frozen=True)
class ResourceTemplate:
    """A URI template bound to the read handler for the resources it matches."""

    uri_template: str
    handler: Optional[ResourceHandler] = None
    mime_type: str = ""
    _pattern: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_pattern", _template_regex(self.uri_template))

    def matches(self, uri: str) -> bool:
        """Report whether ``uri`` is an expansion of the template."""
        return self._pattern.fullmatch(uri) is not None


class Server:
    """An MCP server: the prompts, tools and resources it offers, and its sessions.

    Adding a feature replaces one with the same key; every change is
    announced to the connected sessions as a list-changed notification.
    """

    def __init__(
        self,
        name: str,
        version: str = "",
        page_size: int = 0,
        instructions: str = "",
    ) -> None:
        if page_size < 0:
            raise ValueError(f"invalid page size {page_size}")
        self.name = name
        self.version = version
        self.page_size = page_size or DEFAULT_PAGE_SIZE
        self.instructions = instructions
        self._lock = threading.Lock()
        self._prompts: FeatureSet[Prompt] = FeatureSet(lambda p: p.name)
        self._tools: FeatureSet[Tool] = FeatureSet(lambda t: t.name)
        self._resources: FeatureSet[Resource] = FeatureSet(lambda r: r.uri)
        self._templates: FeatureSet[ResourceTemplate] = FeatureSet(lambda t: t.uri_template)
        self._sessions: list[ServerSession] = []

    def _change_and_notify(self, notification: str, change: Callable[[], bool]) -> None:
        with self._lock:
            sessions = list(self._sessions) if change() else []
        for session in sessions:
            notifier = session.notifier
            if notifier is None:
                continue
            try:
                notifier(notification, {})
            except Exception as exc:  # one failing session must not stop the rest
                _log.warning("calling %s: %s", notification, exc)

    @staticmethod
    def _add(features: FeatureSet, feature: Any) -> bool:
        features.add(feature)
        return True

    def add_prompt(self, name: str, handler: Any) -> None:
        """Add a prompt, or replace the one with the same name."""
        prompt = Prompt(name, handler)
        self._change_and_notify(
            NOTIFICATION_PROMPT_LIST_CHANGED, lambda: self._add(self._prompts, prompt)
        )

    def remove_prompts(self, *args: str) -> None:
        """Remove the named prompts; unknown names are ignored."""
        self._change_and_notify(
            NOTIFICATION_PROMPT_LIST_CHANGED, lambda: self._prompts.remove(*args)
        )

    def add_tool(self, name: str, handler: Any) -> None:
        """Add a tool, or replace the one with the same name."""
        tool = Tool(name, handler)
        self._change_and_notify(
            NOTIFICATION_TOOL_LIST_CHANGED, lambda: self._add(self._tools, tool)
        )

    def remove_tools(self, *args: str) -> None:
        """Remove the named tools; unknown names are ignored."""
        self._change_and_notify(
            NOTIFICATION_TOOL_LIST_CHANGED, lambda: self._tools.remove(*args)
        )

    def add_resource(
        self, uri: str, handler: Optional[ResourceHandler], mime_type: str = ""
    ) -> None:
        """Add a resource, or replace the one with the same URI.

        Raises ValueError if the URI is invalid or has no scheme.
        """
        if not urlsplit(uri).scheme:
            raise ValueError(f"URI {uri} needs a scheme")
        resource = Resource(uri, handler, mime_type)
        self._change_and_notify(
            NOTIFICATION_RESOURCE_LIST_CHANGED, lambda: self._add(self._resources, resource)
        )

    def remove_resources(self, *args: str) -> None:
        """Remove the resources with the given URIs; unknown URIs are ignored."""
        self._change_and_notify(
            NOTIFICATION_RESOURCE_LIST_CHANGED, lambda: self._resources.remove(*args)
        )

    def add_resource_template(
        self, uri_template: str, handler: Optional[ResourceHandler], mime_type: str = ""
    ) -> None:
        """Add a resource template, or replace the one with the same template."""
        template = ResourceTemplate(uri_template, handler, mime_type)
        self._change_and_notify(
            NOTIFICATION_RESOURCE_LIST_CHANGED, lambda: self._add(self._templates, template)
        )

    def remove_resource_templates(self, *args: str) -> None:
        """Remove the given resource templates; unknown ones are ignored."""
        self._change_and_notify(
            NOTIFICATION_RESOURCE_LIST_CHANGED, lambda: self._templates.remove(*args)
        )

    def capabilities(self) -> dict[str, Any]:
        """Return the capabilities the server advertises, as a JSON object."""
        with self._lock:
            caps: dict[str, Any] = {"completions": {}, "logging": {}}
            if len(self._prompts):
                caps["prompts"] = {"listChanged": True}
            if len(self._resources) or len(self._templates):
                caps["resources"] = {"listChanged": True}
            if len(self._tools):
                caps["tools"] = {"listChanged": True}
            return caps

    def list_prompts(self, cursor: Optional[str] = None) -> Page[Prompt]:
        """Return a page of prompts; raise InvalidCursorError for a bad cursor."""
        return paginate(self._prompts, self.page_size, cursor)

    def list_tools(self, cursor: Optional[str] = None) -> Page[Tool]:
        """Return a page of tools; raise InvalidCursorError for a bad cursor."""
        return paginate(self._tools, self.page_size, cursor)

    def list_resources(self, cursor: Optional[str] = None) -> Page[Resource]:
        """Return a page of resources; raise InvalidCursorError for a bad cursor."""
        return paginate(self._resources, self.page_size, cursor)

    def list_resource_templates(self, cursor: Optional[str] = None) -> Page[ResourceTemplate]:
        """Return a page of resource templates; raise InvalidCursorError for a bad cursor."""
        return paginate(self._templates, self.page_size, cursor)

    def _lookup_resource(self, uri: str) -> Optional[tuple[Optional[ResourceHandler], str]]:
        resource = self._resources.get(uri)
        if resource is not None:
            return resource.handler, resource.mime_type
        for template in self._templates:
            if template.matches(uri):
                return template.handler, template.mime_type
        return None

    def read_resource(self, uri: str) -> list[dict[str, Any]]:
        """Read a resource through the handler of the resource or template serving it.

        Each returned content gets the URI and MIME type filled in where the
        handler left them empty. Raises ResourceNotFoundError if nothing
        serves ``uri`` and ValueError if the handler returns nothing.
        """
        found = self._lookup_resource(uri)
        if found is None:
            raise ResourceNotFoundError(uri)
        handler, mime_type = found
        if handler is None:
            raise ValueError(f"reading resource {uri}: read handler returned nil information")
        contents = handler(uri)
        if contents is None:
            raise ValueError(f"reading resource {uri}: read handler returned nil information")
        result = []
        for item in contents:
            content = dict(item)
            if not content.get("uri"):
                content["uri"] = uri
            if not content.get("mimeType") and mime_type:
                content["mimeType"] = mime_type
            result.append(content)
        return result

    def new_session(self) -> "ServerSession":
        """Create a session for a newly connected client and register it."""
        return ServerSession(self)

    def _register(self, session: "ServerSession") -> None:
        with self._lock:
            self._sessions.append(session)

    def _disconnect(self, session: "ServerSession") -> None:
        with self._lock:
            self._sessions = [s for s in self._sessions if s is not session]


_LEVEL_RANK = {level: rank for rank, level in enumerate(LOGGING_LEVELS)}


def _level_rank(level: str) -> int:
    try:
        return _LEVEL_RANK[level]
    except KeyError:
        raise ValueError(f"unknown logging level {level!r}") from None


class ServerSession:
    """The server's state for one connected client.

    ``notifier``, if set, is called with a method name and params for each
    notification the server sends to this session.
    """

    def __init__(self, server: Server) -> None:
        self.server = server
        self.notifier: Optional[Callable[[str, dict], Any]] = None
        self._lock = threading.Lock()
        self._initialized = False
        self._protocol_version = ""
        self._log_level = ""
        server._register(self)

    @property
    def initialized(self) -> bool:
        with self._lock:
            return self._initialized

    def initialize(self, protocol_version: str) -> dict[str, Any]:
        """Handle the initialize request and return its result.

        The client's protocol version is echoed if supported; otherwise the
        latest supported version is offered.
        """
        version = protocol_version
        if version not in SUPPORTED_PROTOCOL_VERSIONS:
            version = LATEST_PROTOCOL_VERSION
        result: dict[str, Any] = {
            "capabilities": self.server.capabilities(),
            "protocolVersion": version,
            "serverInfo": {"name": self.server.name, "version": self.server.version},
        }
        if self.server.instructions:
            result["instructions"] = self.server.instructions
        with self._lock:
            self._protocol_version = version
            self._initialized = True
        return result

    def check_method(self, method: str) -> None:
        """Raise ValueError if ``method`` may not be called before initialization."""
        if method in ("initialize", "ping"):
            return
        if not self.initialized:
            raise ValueError(f'method "{method}" is invalid during session initialization')

    def set_level(self, level: str) -> None:
        """Set the minimum level of log messages the client wants."""
        _level_rank(level)
        with self._lock:
            self._log_level = level

    def should_log(self, level: str) -> bool:
        """Report whether a message at ``level`` should be sent to the client.

        Nothing is sent until the client has set a level.
        """
        rank = _level_rank(level)
        with self._lock:
            current = self._log_level
        if not current:
            return False
        return rank >= _LEVEL_RANK[current]