"""Building blocks for Model Context Protocol servers: JSON-RPC batching, ndjson connections, event IDs, pagination and a server registry."""

__version__ = "0.1.0"

__all__ = ["batch", "eventids", "ndjson", "pagination", "server"]