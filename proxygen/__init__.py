"""Convert OpenAPI documents and public API catalog entries into MCP proxy servers."""

__version__ = "0.4.0"
