"""Living feature documentation tools: API client, MCP tools and stdio server."""

__version__ = "0.1.17"

__all__ = ["__version__"]