"""DevDocs MCP Server - package documentation for AI agents."""

from importlib.metadata import version

from devdocs_mcp.__main__ import _cli as main
from devdocs_mcp.server import mcp

__version__ = version("devdocs-mcp")
__all__ = ["mcp", "main", "__version__"]
