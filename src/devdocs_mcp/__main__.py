"""DevDocs MCP Server entry point."""

import sys


def _cli() -> None:
    """CLI dispatcher: server (default) or version subcommand."""
    if len(sys.argv) >= 2 and sys.argv[1] in ("version", "--version"):
        from importlib.metadata import version

        print(f"devdocs-mcp {version('devdocs-mcp')}")
    else:
        from devdocs_mcp.server import main

        main()


if __name__ == "__main__":
    _cli()
