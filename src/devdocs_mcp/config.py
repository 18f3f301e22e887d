"""Configuration settings for DevDocs MCP Server."""

from pydantic_settings import BaseSettings

_DEFAULT_USER_AGENT = (
    "devdocs-mcp/0.1 (+https://github.com/HikaruEgashira/devdocs-mcp)"
)


class Settings(BaseSettings):
    """DevDocs MCP Server configuration.

    Environment variables:
    - HTTP_TIMEOUT: Bound on every upstream request in seconds (default: 15)
    - TOOL_TIMEOUT: Bound on a whole tool call in seconds (0 = no timeout)
    - PAGE_SIZE: Hard cap on search results per page (default: 20)
    - DEFAULT_LIMIT: Search limit when the caller gives none (default: 10)
    - DEVDOCS_INDEX_TTL: Seconds the DevDocs index stays cached
        (0 = keep for the process lifetime)
    - USER_AGENT: User-Agent sent upstream (crates.io requires one)
    - *_URL: Upstream base URLs, overridable for mirrors
    - LOG_LEVEL: loguru level for the stderr sink (default: INFO)
    """

    # Upstream requests
    http_timeout: float = 15.0
    user_agent: str = _DEFAULT_USER_AGENT

    # Tool execution timeout (seconds, 0 = no timeout)
    tool_timeout: int = 60

    # Search paging
    page_size: int = 20
    default_limit: int = 10

    # DevDocs index cache (seconds, 0 = never expires)
    devdocs_index_ttl: int = 0

    # Upstream endpoints
    crates_api_url: str = "https://crates.io/api/v1"
    crates_site_url: str = "https://crates.io"
    docs_rs_url: str = "https://docs.rs"
    npm_registry_url: str = "https://registry.npmjs.org"
    npm_site_url: str = "https://www.npmjs.com"
    pypi_url: str = "https://pypi.org"
    go_pkg_url: str = "https://pkg.go.dev"
    devdocs_url: str = "https://devdocs.io"
    devdocs_documents_url: str = "https://documents.devdocs.io"

    # Logging
    log_level: str = "INFO"

    model_config = {"env_prefix": "", "case_sensitive": False}

    def resolve_limit(self, limit: int | None) -> int:
        """Return the effective page size for a search call.

        Falls back to DEFAULT_LIMIT and never exceeds PAGE_SIZE.
        """
        if limit is None:
            limit = self.default_limit
        return max(1, min(limit, self.page_size))


settings = Settings()
