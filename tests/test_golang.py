"""Tests for the pkg.go.dev adapter."""

import pytest

from devdocs_mcp.errors import AdapterError, ErrorKind
from devdocs_mcp.models import Ecosystem, PackageQuery, SearchQuery
from devdocs_mcp.sources.golang import (
    GoAdapter,
    package_url,
    parse_package_page,
    parse_search_page,
    parse_symbol,
    symbol_id,
)

PKG = "https://pkg.go.dev"

MUX_PAGE = """
<html><body>
<header class="go-Header"><nav>Why Go</nav></header>
<div data-test-id="UnitHeader-version">Version: v1.8.1</div>
<div class="Documentation">
  <section class="Documentation-overview">
    <h3 id="pkg-overview" class="Documentation-overviewHeader">Overview</h3>
    <p>Package mux implements a request router and dispatcher.</p>
    <pre>r := mux.NewRouter()
r.HandleFunc("/", HomeHandler)</pre>
  </section>
  <section class="Documentation-index">
    <h3 id="pkg-index">Index</h3>
    <ul class="Documentation-indexList">
      <li><a href="#NewRouter">func NewRouter() *Router</a></li>
      <li><a href="#Router">type Router</a></li>
      <li><a href="#Router.ServeHTTP">func (r *Router) ServeHTTP(w, req)</a></li>
    </ul>
  </section>
  <div class="Documentation-function">
    <h4 id="NewRouter" data-kind="function">func NewRouter</h4>
    <div class="Documentation-declaration"><pre>func NewRouter() *Router</pre></div>
    <p>NewRouter returns a new router instance.</p>
  </div>
  <div class="Documentation-type">
    <h4 id="Router" data-kind="type">type Router</h4>
    <div class="Documentation-declaration"><pre>type Router struct {}</pre></div>
    <p>Router registers routes to be matched and dispatches a handler.</p>
    <div class="Documentation-typeMethod">
      <h4 id="Router.ServeHTTP" data-kind="method">func (*Router) ServeHTTP</h4>
      <div class="Documentation-declaration"><pre>func (r *Router) ServeHTTP(w http.ResponseWriter, req *http.Request)</pre></div>
      <p>ServeHTTP dispatches the handler registered in the matched route.</p>
    </div>
  </div>
</div>
</body></html>
"""

SEARCH_PAGE = """
<html><body>
<form><input name="q" value="router"></form>
<div class="SearchResults-summary">1 – 2 of 57 results</div>
<div class="SearchSnippet">
  <div class="SearchSnippet-headerContainer">
    <h2><a href="/github.com/gorilla/mux">mux
      <span class="SearchSnippet-header-path">(github.com/gorilla/mux)</span></a></h2>
  </div>
  <p class="SearchSnippet-synopsis">Package mux implements a request router and dispatcher.</p>
  <div class="SearchSnippet-infoLabel"><span data-test-id="snippet-version">v1.8.1</span></div>
</div>
<div class="SearchSnippet">
  <div class="SearchSnippet-headerContainer"><h2><a href="/net/http@go1.22.1">http</a></h2></div>
  <p class="SearchSnippet-synopsis">Package http provides HTTP client and server implementations.</p>
</div>
</body></html>
"""


class TestHelpers:
    def test_package_url(self):
        assert package_url("net/http") == f"{PKG}/net/http"
        assert package_url("/github.com/gorilla/mux/", "v1.8.0") == (
            f"{PKG}/github.com/gorilla/mux@v1.8.0"
        )

    def test_symbol_id(self):
        assert symbol_id("Client") == "Client"
        assert symbol_id("Client::Do") == "Client.Do"
        assert symbol_id("Client/Do") == "Client.Do"


class TestParsePackagePage:
    def test_overview_index_and_version(self):
        url = f"{PKG}/github.com/gorilla/mux"
        body, sections, version = parse_package_page(MUX_PAGE, url)

        assert body.startswith("Package mux implements a request router")
        assert '```\nr := mux.NewRouter()\nr.HandleFunc("/", HomeHandler)\n```' in body
        assert "## Index" in body
        assert "- `func NewRouter() *Router`" in body
        assert "Why Go" not in body
        assert [s.anchor for s in sections] == ["#NewRouter", "#Router", "#Router.ServeHTTP"]
        assert sections[1].name == "type Router"
        assert version == "v1.8.1"


class TestParseSymbol:
    def test_function(self):
        title, body = parse_symbol(MUX_PAGE, PKG, "NewRouter")
        assert title == "func NewRouter"
        assert "```\nfunc NewRouter() *Router\n```" in body
        assert "NewRouter returns a new router instance." in body
        assert "Router registers" not in body

    def test_type_lists_methods_instead_of_inlining_them(self):
        title, body = parse_symbol(MUX_PAGE, PKG, "Router")
        assert title == "type Router"
        assert "type Router struct {}" in body
        assert "Router registers routes" in body
        assert "- func (*Router) ServeHTTP" in body
        assert "ServeHTTP dispatches" not in body

    def test_method(self):
        title, body = parse_symbol(MUX_PAGE, PKG, "Router.ServeHTTP")
        assert title == "func (*Router) ServeHTTP"
        assert "ServeHTTP dispatches the handler" in body
        assert "Router registers" not in body

    def test_missing(self):
        assert parse_symbol(MUX_PAGE, PKG, "Nope") is None


class TestParseSearchPage:
    def test_results(self):
        packages, total = parse_search_page(SEARCH_PAGE)
        assert [p.path for p in packages] == ["github.com/gorilla/mux", "net/http"]
        assert packages[0].version == "v1.8.1"
        assert packages[1].version is None
        assert packages[1].synopsis.startswith("Package http provides")
        assert total == 57

    def test_no_results(self):
        html = "<html><body><form><input name='q'></form><p>No results.</p></body></html>"
        assert parse_search_page(html) == ([], 0)

    def test_unrecognized_layout(self):
        with pytest.raises(AdapterError) as exc_info:
            parse_search_page("<html><body><p>Maintenance</p></body></html>")
        assert exc_info.value.kind is ErrorKind.PARSE_FAILURE
        assert exc_info.value.ecosystem is Ecosystem.GO


class TestGoAdapter:
    @pytest.mark.asyncio
    async def test_lookup(self, upstream):
        upstream.add(f"{PKG}/github.com/gorilla/mux", text=MUX_PAGE)

        result = await GoAdapter().lookup(
            PackageQuery(ecosystem=Ecosystem.GO, package_name="github.com/gorilla/mux")
        )

        assert result.title == "github.com/gorilla/mux"
        assert result.url == f"{PKG}/github.com/gorilla/mux"
        assert result.body.startswith("# github.com/gorilla/mux\n\nPackage mux")
        assert result.version == "v1.8.1"
        assert len(result.sections) == 3

    @pytest.mark.asyncio
    async def test_lookup_pinned_version(self, upstream):
        upstream.add(f"{PKG}/github.com/gorilla/mux@v1.8.0", text=MUX_PAGE)

        result = await GoAdapter().lookup(
            PackageQuery(
                ecosystem=Ecosystem.GO,
                package_name="github.com/gorilla/mux",
                version="v1.8.0",
            )
        )
        assert result.version == "v1.8.0"
        assert result.url.endswith("@v1.8.0")

    @pytest.mark.asyncio
    async def test_lookup_empty_page(self, upstream):
        upstream.add(f"{PKG}/example.com/empty", text="<html><body></body></html>")

        with pytest.raises(AdapterError) as exc_info:
            await GoAdapter().lookup(
                PackageQuery(ecosystem=Ecosystem.GO, package_name="example.com/empty")
            )
        assert exc_info.value.kind is ErrorKind.PARSE_FAILURE

    @pytest.mark.asyncio
    async def test_lookup_missing_package(self, upstream):
        with pytest.raises(AdapterError) as exc_info:
            await GoAdapter().lookup(
                PackageQuery(ecosystem=Ecosystem.GO, package_name="example.com/nope")
            )
        assert exc_info.value.kind is ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_lookup_item(self, upstream):
        upstream.add(f"{PKG}/github.com/gorilla/mux", text=MUX_PAGE)

        result = await GoAdapter().lookup_item(
            PackageQuery(
                ecosystem=Ecosystem.GO,
                package_name="github.com/gorilla/mux",
                item_path="Router::ServeHTTP",
            )
        )

        assert result.title == "github.com/gorilla/mux.Router.ServeHTTP"
        assert result.url == f"{PKG}/github.com/gorilla/mux#Router.ServeHTTP"
        assert result.body.startswith("## func (*Router) ServeHTTP")

    @pytest.mark.asyncio
    async def test_lookup_item_missing_symbol(self, upstream):
        upstream.add(f"{PKG}/github.com/gorilla/mux", text=MUX_PAGE)

        with pytest.raises(AdapterError) as exc_info:
            await GoAdapter().lookup_item(
                PackageQuery(
                    ecosystem=Ecosystem.GO,
                    package_name="github.com/gorilla/mux",
                    item_path="Subrouter",
                )
            )
        assert exc_info.value.kind is ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_search(self, upstream):
        upstream.add(f"{PKG}/search", text=SEARCH_PAGE)

        page = await GoAdapter().search(
            SearchQuery(ecosystem=Ecosystem.GO, term="router", limit=10)
        )

        assert upstream.params(f"{PKG}/search") == {"q": "router", "limit": 10, "page": 1}
        assert [h.name for h in page.items] == ["github.com/gorilla/mux", "net/http"]
        assert page.items[1].url == f"{PKG}/net/http"
        assert page.total_estimated == 57
        assert page.truncated is True
