"""Tests for the crates.io / docs.rs adapter."""

import pytest

from devdocs_mcp.errors import AdapterError, ErrorKind
from devdocs_mcp.models import Ecosystem, PackageQuery, SearchQuery
from devdocs_mcp.sources.crates import (
    CratesAdapter,
    parse_crate_page,
    parse_item_page,
    rustdoc_ident,
    strip_crate_prefix,
)

API = "https://crates.io/api/v1"

SERDE_CRATE = {
    "crate": {
        "name": "serde",
        "description": "A generic serialization/deserialization framework",
        "max_stable_version": "1.0.200",
        "repository": "https://github.com/serde-rs/serde",
        "downloads": 100,
        "keywords": ["serde", "serialization"],
    },
    "versions": [
        {
            "num": "1.0.200",
            "license": "MIT OR Apache-2.0",
            "features": {"derive": ["serde_derive"], "std": []},
        },
        {"num": "1.0.100", "license": "MIT OR Apache-2.0"},
    ],
}

CRATE_PAGE = """
<html><body>
<nav class="sidebar">sidebar</nav>
<section id="main-content">
  <h1>Crate <a href="#">serde</a></h1>
  <details class="toggle top-doc" open>
    <summary>Expand description</summary>
    <div class="docblock">
      <p>Serde is a framework for <em>ser</em>ializing data structures.</p>
      <pre class="language-rust"><code>let x = serde_json::to_string(&amp;v)?;</code></pre>
    </div>
  </details>
  <h2 id="modules" class="section-header">Modules<a href="#modules" class="anchor">§</a></h2>
  <ul class="item-table">
    <li><div class="item-name"><a class="mod" href="de/index.html">de</a></div>
        <div class="desc docblock-short">Generic data structure deserialization framework.</div></li>
    <li><div class="item-name"><a class="mod" href="ser/index.html">ser</a></div>
        <div class="desc docblock-short">Generic data structure serialization framework.</div></li>
  </ul>
  <h2 id="traits" class="section-header">Traits<a href="#traits" class="anchor">§</a></h2>
  <dl class="item-table">
    <dt><a class="trait" href="trait.Serialize.html">Serialize</a></dt>
    <dd>A <strong>data structure</strong> that can be serialized.</dd>
  </dl>
</section>
</body></html>
"""

TRAIT_PAGE = """
<section id="main-content">
  <h1>Trait <a href="index.html">serde</a>::<a href="de/index.html">de</a>::<a>Deserialize</a></h1>
  <pre class="rust item-decl"><code>pub trait Deserialize&lt;'de&gt;: Sized { }</code></pre>
  <details class="toggle top-doc" open><summary>Expand</summary>
  <div class="docblock"><p>A data structure that can be deserialized.</p></div></details>
  <h2 id="required-methods" class="section-header">Required Methods</h2>
</section>
"""

ENUM_PAGE = """
<section id="main-content">
  <h1>Enum <a>serde_json</a>::<a>Value</a></h1>
  <details class="toggle method-toggle" open>
    <summary><section id="method.as_str" class="method">
      <h4 class="code-header">pub fn as_str(&amp;self) -&gt; Option&lt;&amp;str&gt;</h4>
    </section></summary>
    <div class="docblock"><p>If the Value is a String, returns the associated str.</p></div>
  </details>
  <details class="toggle method-toggle" open>
    <summary><section id="method.is_null" class="method">
      <h4 class="code-header">pub fn is_null(&amp;self) -&gt; bool</h4>
    </section></summary>
    <div class="docblock"><p>Returns true if the Value is a Null.</p></div>
  </details>
</section>
"""


@pytest.fixture
def adapter():
    return CratesAdapter()


def _lookup(name, version=None, item_path=None) -> PackageQuery:
    return PackageQuery(
        ecosystem=Ecosystem.RUST,
        package_name=name,
        version=version,
        item_path=item_path,
    )


class TestHelpers:
    def test_rustdoc_ident(self):
        assert rustdoc_ident("tokio-util") == "tokio_util"

    def test_strip_crate_prefix(self):
        assert strip_crate_prefix("serde::de::Deserialize", "serde") == "de::Deserialize"
        assert strip_crate_prefix("tokio_util::codec", "tokio-util") == "codec"
        assert strip_crate_prefix("crate::Value", "serde_json") == "Value"
        assert strip_crate_prefix("Value", "serde_json") == "Value"


class TestParseCratePage:
    def test_overview_and_item_tables(self):
        body, sections = parse_crate_page(CRATE_PAGE, "https://docs.rs/serde/1.0.200/serde/")
        assert "Serde is a framework for *ser*ializing data structures." in body
        assert "```rust\nlet x = serde_json::to_string(&v)?;\n```" in body
        assert "### Modules" in body
        assert "- `de`: Generic data structure deserialization framework." in body
        assert "### Traits" in body
        assert "- `Serialize`: A data structure that can be serialized." in body
        assert "sidebar" not in body
        assert [s.anchor for s in sections] == ["#modules", "#traits"]
        assert sections[0].name == "Modules"


class TestParseItemPage:
    def test_whole_page(self):
        url = "https://docs.rs/serde/latest/serde/de/trait.Deserialize.html"
        title, body, sections = parse_item_page(TRAIT_PAGE, url)
        assert "Deserialize" in title
        assert "A data structure that can be deserialized." in body
        assert "pub trait Deserialize<'de>: Sized { }" in body

    def test_member_anchor(self):
        url = "https://docs.rs/serde_json/latest/serde_json/enum.Value.html"
        title, body, _ = parse_item_page(ENUM_PAGE, url, "method.as_str")
        assert title == "pub fn as_str(&self) -> Option<&str>"
        assert "If the Value is a String" in body
        assert "Returns true if the Value is a Null" not in body

    def test_missing_anchor(self):
        assert parse_item_page(ENUM_PAGE, "https://x", "method.nope") is None


class TestLookup:
    @pytest.mark.asyncio
    async def test_lookup_latest(self, adapter, upstream):
        upstream.add(f"{API}/crates/serde", json=SERDE_CRATE)
        upstream.add("https://docs.rs/serde/1.0.200/serde/", text=CRATE_PAGE)

        result = await adapter.lookup(_lookup("serde"))

        assert result.title == "serde 1.0.200"
        assert result.version == "1.0.200"
        assert result.url == "https://docs.rs/serde/1.0.200/serde/"
        assert result.source is Ecosystem.RUST
        assert result.body.startswith("# serde 1.0.200")
        assert "- License: MIT OR Apache-2.0" in result.body
        assert "## Features" in result.body
        assert "- `derive`: serde_derive" in result.body
        assert "- `std`: (no dependencies)" in result.body
        assert "## Documentation" in result.body
        assert "- `ser`: Generic data structure serialization framework." in result.body
        assert "#modules" in [s.anchor for s in result.sections]

    @pytest.mark.asyncio
    async def test_lookup_specific_version(self, adapter, upstream):
        upstream.add(f"{API}/crates/serde", json=SERDE_CRATE)
        upstream.add("https://docs.rs/serde/1.0.100/serde/", text=CRATE_PAGE)

        result = await adapter.lookup(_lookup("serde", version="=1.0.100"))
        assert result.version == "1.0.100"

    @pytest.mark.asyncio
    async def test_unknown_version_is_not_found(self, adapter, upstream):
        upstream.add(f"{API}/crates/serde", json=SERDE_CRATE)

        with pytest.raises(AdapterError) as exc_info:
            await adapter.lookup(_lookup("serde", version="9.9.9"))
        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert not any("docs.rs" in url for url, _ in upstream.calls)

    @pytest.mark.asyncio
    async def test_unknown_crate_is_not_found(self, adapter, upstream):
        with pytest.raises(AdapterError) as exc_info:
            await adapter.lookup(_lookup("this-crate-does-not-exist-xyz"))
        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert exc_info.value.upstream_status == 404

    @pytest.mark.asyncio
    async def test_missing_docs_page_tolerated(self, adapter, upstream):
        upstream.add(f"{API}/crates/serde", json=SERDE_CRATE)

        result = await adapter.lookup(_lookup("serde"))
        assert "Documentation is not available on docs.rs" in result.body
        assert result.sections == []

    @pytest.mark.asyncio
    async def test_docs_rs_outage_propagates(self, adapter, upstream):
        upstream.add(f"{API}/crates/serde", json=SERDE_CRATE)
        upstream.add("https://docs.rs/serde/1.0.200/serde/", status=502)

        with pytest.raises(AdapterError) as exc_info:
            await adapter.lookup(_lookup("serde"))
        assert exc_info.value.kind is ErrorKind.UPSTREAM_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_response_without_crate_record(self, adapter, upstream):
        upstream.add(f"{API}/crates/serde", json={"errors": []})

        with pytest.raises(AdapterError) as exc_info:
            await adapter.lookup(_lookup("serde"))
        assert exc_info.value.kind is ErrorKind.PARSE_FAILURE


class TestSearch:
    @pytest.mark.asyncio
    async def test_search(self, adapter, upstream):
        upstream.add(
            f"{API}/crates",
            json={
                "crates": [
                    {"name": "serde", "description": " Serialization ", "max_version": "1.0.200"},
                    {"name": "serde_json", "description": "JSON", "newest_version": "1.0.1"},
                    {"description": "no name"},
                ],
                "meta": {"total": 250},
            },
        )

        page = await adapter.search(
            SearchQuery(ecosystem=Ecosystem.RUST, term="serde", limit=10, page=2)
        )

        assert upstream.params(f"{API}/crates") == {"q": "serde", "per_page": 10, "page": 2}
        assert [h.name for h in page.items] == ["serde", "serde_json"]
        assert page.items[0].description == "Serialization"
        assert page.items[0].url == "https://crates.io/crates/serde"
        assert page.items[0].score > page.items[1].score
        assert page.items[1].version == "1.0.1"
        assert page.total_estimated == 250
        assert page.truncated is True
        assert page.page == 2

    @pytest.mark.asyncio
    async def test_search_unexpected_shape(self, adapter, upstream):
        upstream.add(f"{API}/crates", json={"oops": True})

        with pytest.raises(AdapterError) as exc_info:
            await adapter.search(SearchQuery(ecosystem=Ecosystem.RUST, term="x"))
        assert exc_info.value.kind is ErrorKind.PARSE_FAILURE


class TestLookupItem:
    @pytest.mark.asyncio
    async def test_item_by_path(self, adapter, upstream):
        base = "https://docs.rs/serde/latest/serde/de"
        upstream.add(f"{base}/trait.Deserialize.html", text=TRAIT_PAGE)

        result = await adapter.lookup_item(
            _lookup("serde", item_path="serde::de::Deserialize")
        )

        assert result.url == f"{base}/trait.Deserialize.html"
        assert "Deserialize" in result.title
        assert "A data structure that can be deserialized." in result.body
        assert result.version is None
        assert upstream.count(f"{base}/struct.Deserialize.html") == 1
        assert upstream.count(f"{base}/enum.Deserialize.html") == 1
        assert upstream.count(f"{base}/fn.Deserialize.html") == 0

    @pytest.mark.asyncio
    async def test_member_on_parent_type(self, adapter, upstream):
        base = "https://docs.rs/serde_json/1.0.1/serde_json"
        upstream.add(f"{base}/enum.Value.html", text=ENUM_PAGE)

        result = await adapter.lookup_item(
            _lookup("serde_json", version="1.0.1", item_path="Value::as_str")
        )

        assert result.url == f"{base}/enum.Value.html#method.as_str"
        assert result.title == "pub fn as_str(&self) -> Option<&str>"
        assert result.version == "1.0.1"
        assert upstream.count(f"{base}/enum.Value.html") == 1
        assert upstream.count(f"{base}/struct.Value.html") == 1

    @pytest.mark.asyncio
    async def test_version_prefix_stripped(self, adapter, upstream):
        base = "https://docs.rs/serde_json/1.0.1/serde_json"
        upstream.add(f"{base}/enum.Value.html", text=ENUM_PAGE)

        result = await adapter.lookup_item(
            _lookup("serde_json", version="v1.0.1", item_path="Value")
        )

        assert result.url == f"{base}/enum.Value.html"
        assert result.version == "1.0.1"
        assert not any("/v1.0.1/" in url for url, _ in upstream.calls)

    @pytest.mark.asyncio
    async def test_module_index(self, adapter, upstream):
        base = "https://docs.rs/serde/latest/serde"
        upstream.add(
            f"{base}/de/index.html",
            text='<section id="main-content"><h1>Module de</h1><p>Deserialization.</p></section>',
        )

        result = await adapter.lookup_item(_lookup("serde", item_path="de"))
        assert result.url == f"{base}/de/index.html"
        assert "Deserialization." in result.body

    @pytest.mark.asyncio
    async def test_unresolvable_item(self, adapter, upstream):
        with pytest.raises(AdapterError) as exc_info:
            await adapter.lookup_item(_lookup("serde", item_path="Nope::missing"))
        assert exc_info.value.kind is ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_empty_item_path(self, adapter, upstream):
        with pytest.raises(AdapterError) as exc_info:
            await adapter.lookup_item(_lookup("serde", item_path="serde::"))
        assert exc_info.value.kind is ErrorKind.INVALID_INPUT
        assert upstream.calls == []
