"""HTML-to-text normalization shared by every adapter.

Turns documentation markup into readable markdown-like text:

- script/style/nav/footer and other page chrome are dropped
- headings become ``#`` markers, preserving hierarchy
- ``<pre>`` blocks become fenced code, kept verbatim
- links become inline ``[text](url)``
- redundant whitespace is collapsed

Input that is already plain text (or markdown) passes through with only
whitespace tidying, so ``normalize(normalize(x)) == normalize(x)``. Markdown
mixed with inline HTML (typical READMEs) is handled segment by segment;
fenced code is never touched.

Malformed markup never raises: the parser is lenient and rendering falls
back to plain text extraction. Only bytes that cannot be decoded raise
``UndecodableMarkupError``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from urllib.parse import urljoin

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import (
    Comment,
    Declaration,
    Doctype,
    ProcessingInstruction,
)

from devdocs_mcp.models import Section


class UndecodableMarkupError(ValueError):
    """Raised when byte input cannot be decoded as text."""


# ---------------------------------------------------------------------------
# Markup detection
# ---------------------------------------------------------------------------

_KNOWN_TAGS = (
    "a|abbr|article|aside|b|blockquote|body|br|button|caption|center|code|dd|"
    "del|details|div|dl|dt|em|figcaption|figure|font|footer|form|h[1-6]|head|"
    "header|hr|html|i|iframe|img|input|kbd|li|link|main|mark|meta|nav|"
    "noscript|ol|p|picture|pre|s|samp|script|section|small|source|span|"
    "strong|style|sub|summary|sup|svg|table|tbody|td|template|tfoot|th|thead|"
    "title|tr|tt|u|ul|var|video"
)
_HTML_TAG_RE = re.compile(
    rf"(?<!\\)<(?:/?(?:{_KNOWN_TAGS})\b[^>]*>|!--|!doctype)", re.IGNORECASE
)
_INLINE_CODE_RE = re.compile(r"``[^\n]*?``|`[^`\n]*`")
_FENCE_OPEN_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})")


def _looks_like_html(text: str) -> bool:
    return bool(_HTML_TAG_RE.search(_INLINE_CODE_RE.sub("", text)))


def _split_fences(text: str) -> list[tuple[bool, str]]:
    """Split text into (is_fenced_code, segment) pieces, order preserved."""
    pieces: list[tuple[bool, str]] = []
    buf: list[str] = []
    fence: str | None = None

    for line in text.splitlines(keepends=True):
        if fence is None:
            m = _FENCE_OPEN_RE.match(line)
            if m:
                if buf:
                    pieces.append((False, "".join(buf)))
                buf = [line]
                fence = m.group(1)
                continue
            buf.append(line)
        else:
            buf.append(line)
            stripped = line.strip()
            if (
                stripped.startswith(fence)
                and set(stripped) == {fence[0]}
                and len(stripped) >= len(fence)
            ):
                pieces.append((True, "".join(buf)))
                buf = []
                fence = None

    if buf:
        pieces.append((fence is not None, "".join(buf)))
    return pieces


# ---------------------------------------------------------------------------
# Parsing and boilerplate removal
# ---------------------------------------------------------------------------

_STRIP_TAGS = (
    "script",
    "style",
    "noscript",
    "template",
    "nav",
    "footer",
    "iframe",
    "svg",
    "form",
    "button",
    "input",
    "select",
    "textarea",
    "link",
    "meta",
    "head",
    "object",
    "embed",
    "canvas",
)
_STRIP_ROLES = frozenset({"navigation", "banner", "contentinfo", "search"})


def strip_boilerplate(root: Tag) -> Tag:
    """Remove page chrome in place and return ``root``."""
    for tag in root.find_all(_STRIP_TAGS):
        tag.decompose()
    for tag in root.find_all(True):
        if tag.decomposed or tag.attrs is None:
            continue
        if (
            tag.get("role") in _STRIP_ROLES
            or tag.get("aria-hidden") == "true"
            or tag.has_attr("hidden")
        ):
            tag.decompose()
    return root


def parse_html(markup: str | bytes, strip: bool = True) -> BeautifulSoup:
    """Parse markup leniently, optionally dropping page chrome."""
    soup = BeautifulSoup(_decode(markup), "html.parser")
    if strip:
        strip_boilerplate(soup)
    return soup


def _decode(markup: str | bytes) -> str:
    if isinstance(markup, str):
        return markup
    try:
        return markup.decode("utf-8-sig")
    except UnicodeDecodeError:
        pass
    declared = re.search(rb"""charset=["']?([A-Za-z0-9_\-]+)""", markup[:4096])
    if declared:
        try:
            return markup.decode(declared.group(1).decode("ascii"))
        except (LookupError, UnicodeDecodeError):
            pass
    raise UndecodableMarkupError(
        "markup is not decodable as UTF-8 or its declared charset"
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

_HEADINGS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}
_BLOCK_TAGS = frozenset(
    {
        "address",
        "article",
        "aside",
        "body",
        "center",
        "details",
        "div",
        "dl",
        "fieldset",
        "figcaption",
        "figure",
        "header",
        "html",
        "main",
        "p",
        "section",
        "summary",
    }
)
_SKIPPED_STRINGS = (Comment, Declaration, Doctype, ProcessingInstruction)
_PERMALINK_MARKS = frozenset({"§", "¶", "#", "🔗"})

# Internal markers; stripped from input so they cannot collide.
_INDENT = "\x00"
_CODE_MARK = "\x01"
_CODE_REF_RE = re.compile(rf"{_CODE_MARK}(\d+){_CODE_MARK}")

_WS_RE = re.compile(r"\s+")
_SPACES_RE = re.compile(r"[ \t]{2,}")
_TAG_LIKE_RE = re.compile(rf"<(?=/?(?:{_KNOWN_TAGS})\b|!--|!doctype)", re.IGNORECASE)


class _Renderer:
    """Recursive HTML -> markdown-ish text renderer for one document."""

    def __init__(self, base_url: str | None = None):
        self.base_url = base_url
        self._code_blocks: list[str] = []

    def render(self, nodes: Iterable[Tag | NavigableString]) -> str:
        text = "".join(self._render(node) for node in nodes)
        text = _finish_lines(text).replace(_INDENT, "  ")
        return _CODE_REF_RE.sub(lambda m: self._code_blocks[int(m.group(1))], text)

    # -- dispatch ---------------------------------------------------------

    def _render(self, node) -> str:
        if isinstance(node, NavigableString):
            if isinstance(node, _SKIPPED_STRINGS):
                return ""
            text = _WS_RE.sub(" ", str(node))
            return _TAG_LIKE_RE.sub(r"\\<", text)
        if not isinstance(node, Tag):
            return ""

        name = node.name
        if name in _HEADINGS:
            text = self._inline(node)
            if not text:
                return ""
            return f"\n\n{'#' * _HEADINGS[name]} {text}\n\n"
        if name == "pre":
            return self._code_block(node)
        if name in ("code", "kbd", "samp", "tt"):
            return self._inline_code(node)
        if name == "br":
            return "\n"
        if name == "hr":
            return "\n\n---\n\n"
        if name == "a":
            return self._link(node)
        if name in ("strong", "b"):
            text = self._inline(node)
            return f"**{text}**" if text else ""
        if name in ("em", "i"):
            text = self._inline(node)
            return f"*{text}*" if text else ""
        if name in ("ul", "ol"):
            return self._list(node, ordered=name == "ol")
        if name == "li":
            return "\n" + self._children(node) + "\n"
        if name == "blockquote":
            return self._blockquote(node)
        if name == "table":
            return self._table(node)
        if name in ("img", "picture", "video", "audio", "source"):
            return ""
        if name == "dt":
            text = self._inline(node)
            return f"\n\n**{text}**\n" if text else ""
        if name == "dd":
            return "\n" + self._children(node) + "\n\n"
        if name in _BLOCK_TAGS:
            return "\n\n" + self._children(node) + "\n\n"
        return self._children(node)

    def _children(self, node: Tag) -> str:
        return "".join(self._render(child) for child in node.children)

    def _inline(self, node: Tag) -> str:
        text = " ".join(self._children(node).split())
        return text.rstrip("§¶ ").strip()

    # -- elements ---------------------------------------------------------

    def _code_block(self, node: Tag) -> str:
        code = node.get_text().replace(_INDENT, "").replace(_CODE_MARK, "")
        code = code.strip("\n").rstrip()
        if not code.strip():
            return ""
        fence = "```"
        while fence in code:
            fence += "`"
        self._code_blocks.append(f"{fence}{_code_language(node)}\n{code}\n{fence}")
        ref = len(self._code_blocks) - 1
        return f"\n\n{_CODE_MARK}{ref}{_CODE_MARK}\n\n"

    def _inline_code(self, node: Tag) -> str:
        text = " ".join(node.get_text().split())
        if not text:
            return ""
        if "`" in text:
            return f"`` {text} ``"
        return f"`{text}`"

    def _link(self, node: Tag) -> str:
        text = self._inline(node)
        if not text or text in _PERMALINK_MARKS:
            return ""
        href = node.get("href")
        if not isinstance(href, str):
            return text
        href = href.strip()
        if not href or href.startswith(("#", "javascript:")):
            return text
        if self.base_url:
            href = urljoin(self.base_url, href)
        return f"[{text}]({href.replace(' ', '%20')})"

    def _list(self, node: Tag, ordered: bool) -> str:
        items: list[str] = []
        number = 0
        for child in node.children:
            if not isinstance(child, Tag):
                if str(child).strip() and not isinstance(child, _SKIPPED_STRINGS):
                    items.append(" ".join(str(child).split()))
                continue
            if child.name != "li":
                body = _finish_lines(self._render(child))
                if body:
                    items.append(_indent_block(body))
                continue
            number += 1
            body = _finish_lines(self._children(child))
            if not body:
                continue
            marker = f"{number}." if ordered else "-"
            first, *rest = body.split("\n")
            lines = [f"{marker} {first}"]
            lines.extend(_INDENT + line for line in rest if line.strip())
            items.append("\n".join(lines))
        if not items:
            return ""
        return "\n\n" + "\n".join(items) + "\n\n"

    def _blockquote(self, node: Tag) -> str:
        body = _finish_lines(self._children(node))
        if not body:
            return ""
        quoted = "\n".join(f"> {line}" if line else ">" for line in body.split("\n"))
        return f"\n\n{quoted}\n\n"

    def _table(self, node: Tag) -> str:
        rows: list[list[str]] = []
        for tr in node.find_all("tr"):
            if tr.find_parent("table") is not node:
                continue
            cells = [
                self._inline(cell).replace("|", "\\|")
                for cell in tr.find_all(["th", "td"], recursive=False)
            ]
            if any(cells):
                rows.append(cells)
        if not rows:
            return "\n\n" + self._children(node) + "\n\n"
        width = max(len(row) for row in rows)
        lines = [
            "| " + " | ".join(row + [""] * (width - len(row))) + " |" for row in rows
        ]
        lines.insert(1, "| " + " | ".join(["---"] * width) + " |")
        return "\n\n" + "\n".join(lines) + "\n\n"


def _code_language(node: Tag) -> str:
    candidates = [node]
    code = node.find("code")
    if isinstance(code, Tag):
        candidates.append(code)
    for el in candidates:
        for cls in el.get("class") or []:
            for prefix in ("language-", "lang-"):
                if cls.startswith(prefix):
                    return cls[len(prefix) :]
        lang = el.get("data-lang") or el.get("data-language")
        if isinstance(lang, str) and lang:
            return lang
    return ""


def _indent_block(text: str) -> str:
    return "\n".join(_INDENT + line for line in text.split("\n") if line.strip())


def _finish_lines(text: str) -> str:
    """Strip each line, collapse inner runs of spaces and blank lines."""
    out: list[str] = []
    blank = False
    for line in text.split("\n"):
        line = _SPACES_RE.sub(" ", line.strip(" \t"))
        if not line:
            if out and not blank:
                out.append("")
                blank = True
            continue
        out.append(line)
        blank = False
    return "\n".join(out).strip("\n")


def render(
    nodes: Tag | NavigableString | Iterable[Tag | NavigableString],
    base_url: str | None = None,
) -> str:
    """Render already-parsed nodes to normalized text."""
    if isinstance(nodes, (Tag, NavigableString)):
        nodes = [nodes]
    nodes = list(nodes)
    try:
        text = _Renderer(base_url).render(nodes)
    except RecursionError:
        # Pathologically deep nesting; settle for flat text.
        text = "\n".join(
            n.get_text("\n") if isinstance(n, Tag) else str(n) for n in nodes
        )
    return _tidy(text)


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


_MD_BLOCK_RE = re.compile(r"^(?:#{1,6} |[-*+] |\d+\. |> )", re.MULTILINE)
_PARAGRAPH_SPLIT_RE = re.compile(r"(\n[ \t]*\n)")


def _render_markup(segment: str, base_url: str | None) -> str:
    soup = parse_html(segment)
    rendered = render(soup.contents, base_url)
    return f"\n\n{rendered}\n\n" if rendered else "\n"


def normalize(markup: str | bytes, base_url: str | None = None) -> str:
    """Convert documentation markup (HTML, markdown or plain text) to text."""
    text = _decode(markup).replace(_INDENT, "").replace(_CODE_MARK, "")
    out: list[str] = []
    for is_code, segment in _split_fences(text):
        if is_code or not _looks_like_html(segment):
            out.append(segment)
        elif _MD_BLOCK_RE.search(segment):
            # Markdown carrying inline HTML blocks: render block by block.
            for block in _PARAGRAPH_SPLIT_RE.split(segment):
                if _looks_like_html(block):
                    out.append(_render_markup(block, base_url))
                else:
                    out.append(block)
        else:
            out.append(_render_markup(segment, base_url))
    return _tidy("".join(out))


def _tidy(text: str) -> str:
    """Right-strip lines and collapse blank runs outside fenced code."""
    out: list[str] = []
    after_code = False
    for is_code, segment in _split_fences(text):
        if is_code:
            out.append(segment.rstrip("\n") + "\n")
            after_code = True
            continue
        segment = "\n".join(line.rstrip() for line in segment.split("\n"))
        segment = re.sub(r"\n{3,}", "\n\n", segment)
        if after_code:
            segment = re.sub(r"\A\n+", "\n", segment)
        out.append(segment)
        after_code = False
    return "".join(out).strip("\n")


# ---------------------------------------------------------------------------
# Markdown / README helpers
# ---------------------------------------------------------------------------

# Badge/shield images
_BADGE_RE = re.compile(
    r"!\[[^\]]*\]\(https?://(?:img\.shields\.io|badge\.|badges\.|badgen\.net|"
    r"github\.com/[^)]*?/badge|[^)]*?/workflows/[^)]*?/badge\.svg|"
    r"codecov\.io|coveralls\.io|travis-ci\.)[^)]*\)",
    re.IGNORECASE,
)
_EMPTY_LINK_RE = re.compile(r"\[\s*\]\([^)]*\)")
_FRONTMATTER_RE = re.compile(r"\A---\s*\n.*?\n---\s*\n", re.DOTALL)


def clean_readme(text: str, content_type: str | None = None) -> str:
    """Normalize a package README or long description by content type.

    Markdown (and markdown with inline HTML) goes through ``normalize``;
    reStructuredText is converted to markdown first; plain text is fenced
    so its layout survives.
    """
    if not text or not text.strip():
        return ""
    ctype = (content_type or "text/markdown").lower()
    if "rst" in ctype or "restructuredtext" in ctype:
        text = rst_to_markdown(text)
    elif "text/plain" in ctype:
        body = text.strip("\n")
        fence = "```"
        while fence in body:
            fence += "`"
        return f"{fence}\n{body}\n{fence}"
    text = _FRONTMATTER_RE.sub("", text)
    text = _BADGE_RE.sub("", text)
    text = _EMPTY_LINK_RE.sub("", text)
    return normalize(text)


_MD_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_MD_LINK_RE = re.compile(r"\[([^\]]*)\]\([^)]*\)")


def slugify(title: str) -> str:
    """GitHub-style heading anchor."""
    title = _MD_LINK_RE.sub(r"\1", title).replace("`", "").replace("*", "")
    slug = re.sub(r"[^\w\- ]", "", title.strip().lower())
    return slug.replace(" ", "-")


def markdown_sections(text: str, levels: tuple[int, ...] = (2, 3)) -> list[Section]:
    """Collect headings of the given levels from normalized text."""
    sections: list[Section] = []
    for is_code, segment in _split_fences(text):
        if is_code:
            continue
        for line in segment.splitlines():
            m = _MD_HEADING_RE.match(line)
            if m and len(m.group(1)) in levels:
                name = _MD_LINK_RE.sub(r"\1", m.group(2)).strip()
                sections.append(Section(name=name, anchor=f"#{slugify(name)}"))
    return sections


def soup_sections(root: Tag, tags: tuple[str, ...] = ("h2", "h3")) -> list[Section]:
    """Collect headings that carry an ``id`` (directly or on a child anchor)."""
    sections: list[Section] = []
    seen: set[str] = set()
    for heading in root.find_all(list(tags)):
        anchor = heading.get("id")
        if not anchor:
            inner = heading.find(id=True)
            anchor = inner.get("id") if isinstance(inner, Tag) else None
        if not isinstance(anchor, str) or anchor in seen:
            continue
        name = " ".join(heading.get_text(" ").split()).strip("§¶ ")
        name = name.strip()
        if name:
            seen.add(anchor)
            sections.append(Section(name=name, anchor=f"#{anchor}"))
    return sections


def anchor_section(root: Tag, anchor: str) -> list[Tag] | None:
    """Nodes making up the section that starts at element ``id=anchor``.

    A heading yields itself plus following siblings up to the next heading
    of the same or a higher level; any other element yields itself.
    """
    anchor = anchor.lstrip("#")
    if not anchor:
        return None
    target = root.find(id=anchor) or root.find("a", attrs={"name": anchor})
    if not isinstance(target, Tag):
        return None
    if target.name not in _HEADINGS:
        heading = target.find_parent(list(_HEADINGS))
        if heading is not None:
            target = heading
    if target.name not in _HEADINGS:
        return [target]

    level = _HEADINGS[target.name]
    nodes: list[Tag] = [target]
    for sibling in target.next_siblings:
        if isinstance(sibling, Tag):
            if sibling.name in _HEADINGS and _HEADINGS[sibling.name] <= level:
                break
            nodes.append(sibling)
    return nodes


# ---------------------------------------------------------------------------
# reStructuredText -> markdown (PyPI long descriptions)
# ---------------------------------------------------------------------------

_RST_ADORNMENT = set("=-~^\"'+`:._;,#*!?/\\|")
_RST_LEVELS = {"=": "#", "-": "##", "~": "###"}
_RST_DIRECTIVE_RE = re.compile(r"^\.\.\s+(\w[\w-]*)::(.*)$")
_RST_ROLE_RE = re.compile(r":(\w[\w:-]*):`([^`]*)`")
_RST_LINK_RE = re.compile(r"`([^`<]+?)\s*<([^`>]+)>`__?")
_RST_CODE_DIRECTIVES = frozenset({"code-block", "code", "sourcecode", "highlight"})
_RST_DROP_DIRECTIVES = frozenset(
    {
        "image",
        "figure",
        "raw",
        "include",
        "literalinclude",
        "toctree",
        "contents",
        "meta",
        "moduleauthor",
        "sectionauthor",
        "|",
    }
)
_RST_ADMONITIONS = frozenset(
    {"note", "warning", "tip", "important", "seealso", "caution", "danger", "hint"}
)


def _is_adornment(line: str) -> bool:
    s = line.strip()
    return len(s) >= 2 and len(set(s)) == 1 and s[0] in _RST_ADORNMENT


def _indented_block(lines: list[str], start: int) -> tuple[list[str], int]:
    """Collect the indented body starting at ``start`` (blank lines allowed)."""
    body: list[str] = []
    i = start
    while i < len(lines) and (not lines[i].strip() or lines[i][:1] in (" ", "\t")):
        body.append(lines[i])
        i += 1
    while body and not body[-1].strip():
        body.pop()
        i -= 1
    return body, i


def _dedent(body: list[str]) -> list[str]:
    widths = [len(line) - len(line.lstrip()) for line in body if line.strip()]
    cut = min(widths) if widths else 0
    return [line[cut:] for line in body]


def _rst_inline(line: str) -> str:
    line = _RST_LINK_RE.sub(r"[\1](\2)", line)
    line = _RST_ROLE_RE.sub(r"`\2`", line)
    return line.replace("``", "`")


def rst_to_markdown(content: str) -> str:
    """Rough reStructuredText to markdown conversion.

    Covers underlined titles, code-block directives and ``::`` literal
    blocks, admonitions, roles, hyperlinks and inline literals. Other
    directives keep their body and lose the directive line.
    """
    if not content:
        return ""

    lines = content.replace("\t", "    ").split("\n")
    out: list[str] = []
    i = 0
    while i < len(lines):
        line = lines[i]
        stripped = line.strip()

        # Overlined title: ===== / Title / =====
        if (
            _is_adornment(line)
            and i + 2 < len(lines)
            and lines[i + 1].strip()
            and _is_adornment(lines[i + 2])
        ):
            out.append(f"# {lines[i + 1].strip()}")
            i += 3
            continue

        # Underlined title
        if (
            stripped
            and not _is_adornment(line)
            and i + 1 < len(lines)
            and _is_adornment(lines[i + 1])
            and len(lines[i + 1].strip()) >= len(stripped)
        ):
            level = _RST_LEVELS.get(lines[i + 1].strip()[0], "####")
            out.append(f"{level} {_rst_inline(stripped)}")
            i += 2
            continue

        directive = _RST_DIRECTIVE_RE.match(stripped)
        if directive:
            name = directive.group(1).lower()
            args = directive.group(2).strip()
            body, i = _indented_block(lines, i + 1)
            body = [b for b in body if not b.strip().startswith(":")] if body else body
            body = _dedent(body)
            if name in _RST_CODE_DIRECTIVES:
                while body and not body[0].strip():
                    body.pop(0)
                out.extend([f"```{args}", *body, "```"])
            elif name in _RST_ADMONITIONS:
                out.append(f"> **{name.title()}:** {_rst_inline(args)}".rstrip())
                out.extend(f"> {_rst_inline(b)}".rstrip() for b in body)
            elif name not in _RST_DROP_DIRECTIVES:
                out.extend(_rst_inline(b) for b in body)
            continue

        # Comments and substitution definitions
        if stripped.startswith(".."):
            _, i = _indented_block(lines, i + 1)
            continue

        # Literal block introduced by a trailing ::
        if stripped.endswith("::"):
            lead = line.rstrip()[:-2].rstrip()
            if lead:
                out.append(_rst_inline(lead) + ":")
            body, i = _indented_block(lines, i + 1)
            body = _dedent(body)
            while body and not body[0].strip():
                body.pop(0)
            if body:
                out.extend(["", "```", *body, "```", ""])
            continue

        out.append(_rst_inline(line))
        i += 1

    return "\n".join(out)
