"""
Splits one normalized HTML document into an ordered list of page sections
and renders each section as a standalone HTML page.
"""

import os
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString
from jinja2 import Environment, FileSystemLoader, select_autoescape

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")

_env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html"]),
)

# Captured web pages shorter than this (text only) are not worth a page
MIN_SECTION_CHARS = 20


@dataclass
class SplitDocument:
    """Result of splitting a converted document."""
    head: str                 # inner HTML of <head>, reused on every page
    toc: str                  # the <nav id="TOC"> block, empty if none
    sections: List[str] = field(default_factory=list)


# --- DOM helpers ---

def _is_level1(tag: Tag) -> bool:
    return tag.name in ("section", "div") and "level1" in (tag.get("class") or [])


def _is_heading(*names: str) -> Callable[[Tag], bool]:
    return lambda tag: tag.name in names


def _shallow_copy(tag: Tag, soup: BeautifulSoup) -> Tag:
    """Same element and attributes, no children."""
    return soup.new_tag(tag.name, attrs=dict(tag.attrs))


def _partition(nodes, is_boundary, soup: BeautifulSoup) -> List[Tuple[bool, list]]:
    """
    Walks sibling nodes and starts a new part at every boundary element.
    Containers holding boundaries deeper down are split recursively and each
    piece is re-wrapped in a copy of the container, so pages stay well formed.
    Returns (starts_with_boundary, nodes) pairs in document order.
    """
    parts = []
    current = []
    started = False

    for node in nodes:
        if isinstance(node, Tag) and is_boundary(node):
            if current:
                parts.append((started, current))
            current, started = [node], True
        elif isinstance(node, Tag) and node.find(is_boundary) is not None:
            for inner_started, inner in _partition(list(node.contents), is_boundary, soup):
                wrapper = _shallow_copy(node, soup)
                for child in inner:
                    wrapper.append(child)
                if inner_started:
                    if current:
                        parts.append((started, current))
                    current, started = [wrapper], True
                else:
                    current.append(wrapper)
        else:
            current.append(node)

    if current:
        parts.append((started, current))
    return parts


def _nodes_text(nodes) -> str:
    # comments, doctypes and CDATA are markup, not page text
    return "".join(
        n.get_text() if isinstance(n, Tag) else str(n)
        for n in nodes
        if not isinstance(n, PreformattedString)
    )


def _has_content(nodes) -> bool:
    """True if the nodes carry text or an image."""
    if _nodes_text(nodes).strip():
        return True
    return any(isinstance(n, Tag) and (n.name == "img" or n.find("img")) for n in nodes)


def _serialize(nodes) -> str:
    return "".join(n.output_ready() if isinstance(n, NavigableString) else str(n) for n in nodes)


def _split_fragment(html: str, is_boundary) -> List[str]:
    soup = BeautifulSoup(html, "html.parser")
    if soup.find(is_boundary) is None:
        return []
    parts = _partition(list(soup.contents), is_boundary, soup)
    return [_serialize(nodes) for started, nodes in parts if started or _has_content(nodes)]


# --- Splitting ---

def split_document(html: str) -> SplitDocument:
    """
    Split a converted (pandoc) document into page sections.
    Tries level1 section blocks, then <h1>, then <h2>; falls back to the
    whole body as a single page.
    """
    soup = BeautifulSoup(html, "html.parser")

    head = soup.head.decode_contents() if soup.head else ""
    body = soup.body or soup
    if body is soup and soup.head:
        soup.head.extract()

    toc = ""
    nav = body.find("nav", id="TOC")
    if nav is not None:
        toc = str(nav)
        nav.extract()

    body_html = body.decode_contents()

    for is_boundary in (_is_level1, _is_heading("h1"), _is_heading("h2")):
        sections = _split_fragment(body_html, is_boundary)
        if len(sections) > 1:
            return SplitDocument(head=head, toc=toc, sections=sections)
        if len(sections) == 1:
            break

    return SplitDocument(head=head, toc=toc, sections=[body_html])


def add_heading_prefixes(soup: BeautifulSoup):
    """Prefix h1/h2/h3 text with markdown-style '#', '##', '###' markers."""
    for level in (1, 2, 3):
        prefix = "#" * level + " "
        for heading in soup.find_all(f"h{level}"):
            if not heading.get_text().startswith(prefix):
                heading.insert(0, NavigableString(prefix))


def split_web_content(html: str, min_chars: int = MIN_SECTION_CHARS) -> List[str]:
    """
    Split captured web content at <h1>/<h2> headings.
    Sections whose text is not longer than min_chars are dropped; if at most
    one section survives the whole content is returned as one page.
    """
    soup = BeautifulSoup(html, "html.parser")
    add_heading_prefixes(soup)
    full = str(soup)

    is_boundary = _is_heading("h1", "h2")
    if soup.find(is_boundary) is None:
        return [full]

    sections = []
    for _started, nodes in _partition(list(soup.contents), is_boundary, soup):
        if len(_nodes_text(nodes).strip()) > min_chars:
            sections.append(_serialize(nodes))

    if len(sections) <= 1:
        return [full]
    return sections


# --- Rendering ---

def render_page(body: str, title: Optional[str] = None, head_extra: str = "",
                highlight: bool = False, banner_title: Optional[str] = None,
                site_name: Optional[str] = None, source_url: Optional[str] = None,
                page_label: Optional[str] = None) -> str:
    """Wrap one section in a full HTML document with the shared reading styles."""
    template = _env.get_template("page.html")
    return template.render(
        body=body,
        title=title,
        head_extra=head_extra,
        highlight=highlight,
        banner_title=banner_title,
        site_name=site_name,
        source_url=source_url,
        page_label=page_label,
    )


def render_document_pages(split: SplitDocument) -> List[str]:
    """Pages for a pandoc-converted document (EPUB, Markdown)."""
    return [render_page(section, head_extra=split.head) for section in split.sections]


def render_web_pages(sections: List[str], title: str, source_url: str,
                     site_name: Optional[str] = None) -> List[str]:
    """
    Pages for a captured web article. The first page carries the article
    title, the last one links back to the original URL.
    """
    pages = []
    total = len(sections)
    for i, section in enumerate(sections):
        is_first = i == 0
        pages.append(render_page(
            section,
            title=title,
            highlight=True,
            banner_title=title if is_first else None,
            site_name=site_name if is_first else None,
            source_url=source_url if i == total - 1 else None,
        ))
    return pages
