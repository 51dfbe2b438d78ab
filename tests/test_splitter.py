"""Tests for the splitter module."""

from bs4 import BeautifulSoup

from splitter import (
    add_heading_prefixes,
    render_document_pages,
    render_page,
    render_web_pages,
    split_document,
    split_web_content,
)


def pandoc_document(body, head="<title>Book</title>"):
    return f"<!DOCTYPE html><html><head>{head}</head><body>{body}</body></html>"


TOC = '<nav id="TOC"><ul><li><a href="#one">One</a></li></ul></nav>'


class TestSplitDocument:
    """Splitting converted EPUB/Markdown documents."""

    def test_level1_sections(self):
        body = (
            TOC
            + '<section id="one" class="level1"><h1>One</h1><p>a</p></section>'
            + '<section id="two" class="level1"><h1>Two</h1><p>b</p></section>'
            + '<section id="three" class="level1"><h1>Three</h1><p>c</p></section>'
        )
        split = split_document(pandoc_document(body))
        assert len(split.sections) == 3
        assert "One" in split.sections[0] and "Two" not in split.sections[0]
        assert 'class="level1"' in split.sections[2]

    def test_toc_extracted(self):
        body = TOC + "<h1>One</h1><p>a</p><h1>Two</h1><p>b</p>"
        split = split_document(pandoc_document(body))
        assert split.toc.startswith('<nav id="TOC"')
        assert all("TOC" not in s for s in split.sections)

    def test_head_kept(self):
        split = split_document(pandoc_document("<p>x</p>", head='<meta charset="utf-8"/><title>T</title>'))
        assert "<title>T</title>" in split.head

    def test_h1_headings(self):
        body = "<h1>A</h1><p>1</p><h1>B</h1><p>2</p><h1>C</h1><p>3</p>"
        sections = split_document(pandoc_document(body)).sections
        assert len(sections) == 3
        assert sections[1].startswith("<h1>B</h1>")

    def test_leading_content_becomes_its_own_page(self):
        body = "<p>Preface text</p><h1>A</h1><p>1</p><h1>B</h1><p>2</p>"
        sections = split_document(pandoc_document(body)).sections
        assert len(sections) == 3
        assert "Preface" in sections[0]

    def test_blank_leading_whitespace_dropped(self):
        body = "\n  \n<h1>A</h1><p>1</p><h1>B</h1><p>2</p>"
        assert len(split_document(pandoc_document(body)).sections) == 2

    def test_h2_fallback(self):
        body = "<h2>A</h2><p>1</p><h2>B</h2><p>2</p>"
        sections = split_document(pandoc_document(body)).sections
        assert len(sections) == 2

    def test_nested_headings_rewrapped(self):
        body = '<div class="chapter"><h1>A</h1><p>1</p><h1>B</h1><p>2</p></div>'
        sections = split_document(pandoc_document(body)).sections
        assert len(sections) == 2
        for section in sections:
            soup = BeautifulSoup(section, "html.parser")
            assert soup.find("div", class_="chapter") is not None

    def test_no_markers_single_page(self):
        body = "<p>Just a paragraph.</p><p>And another.</p>"
        sections = split_document(pandoc_document(body)).sections
        assert len(sections) == 1
        assert "And another." in sections[0]

    def test_single_h1_single_page(self):
        body = "<h1>Only</h1><p>Body</p>"
        sections = split_document(pandoc_document(body)).sections
        assert len(sections) == 1
        assert "Body" in sections[0]

    def test_leading_comment_is_not_a_page(self):
        """A comment before the first heading stays markup and adds no page."""
        body = "<!-- internal note --><h1>A</h1><p>1</p><h1>B</h1><p>2</p>"
        sections = split_document(pandoc_document(body)).sections
        assert sections == ["<h1>A</h1><p>1</p>", "<h1>B</h1><p>2</p>"]

    def test_comment_inside_section_kept_as_comment(self):
        body = "<h1>A</h1><!-- keep me --><p>1</p><h1>B</h1><p>2</p>"
        sections = split_document(pandoc_document(body)).sections
        assert "<!-- keep me -->" in sections[0]

    def test_head_comment_keeps_delimiters(self):
        head = '<title>T</title><!--[if lt IE 9]><script src="//cdn.example/shiv.js"></script><![endif]-->'
        split = split_document(pandoc_document("<p>x</p>", head=head))
        assert split.head == head

    def test_escaped_text_stays_escaped(self):
        body = "a &lt;b&gt; c<h1>A</h1><p>1</p><h1>B</h1><p>2</p>"
        sections = split_document(pandoc_document(body)).sections
        assert sections[0] == "a &lt;b&gt; c"

    def test_document_without_body(self):
        sections = split_document("<h1>A</h1><p>1</p><h1>B</h1><p>2</p>").sections
        assert len(sections) == 2


class TestWebSplit:
    """Splitting captured web content."""

    def test_heading_prefixes(self):
        soup = BeautifulSoup("<h1>A</h1><h2>B</h2><h3>C</h3><h4>D</h4>", "html.parser")
        add_heading_prefixes(soup)
        assert [h.get_text() for h in soup.find_all(["h1", "h2", "h3", "h4"])] == [
            "# A", "## B", "### C", "D",
        ]

    def test_prefix_not_doubled(self):
        soup = BeautifulSoup("<h2>## Already</h2>", "html.parser")
        add_heading_prefixes(soup)
        assert soup.h2.get_text() == "## Already"

    def test_split_at_h1_h2(self):
        long_text = "x" * 40
        html = f"<h2>First</h2><p>{long_text}</p><h2>Second</h2><p>{long_text}</p>"
        sections = split_web_content(html)
        assert len(sections) == 2
        assert "## First" in sections[0]
        assert "## Second" in sections[1]

    def test_short_sections_dropped(self):
        long_text = "y" * 40
        html = (
            f"<h2>Keep</h2><p>{long_text}</p>"
            "<h2>Tiny</h2>"
            f"<h2>Also</h2><p>{long_text}</p>"
        )
        sections = split_web_content(html)
        assert len(sections) == 2
        assert all("Tiny" not in s for s in sections)

    def test_one_surviving_section_returns_whole(self):
        html = "<h2>A</h2><p>short</p><h2>B</h2><p>" + "z" * 40 + "</p>"
        sections = split_web_content(html)
        assert len(sections) == 1
        assert "## A" in sections[0] and "## B" in sections[0]

    def test_no_headings(self):
        sections = split_web_content("<p>plain article</p>")
        assert sections == ["<p>plain article</p>"]


class TestRendering:
    """Page documents."""

    def test_render_page_is_standalone(self):
        html = render_page("<p>Body</p>", title="T")
        assert html.startswith("<!DOCTYPE html>")
        assert "<title>T</title>" in html
        assert "<p>Body</p>" in html
        assert 'charset="UTF-8"' in html

    def test_title_escaped(self):
        html = render_page("<p>x</p>", title="A <b> & C")
        assert "A &lt;b&gt; &amp; C" in html

    def test_document_pages_reuse_head(self):
        split = split_document(pandoc_document(
            "<h1>A</h1><p>1</p><h1>B</h1><p>2</p>", head="<title>Shared</title>"
        ))
        pages = render_document_pages(split)
        assert len(pages) == 2
        assert all("<title>Shared</title>" in p for p in pages)

    def test_web_pages_banner_and_source(self):
        pages = render_web_pages(["<p>one</p>", "<p>two</p>"], "Article", "https://ex.test/a", "Ex Site")
        assert "<h1>Article</h1>" in pages[0]
        assert "Ex Site" in pages[0]
        assert "<h1>Article</h1>" not in pages[1]
        assert "https://ex.test/a" in pages[1]
        assert 'href="https://ex.test/a"' not in pages[0]
        assert "hljs" in pages[0]
