"""Tests for the page_store module."""

import json
import os

import pytest

import page_store
from page_store import (
    build_toc,
    delete_book_dir,
    delete_custom_cover,
    extract_body,
    find_cover,
    media_path,
    read_all_pages,
    read_manifest,
    read_page,
    restore_all_translations,
    restore_original,
    save_custom_cover,
    save_edit,
    save_translation,
    translation_status,
    write_metadata,
    write_pages,
)


def page(body, head="<head><meta charset=\"UTF-8\"><title>P</title></head>"):
    return f"<!DOCTYPE html>\n<html>\n{head}\n<body>\n{body}\n</body>\n</html>"


@pytest.fixture
def book_dir(tmp_path):
    path = str(tmp_path / "book")
    write_pages(path, [
        page("<h1>Chapter 1</h1><p>alpha</p>"),
        page("<h2>Section <em>1.1</em></h2><h3>Detail</h3><p>beta</p>"),
        page("<p>no headings</p>"),
    ], toc_html='<nav id="TOC"></nav>')
    return path


class TestPages:
    """Writing and reading page files."""

    def test_manifest(self, book_dir):
        with open(os.path.join(book_dir, "pages.json"), encoding="utf-8") as f:
            manifest = json.load(f)
        assert manifest == {"total": 3, "pages": ["page-1.html", "page-2.html", "page-3.html"]}
        assert read_manifest(book_dir) == manifest

    def test_toc_file_written(self, book_dir):
        assert os.path.exists(os.path.join(book_dir, "toc.html"))

    def test_missing_manifest(self, tmp_path):
        assert read_manifest(str(tmp_path)) is None
        assert read_all_pages(str(tmp_path)) == ([], 0)

    def test_read_page(self, book_dir):
        assert "alpha" in read_page(book_dir, 1)
        assert read_page(book_dir, 4) is None

    def test_extract_body(self):
        assert extract_body('<html><body class="x">\n<p>hi</p>\n</body></html>') == "\n<p>hi</p>\n"
        assert extract_body("<p>fragment</p>") == "<p>fragment</p>"

    def test_read_all_pages(self, book_dir):
        pages, total = read_all_pages(book_dir)
        assert total == 3
        assert [p["pageNum"] for p in pages] == [1, 2, 3]
        assert "<head>" not in pages[0]["content"]
        assert "alpha" in pages[0]["content"]

    def test_write_metadata(self, book_dir):
        write_metadata(book_dir, {"title": "Café"})
        with open(os.path.join(book_dir, "metadata.json"), encoding="utf-8") as f:
            assert json.load(f) == {"title": "Café"}


class TestToc:
    """Table of contents derived from headings."""

    def test_build_toc(self, book_dir):
        assert build_toc(book_dir) == [
            {"page": 1, "level": 1, "title": "Chapter 1"},
            {"page": 2, "level": 2, "title": "Section 1.1"},
            {"page": 2, "level": 3, "title": "Detail"},
        ]

    def test_long_and_empty_titles_skipped(self, tmp_path):
        path = str(tmp_path / "b")
        write_pages(path, [page(f"<h1>{'x' * 200}</h1><h2> </h2><h3>ok</h3>")])
        assert build_toc(path) == [{"page": 1, "level": 3, "title": "ok"}]

    def test_no_manifest(self, tmp_path):
        assert build_toc(str(tmp_path)) == []


class TestTranslations:
    """Translation overwrite with backup and restore."""

    def test_restore_reproduces_original_bytes(self, book_dir):
        path = page_store.page_path(book_dir, 1)
        with open(path, "rb") as f:
            original = f.read()

        assert save_translation(book_dir, 1, "<p>translated</p>")
        assert save_translation(book_dir, 1, "<p>translated again</p>")
        assert "translated again" in read_page(book_dir, 1)

        assert restore_original(book_dir, 1)
        with open(path, "rb") as f:
            assert f.read() == original
        assert not os.path.exists(page_store.translation_backup_path(book_dir, 1))

    def test_translate_missing_page(self, book_dir):
        assert not save_translation(book_dir, 9, "<p>x</p>")

    def test_restore_without_backup(self, book_dir):
        assert not restore_original(book_dir, 1)

    def test_status_and_restore_all(self, book_dir):
        save_translation(book_dir, 3, "<p>c</p>")
        save_translation(book_dir, 1, "<p>a</p>")
        assert translation_status(book_dir) == [1, 3]

        assert restore_all_translations(book_dir) == 2
        assert translation_status(book_dir) == []
        assert "alpha" in read_page(book_dir, 1)


class TestEdits:
    """Body edits keep the head."""

    def test_save_edit_keeps_head(self, book_dir):
        assert save_edit(book_dir, 1, "<p>edited</p>")
        content = read_page(book_dir, 1)
        assert "<title>P</title>" in content
        assert "<p>edited</p>" in content
        assert "alpha" not in content

    def test_edit_backup_is_one_time(self, book_dir):
        save_edit(book_dir, 1, "<p>first edit</p>")
        save_edit(book_dir, 1, "<p>second edit</p>")
        with open(page_store.edit_backup_path(book_dir, 1), encoding="utf-8") as f:
            assert "alpha" in f.read()

    def test_edit_missing_page(self, book_dir):
        assert not save_edit(book_dir, 7, "<p>x</p>")


class TestMediaAndCovers:
    """Media lookup and cover selection."""

    def _media(self, book_dir, *names):
        for name in names:
            path = os.path.join(book_dir, "media", name)
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as f:
                f.write(b"img")

    def test_media_path(self, book_dir):
        self._media(book_dir, "images/pic.png")
        assert media_path(book_dir, "images/pic.png").endswith("pic.png")
        assert media_path(book_dir, "images/missing.png") is None

    def test_media_path_rejects_traversal(self, book_dir):
        assert media_path(book_dir, "../pages.json") is None

    def test_cover_named_image_preferred(self, book_dir):
        self._media(book_dir, "a.png", "sub/Cover.jpg")
        assert find_cover(book_dir).endswith("Cover.jpg")

    def test_first_image_fallback(self, book_dir):
        self._media(book_dir, "b.png", "a.gif", "notes.txt")
        assert find_cover(book_dir).endswith("a.gif")

    def test_no_media(self, book_dir):
        assert find_cover(book_dir) is None

    def test_custom_cover_wins_and_replaces(self, book_dir):
        self._media(book_dir, "cover.png")
        save_custom_cover(book_dir, b"png", ".png")
        save_custom_cover(book_dir, b"jpg", ".jpg")
        cover = find_cover(book_dir)
        assert os.path.basename(cover) == "custom-cover.jpg"
        assert not os.path.exists(os.path.join(book_dir, "custom-cover.png"))

        assert delete_custom_cover(book_dir)
        assert not delete_custom_cover(book_dir)
        assert find_cover(book_dir).endswith("cover.png")

    def test_delete_book_dir(self, book_dir):
        delete_book_dir(book_dir)
        assert not os.path.exists(book_dir)
        delete_book_dir(book_dir)
