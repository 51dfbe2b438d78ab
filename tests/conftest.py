"""Shared fixtures: an isolated library root and an app wired to it."""

import os
import sys

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings
from library_db import LibraryStore


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a temporary directory."""
    s = Settings(root_dir=str(tmp_path))
    s.ensure_dirs()
    return s


@pytest.fixture
def store(settings):
    """A LibraryStore backed by a temporary database."""
    library = LibraryStore(settings.db_path)
    yield library
    library.close()


@pytest.fixture
def client(settings, store, monkeypatch):
    """TestClient for the app, pointed at the temporary library."""
    from fastapi.testclient import TestClient

    import server
    from ai_settings import AIClient

    monkeypatch.setattr(server, "settings", settings)
    monkeypatch.setattr(server, "store", store)
    monkeypatch.setattr(server, "ai_client", AIClient(store))
    monkeypatch.setattr(server, "AUTO_TAG_DELAY_SECONDS", 0)
    return TestClient(server.app)


@pytest.fixture
def make_book(settings, store):
    """Create a book row plus page files; returns the book id."""
    from page_store import write_pages
    from splitter import render_page

    def _make(bodies=("<h1>One</h1><p>First page</p>", "<h2>Two</h2><p>Second page</p>"),
              title="Test Book", book_type="epub"):
        book_id = f"book-{len(store.get_all_books()) + 1}"
        pages = [render_page(body) for body in bodies]
        write_pages(settings.book_dir(book_id), pages)
        store.add_book(book_id, title, "test.epub", len(pages), book_type=book_type)
        return book_id

    return _make


@pytest.fixture
def fake_pandoc(monkeypatch):
    """Replace the pandoc subprocess with one that writes the given HTML to -o."""
    import subprocess

    import converter

    def install(body):
        calls = []

        def run(cmd, **kwargs):
            calls.append(cmd)
            output = cmd[cmd.index("-o") + 1]
            media_dir = next(a for a in cmd if a.startswith("--extract-media="))
            media_dir = media_dir[len("--extract-media="):]
            with open(output, "w", encoding="utf-8") as f:
                f.write(body.replace("{media}", media_dir))
            return subprocess.CompletedProcess(cmd, 0, "", "")

        monkeypatch.setattr(converter.subprocess, "run", run)
        return calls

    return install
