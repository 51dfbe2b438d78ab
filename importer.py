"""
Bulk import of EPUB files from a directory tree.

    python importer.py [directory]

Each EPUB is converted and split exactly like an upload. The name of the
directory holding a file becomes the book's category.
"""

import logging
import os
import sqlite3
import sys
from dataclasses import dataclass, field
from typing import List, Tuple

from config import Settings, load_settings
from converter import ConversionError, convert_epub, read_epub_metadata, title_from_filename
from library_db import Book, LibraryStore, generate_id
from page_store import delete_book_dir, write_pages
from splitter import render_document_pages, split_document

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "uncategorized"


@dataclass
class ImportResult:
    imported: List[Book] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)  # (path, error)


def find_epub_files(root: str) -> List[Tuple[str, str]]:
    """(path, category) for every .epub below root, in sorted walk order."""
    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        rel = os.path.relpath(dirpath, root)
        category = os.path.basename(dirpath) if rel != "." else DEFAULT_CATEGORY
        for name in sorted(filenames):
            if name.lower().endswith(".epub"):
                found.append((os.path.join(dirpath, name), category))
    return found


def import_epub(epub_path: str, category: str, settings: Settings, store: LibraryStore) -> Book:
    """
    Convert one EPUB into a paged book. The source file is left in place;
    on failure the partial book directory is removed.
    """
    filename = os.path.basename(epub_path)
    title = title_from_filename(filename)
    book_id = generate_id()
    book_dir = settings.book_dir(book_id)

    try:
        html = convert_epub(epub_path, book_dir, book_id, title, settings.pandoc_path)
        split = split_document(html)
        pages = render_document_pages(split)
        write_pages(book_dir, pages, toc_html=split.toc)

        language = read_epub_metadata(epub_path).language or "en"
        return store.add_book(book_id, title, filename, len(pages), book_type="epub",
                              category=category, language=language)
    except Exception:
        delete_book_dir(book_dir)
        raise


def import_directory(root: str, settings: Settings, store: LibraryStore) -> ImportResult:
    result = ImportResult()
    files = find_epub_files(root)
    logger.info("Found %d EPUB files in %s", len(files), root)

    for path, category in files:
        try:
            book = import_epub(path, category, settings, store)
        except ConversionError as e:
            logger.error("Failed to import %s: %s", path, e)
            result.failed.append((path, str(e)))
            continue
        except (OSError, ValueError, sqlite3.Error) as e:
            logger.exception("Failed to import %s", path)
            result.failed.append((path, str(e)))
            continue
        logger.info("Imported %s (%d pages, category %s)", book.title, book.total_pages, category)
        result.imported.append(book)
    return result


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    target = sys.argv[1] if len(sys.argv) > 1 else "epub"
    if not os.path.isdir(target):
        print(f"Directory not found: {target}")
        sys.exit(1)

    settings = load_settings()
    settings.ensure_dirs()
    store = LibraryStore(settings.db_path)
    try:
        result = import_directory(target, settings, store)
    finally:
        store.close()

    print("\n--- Summary ---")
    print(f"Imported: {len(result.imported)}")
    print(f"Failed: {len(result.failed)}")
    for path, error in result.failed:
        print(f"  {path}: {error}")
