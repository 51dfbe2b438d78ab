"""
On-disk layout of a converted book:

    converted/{book_id}/
        pages/page-N.html          one standalone HTML document per page
        pages/page-N.original.html backup taken before the first translation
        pages/page-N.edit-backup.html backup taken before the first edit
        pages.json                 {"total": n, "pages": ["page-1.html", ...]}
        toc.html                   pandoc navigation block (EPUB/Markdown)
        metadata.json              capture metadata (websites)
        media/                     images
        document.pdf               PDF books only
        custom-cover.<ext>         user supplied cover
"""

import json
import logging
import os
import re
import shutil
from typing import Dict, List, Optional, Tuple

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

PAGES_DIR = "pages"
MANIFEST = "pages.json"
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp")

BACKUP_RE = re.compile(r"^page-(\d+)\.original\.html$")
BODY_RE = re.compile(r"<body[^>]*>([\s\S]*?)</body>", re.IGNORECASE)
HEAD_RE = re.compile(r"<head[^>]*>[\s\S]*?</head>", re.IGNORECASE)


def page_filename(page_num: int) -> str:
    return f"page-{page_num}.html"


def page_path(book_dir: str, page_num: int) -> str:
    return os.path.join(book_dir, PAGES_DIR, page_filename(page_num))


def translation_backup_path(book_dir: str, page_num: int) -> str:
    return os.path.join(book_dir, PAGES_DIR, f"page-{page_num}.original.html")


def edit_backup_path(book_dir: str, page_num: int) -> str:
    return os.path.join(book_dir, PAGES_DIR, f"page-{page_num}.edit-backup.html")


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _write_text(path: str, content: str):
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)


# --- Pages & manifest ---

def write_pages(book_dir: str, documents: List[str], toc_html: Optional[str] = None) -> List[str]:
    """Write numbered page files and the pages.json manifest."""
    pages_dir = os.path.join(book_dir, PAGES_DIR)
    os.makedirs(pages_dir, exist_ok=True)

    if toc_html is not None:
        _write_text(os.path.join(book_dir, "toc.html"), toc_html)

    filenames = []
    for index, document in enumerate(documents, start=1):
        name = page_filename(index)
        _write_text(os.path.join(pages_dir, name), document)
        filenames.append(name)

    with open(os.path.join(book_dir, MANIFEST), "w", encoding="utf-8") as f:
        json.dump({"total": len(filenames), "pages": filenames}, f, ensure_ascii=False)

    logger.info("Wrote %d pages to %s", len(filenames), pages_dir)
    return filenames


def read_manifest(book_dir: str) -> Optional[Dict]:
    """The pages.json manifest, or None for books without one (PDF)."""
    path = os.path.join(book_dir, MANIFEST)
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def read_page(book_dir: str, page_num: int) -> Optional[str]:
    path = page_path(book_dir, page_num)
    if not os.path.exists(path):
        return None
    return _read_text(path)


def extract_body(html: str) -> str:
    """Inner HTML of <body>, or the input unchanged if there is none."""
    match = BODY_RE.search(html)
    return match.group(1) if match else html


def read_all_pages(book_dir: str) -> Tuple[List[Dict], int]:
    """Body content of every page listed in the manifest."""
    manifest = read_manifest(book_dir)
    if manifest is None:
        return [], 0

    pages = []
    total = manifest.get("total", 0)
    for page_num in range(1, total + 1):
        content = read_page(book_dir, page_num)
        if content is not None:
            pages.append({"pageNum": page_num, "content": extract_body(content)})
    return pages, total


def build_toc(book_dir: str) -> List[Dict]:
    """
    Derive the table of contents by scanning h1-h3 headings across all
    page files. Nothing is stored; this runs on every request.
    """
    manifest = read_manifest(book_dir)
    if manifest is None:
        return []

    toc = []
    for page_num in range(1, manifest.get("total", 0) + 1):
        content = read_page(book_dir, page_num)
        if content is None:
            continue
        soup = BeautifulSoup(content, "html.parser")
        for heading in soup.find_all(["h1", "h2", "h3"]):
            title = " ".join(heading.get_text().split())
            if 0 < len(title) < 200:
                toc.append({"page": page_num, "level": int(heading.name[1]), "title": title})
    return toc


def write_metadata(book_dir: str, data: Dict):
    with open(os.path.join(book_dir, "metadata.json"), "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


# --- Translation / edit overwrites ---

def save_translation(book_dir: str, page_num: int, content: str) -> bool:
    """
    Replace a page with translated HTML. The original is backed up the first
    time only, so repeated saves never overwrite it.
    Returns False if the page does not exist.
    """
    path = page_path(book_dir, page_num)
    if not os.path.exists(path):
        return False

    backup = translation_backup_path(book_dir, page_num)
    if not os.path.exists(backup):
        shutil.copyfile(path, backup)

    _write_text(path, content)
    logger.info("Saved translated page %s/page-%d", os.path.basename(book_dir), page_num)
    return True


def restore_original(book_dir: str, page_num: int) -> bool:
    """Put the backed-up original back and drop the backup."""
    backup = translation_backup_path(book_dir, page_num)
    if not os.path.exists(backup):
        return False
    shutil.copyfile(backup, page_path(book_dir, page_num))
    os.remove(backup)
    logger.info("Restored original page %s/page-%d", os.path.basename(book_dir), page_num)
    return True


def translation_status(book_dir: str) -> List[int]:
    """Page numbers that currently hold a translation."""
    pages_dir = os.path.join(book_dir, PAGES_DIR)
    translated = []
    for name in os.listdir(pages_dir):
        match = BACKUP_RE.match(name)
        if match:
            translated.append(int(match.group(1)))
    return sorted(translated)


def restore_all_translations(book_dir: str) -> int:
    """Revert every translated page. Returns how many were restored."""
    restored = 0
    for page_num in translation_status(book_dir):
        if restore_original(book_dir, page_num):
            restored += 1
    logger.info("Restored %d pages for book %s", restored, os.path.basename(book_dir))
    return restored


def save_edit(book_dir: str, page_num: int, body: str) -> bool:
    """Replace the body of a page, keeping its <head>."""
    path = page_path(book_dir, page_num)
    if not os.path.exists(path):
        return False

    original = _read_text(path)
    match = HEAD_RE.search(original)
    head = match.group(0) if match else '<head><meta charset="UTF-8"></head>'
    new_html = f"<!DOCTYPE html>\n<html>\n{head}\n<body>\n  {body}\n</body>\n</html>"

    backup = edit_backup_path(book_dir, page_num)
    if not os.path.exists(backup):
        _write_text(backup, original)

    _write_text(path, new_html)
    logger.info("Saved edited page %s/page-%d", os.path.basename(book_dir), page_num)
    return True


# --- Media & covers ---

def media_path(book_dir: str, relative: str) -> Optional[str]:
    """Absolute path of a media file, or None if it escapes media/ or is missing."""
    media_dir = os.path.realpath(os.path.join(book_dir, "media"))
    path = os.path.realpath(os.path.join(media_dir, relative))
    if os.path.commonpath([media_dir, path]) != media_dir:
        return None
    if not os.path.isfile(path):
        return None
    return path


def custom_cover_path(book_dir: str) -> Optional[str]:
    for ext in IMAGE_EXTENSIONS:
        path = os.path.join(book_dir, f"custom-cover{ext}")
        if os.path.exists(path):
            return path
    return None


def save_custom_cover(book_dir: str, data: bytes, ext: str) -> str:
    """Store a user cover, replacing any earlier one with another extension."""
    delete_custom_cover(book_dir)
    path = os.path.join(book_dir, f"custom-cover{ext}")
    with open(path, "wb") as f:
        f.write(data)
    return path


def delete_custom_cover(book_dir: str) -> bool:
    deleted = False
    for ext in IMAGE_EXTENSIONS:
        path = os.path.join(book_dir, f"custom-cover{ext}")
        if os.path.exists(path):
            os.remove(path)
            deleted = True
    return deleted


def _walk_images(media_dir: str):
    for root, dirs, files in os.walk(media_dir):
        dirs.sort()
        for name in sorted(files):
            if name.lower().endswith(IMAGE_EXTENSIONS):
                yield os.path.join(root, name)


def find_cover(book_dir: str) -> Optional[str]:
    """Custom cover, else a media image named like a cover, else the first image."""
    custom = custom_cover_path(book_dir)
    if custom:
        return custom

    media_dir = os.path.join(book_dir, "media")
    if not os.path.isdir(media_dir):
        return None

    images = list(_walk_images(media_dir))
    for path in images:
        if "cover" in os.path.basename(path).lower():
            return path
    return images[0] if images else None


def delete_book_dir(book_dir: str):
    if os.path.exists(book_dir):
        shutil.rmtree(book_dir)
