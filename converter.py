"""
Converts uploaded files into a single normalized HTML document.
EPUB and Markdown go through pandoc; PDFs are stored as-is.
"""

import logging
import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional

from bs4 import BeautifulSoup
from ebooklib import epub

logger = logging.getLogger(__name__)

MEDIA_URL = "/api/books/{book_id}/media/"

MARKDOWN_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\((?:\./)?(?:images|img|media)/([^)]+)\)")
MARKDOWN_SRC_RE = re.compile(r'src="(?:\./)?(?:images|img|media)/([^"]+)"')


class ConversionError(Exception):
    """The external converter failed; the upload cannot be processed."""


@dataclass
class EpubMetadata:
    """Metadata read from the EPUB package document."""
    language: Optional[str] = None


# --- Utilities ---

def title_from_filename(filename: str) -> str:
    """'my-great_bookTitle.epub' -> 'my great book Title'."""
    stem = os.path.splitext(os.path.basename(filename))[0]
    title = re.sub(r"[-_]", " ", stem)
    return re.sub(r"([a-z])([A-Z])", r"\1 \2", title)


def extract_plain_text(html: str) -> str:
    """Extract clean text for LLM usage."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return " ".join(soup.get_text(separator=" ").split())


def read_epub_metadata(epub_path: str) -> EpubMetadata:
    """
    Read the package language with ebooklib. Titles come from the upload
    filename.
    Pandoc accepts some EPUBs ebooklib rejects, so a parse failure only
    yields empty metadata.
    """
    try:
        book = epub.read_epub(epub_path)
    except Exception as e:
        logger.warning("Could not read EPUB metadata from %s: %s", epub_path, e)
        return EpubMetadata()

    data = book.get_metadata("DC", "language")
    return EpubMetadata(language=data[0][0] if data else None)


def fix_markdown_image_paths(content: str, book_id: str) -> str:
    """
    Point relative images/, img/ and media/ references at the media API.
    Handles both Markdown image syntax and src="..." attributes.
    """
    prefix = MEDIA_URL.format(book_id=book_id)
    content = MARKDOWN_IMAGE_RE.sub(lambda m: f"![{m.group(1)}]({prefix}{m.group(2)})", content)
    return MARKDOWN_SRC_RE.sub(lambda m: f'src="{prefix}{m.group(1)}"', content)


def rewrite_media_refs(html: str, media_dir: str, book_id: str) -> str:
    """Pandoc writes extracted media paths verbatim; turn them into API URLs."""
    prefix = MEDIA_URL.format(book_id=book_id)
    return html.replace(media_dir.rstrip("/\\") + "/", prefix)


# --- Pandoc ---

def convert_with_pandoc(source: str, output_html: str, media_dir: str, title: str,
                        pandoc_path: str = "pandoc"):
    """Run pandoc to produce one standalone HTML file plus extracted media."""
    cmd = [
        pandoc_path,
        source,
        "--standalone",
        f"--extract-media={media_dir}",
        "--toc",
        "--metadata", f"title={title}",
        "-o", output_html,
    ]
    logger.info("Converting %s with pandoc", os.path.basename(source))
    try:
        subprocess.run(cmd, capture_output=True, text=True, check=True)
    except FileNotFoundError as e:
        raise ConversionError("Failed to convert document. Make sure pandoc is installed.") from e
    except subprocess.CalledProcessError as e:
        logger.error("Pandoc error: %s", e.stderr)
        raise ConversionError(f"Failed to convert document: {(e.stderr or '').strip()}") from e


def _convert(source: str, book_dir: str, book_id: str, title: str, pandoc_path: str) -> str:
    media_dir = os.path.join(book_dir, "media")
    output_html = os.path.join(book_dir, "index.html")
    os.makedirs(media_dir, exist_ok=True)

    convert_with_pandoc(source, output_html, media_dir, title, pandoc_path)

    with open(output_html, "r", encoding="utf-8") as f:
        html = f.read()
    return rewrite_media_refs(html, media_dir, book_id)


def convert_epub(epub_path: str, book_dir: str, book_id: str, title: str,
                 pandoc_path: str = "pandoc") -> str:
    """EPUB -> normalized standalone HTML."""
    return _convert(epub_path, book_dir, book_id, title, pandoc_path)


def convert_markdown(md_path: str, book_dir: str, book_id: str, title: str,
                     pandoc_path: str = "pandoc") -> str:
    """Markdown -> normalized standalone HTML with media references fixed."""
    html = _convert(md_path, book_dir, book_id, title, pandoc_path)
    return fix_markdown_image_paths(html, book_id)


# --- PDF ---

def store_pdf(upload_path: str, book_dir: str) -> int:
    """
    Move an uploaded PDF into the book directory unmodified, as
    document.pdf. Returns the real page count, or 0 if PyMuPDF cannot
    read it (the reader renders it client side anyway).
    """
    import pymupdf as fitz

    os.makedirs(book_dir, exist_ok=True)
    pdf_path = os.path.join(book_dir, "document.pdf")
    # copy + remove works across devices, unlike rename
    shutil.copyfile(upload_path, pdf_path)
    os.remove(upload_path)

    try:
        with fitz.open(pdf_path) as doc:
            return len(doc)
    except RuntimeError as e:
        logger.warning("Could not count pages of %s: %s", pdf_path, e)
        return 0


def render_pdf_thumbnail(pdf_path: str, dest: str, size: int = 400) -> str:
    """Render the first PDF page as a PNG whose longest side is `size` pixels."""
    import pymupdf as fitz

    try:
        with fitz.open(pdf_path) as doc:
            page = doc[0]
            rect = page.rect
            scale = min(size / rect.width, size / rect.height)
            pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
            pix.save(dest)
    except (RuntimeError, IndexError, ValueError) as e:
        raise ConversionError(f"Could not render PDF thumbnail: {e}") from e

    logger.info("PDF thumbnail generated: %s", dest)
    return dest
