import asyncio
import logging
import os
import shutil
import tempfile
from dataclasses import asdict
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from ai_settings import PROVIDERS, AIClient, AIError
from config import load_settings
from converter import (
    MEDIA_URL,
    ConversionError,
    convert_epub,
    convert_markdown,
    extract_plain_text,
    read_epub_metadata,
    render_pdf_thumbnail,
    store_pdf,
    title_from_filename,
)
from library_db import (
    PROTECTED_TAG,
    WEB_TAG,
    ClipPosition,
    LibraryStore,
    ProtectedTagError,
    TagExistsError,
    generate_id,
    now_iso,
)
from page_store import (
    IMAGE_EXTENSIONS,
    PAGES_DIR,
    build_toc,
    custom_cover_path,
    delete_book_dir,
    delete_custom_cover,
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
from splitter import (
    TEMPLATES_DIR,
    render_document_pages,
    render_page,
    render_web_pages,
    split_document,
    split_web_content,
)
from web_capture import (
    FetchError,
    ImageRegistry,
    build_client,
    crawl,
    download_image,
    download_images,
    extract_article_content,
    extract_metadata,
    fetch_html,
    is_valid_http_url,
)

logger = logging.getLogger(__name__)

UPLOAD_TYPES = {".epub": "epub", ".pdf": "pdf", ".md": "markdown", ".markdown": "markdown"}
MAX_COVER_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_PAGES = 50
AUTO_TAG_DELAY_SECONDS = 0.5

settings = load_settings()
store = LibraryStore(settings.db_path)
ai_client = AIClient(store)

app = FastAPI(title="Paged Library")
app.mount(
    "/converted",
    StaticFiles(directory=settings.converted_dir, check_dir=False),
    name="converted",
)
templates = Jinja2Templates(directory=TEMPLATES_DIR)


@app.exception_handler(ConversionError)
async def conversion_error_handler(request: Request, exc: ConversionError):
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.exception_handler(FetchError)
async def fetch_error_handler(request: Request, exc: FetchError):
    return JSONResponse(status_code=400, content={"detail": f"Failed to fetch URL: {exc}"})


@app.exception_handler(AIError)
async def ai_error_handler(request: Request, exc: AIError):
    logger.error("AI request failed: %s", exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def get_book_or_404(book_id: str):
    book = store.get_book(book_id)
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


def require_int(value, name: str, minimum: int = 1) -> int:
    # bool is an int subclass; JSON true must not pass as page 1
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise HTTPException(status_code=400, detail=f"Invalid {name}")
    return value


async def auto_tag_book(book_id: str, title: str, content: str):
    """Attach AI-suggested tags. Runs after the response has been sent."""
    tag_ids = await ai_client.suggest_tags(title, content)
    for tag_id in tag_ids:
        store.add_tag_to_book(book_id, tag_id)
    if tag_ids:
        logger.info("Auto-tagged book %s with %d tags", book_id, len(tag_ids))


# ============================================================================
# Upload & capture
# ============================================================================


@app.post("/api/upload")
async def upload_book(background_tasks: BackgroundTasks, file: UploadFile = File(...)):
    """Handle EPUB, PDF and Markdown uploads."""
    original_filename = os.path.basename(file.filename or "")
    suffix = os.path.splitext(original_filename)[1].lower()
    if suffix not in UPLOAD_TYPES:
        raise HTTPException(
            status_code=400, detail="Only EPUB, PDF and Markdown files are allowed"
        )
    book_type = UPLOAD_TYPES[suffix]

    settings.ensure_dirs()
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix, dir=settings.uploads_dir) as tmp:
        shutil.copyfileobj(file.file, tmp)
        temp_path = tmp.name

    book_id = generate_id()
    book_dir = settings.book_dir(book_id)
    title = title_from_filename(original_filename)
    logger.info("Processing upload %s -> %s", original_filename, book_id)

    try:
        if book_type == "pdf":
            pdf_pages = store_pdf(temp_path, book_dir)
            store.add_book(book_id, title, original_filename, 1, book_type="pdf",
                           pdf_total_pages=pdf_pages or None)
            total_pages = 1
            tag_content = original_filename
        else:
            language = "en"
            if book_type == "epub":
                language = read_epub_metadata(temp_path).language or language
                html = convert_epub(temp_path, book_dir, book_id, title, settings.pandoc_path)
            else:
                html = convert_markdown(temp_path, book_dir, book_id, title, settings.pandoc_path)

            split = split_document(html)
            pages = render_document_pages(split)
            write_pages(book_dir, pages, toc_html=split.toc)
            total_pages = len(pages)
            store.add_book(book_id, title, original_filename, total_pages,
                           book_type=book_type, language=language)
            tag_content = extract_plain_text(html)
    except ConversionError as e:
        logger.error("Failed to process %s: %s", original_filename, e)
        delete_book_dir(book_dir)
        raise
    except Exception:
        logger.exception("Unexpected error processing %s", original_filename)
        delete_book_dir(book_dir)
        raise
    finally:
        if os.path.exists(temp_path):
            os.remove(temp_path)

    logger.info("Stored %s as %s (%d pages)", original_filename, book_type, total_pages)
    background_tasks.add_task(auto_tag_book, book_id, title, tag_content)
    return {
        "success": True,
        "bookId": book_id,
        "title": title,
        "bookType": book_type,
        "totalPages": total_pages,
    }


def _validated_url(data: dict) -> str:
    url = data.get("url")
    if not url or not isinstance(url, str):
        raise HTTPException(status_code=400, detail="URL is required")
    if not is_valid_http_url(url):
        raise HTTPException(status_code=400, detail="Invalid URL format")
    return url


def _cover_ext(url: str) -> str:
    ext = os.path.splitext(url.split("?", 1)[0])[1].lower()
    return ext if ext in IMAGE_EXTENSIONS else ".jpg"


@app.post("/api/save-url")
async def save_url(request: Request, background_tasks: BackgroundTasks):
    """Capture a single web article as a website book."""
    data = await request.json()
    url = _validated_url(data)

    book_id = generate_id()
    book_dir = settings.book_dir(book_id)
    media_dir = os.path.join(book_dir, "media")
    logger.info("Fetching URL: %s", url)

    async with build_client(settings.fetch_timeout) as client:
        html = await fetch_html(client, url)
        metadata = extract_metadata(html, url)
        article = extract_article_content(html, url, media_prefix=MEDIA_URL.format(book_id=book_id))

        await download_images(client, article.images, media_dir, settings.image_timeout)
        if metadata.og_image and is_valid_http_url(metadata.og_image):
            cover = os.path.join(book_dir, f"custom-cover{_cover_ext(metadata.og_image)}")
            await download_image(client, metadata.og_image, cover, settings.image_timeout)

    sections = split_web_content(article.content)
    pages = render_web_pages(sections, metadata.title, url, metadata.site_name)
    write_pages(book_dir, pages)
    write_metadata(book_dir, {**metadata.to_dict(), "sourceUrl": url, "savedAt": now_iso()})

    store.add_book(book_id, metadata.title, None, len(pages), book_type="website", source_url=url)
    web_tag = store.get_tag_by_name(WEB_TAG)
    if web_tag:
        store.add_tag_to_book(book_id, web_tag.id)
    background_tasks.add_task(auto_tag_book, book_id, metadata.title,
                              extract_plain_text(article.content))

    return {
        "success": True,
        "bookId": book_id,
        "title": metadata.title,
        "bookType": "website",
        "totalPages": len(pages),
        "metadata": metadata.to_dict(),
    }


@app.post("/api/save-multipage-url")
async def save_multipage_url(request: Request, background_tasks: BackgroundTasks):
    """Crawl a series of pages linked by a "next" link into one website book."""
    data = await request.json()
    url = data.get("url")
    link_class = data.get("linkClass")
    if not url or not isinstance(url, str):
        raise HTTPException(status_code=400, detail="URL is required")
    if not link_class or not isinstance(link_class, str):
        raise HTTPException(status_code=400, detail='linkClass is required (e.g., "next-page")')
    if not is_valid_http_url(url):
        raise HTTPException(status_code=400, detail="Invalid URL format")
    ignore_paths = [p for p in (data.get("ignorePaths") or []) if isinstance(p, str)]
    max_pages = require_int(data.get("maxPages", DEFAULT_MAX_PAGES), "maxPages")

    book_id = generate_id()
    book_dir = settings.book_dir(book_id)
    media_prefix = MEDIA_URL.format(book_id=book_id)

    async with build_client(settings.fetch_timeout) as client:
        crawled = await crawl(client, url, link_class, ignore_paths, max_pages)
        if not crawled:
            raise HTTPException(status_code=400, detail="No pages could be fetched")

        registry = ImageRegistry()
        articles = [extract_article_content(p.html, p.url, media_prefix, registry) for p in crawled]
        await download_images(client, registry.items(), os.path.join(book_dir, "media"),
                              settings.image_timeout)

    total = len(crawled)
    documents = [
        render_page(
            article.content,
            title=f"{page.title} - Page {num}",
            highlight=True,
            banner_title=page.title,
            source_url=page.url,
            page_label=f"Page {num} of {total}",
        )
        for num, (page, article) in enumerate(zip(crawled, articles), start=1)
    ]
    write_pages(book_dir, documents)

    title = crawled[0].title
    write_metadata(book_dir, {
        "title": title,
        "sourceUrl": url,
        "crawledPages": [p.url for p in crawled],
        "linkClass": link_class,
        "ignorePaths": ignore_paths,
        "savedAt": now_iso(),
    })

    store.add_book(book_id, title, None, total, book_type="website", source_url=url)
    web_tag = store.get_tag_by_name(WEB_TAG)
    if web_tag:
        store.add_tag_to_book(book_id, web_tag.id)
    background_tasks.add_task(auto_tag_book, book_id, title,
                              " ".join(extract_plain_text(a.content) for a in articles[:3]))

    return {
        "success": True,
        "bookId": book_id,
        "title": title,
        "bookType": "website",
        "totalPages": total,
        "crawledUrls": [p.url for p in crawled],
    }


@app.get("/api/freshrss/share", response_class=HTMLResponse)
async def freshrss_share(request: Request, url: Optional[str] = None, title: Optional[str] = None):
    """
    Target of a FreshRSS share button:
    http://host:port/api/freshrss/share?url=~url~&title=~title~
    The returned page posts the URL to /api/save-url and shows the result.
    """
    error = None
    if not url:
        error = "URL is required"
    elif not is_valid_http_url(url):
        error = "Invalid URL"

    return templates.TemplateResponse(
        request,
        "share.html",
        {"url": url, "title": title, "error": error},
        status_code=400 if error else 200,
    )


# ============================================================================
# Books API
# ============================================================================


@app.get("/api/books")
async def list_books():
    return [asdict(b) for b in store.get_all_books()]


@app.get("/api/books/{book_id}")
async def get_book(book_id: str):
    """Book row merged with its page manifest."""
    book = get_book_or_404(book_id)
    data = asdict(book)

    if book.book_type == "pdf":
        data.update(total=1, pages=[])
        return data

    manifest = read_manifest(settings.book_dir(book_id))
    if manifest is None:
        data.update(total=book.total_pages or 1, pages=[])
    else:
        data.update(manifest)
    return data


@app.patch("/api/books/{book_id}")
async def update_book(book_id: str, request: Request):
    """Update title, language or AI context."""
    get_book_or_404(book_id)
    data = await request.json()
    updated = store.update_book(
        book_id,
        title=data.get("title"),
        language=data.get("language"),
        ai_context=data.get("ai_context"),
    )
    return asdict(updated or store.get_book(book_id))


@app.delete("/api/books/{book_id}")
async def delete_book(book_id: str):
    """Deletes the book row (cascading to its user data) and all its files."""
    store.delete_book(book_id)
    delete_book_dir(settings.book_dir(book_id))
    logger.info("Deleted book %s", book_id)
    return {"success": True}


@app.post("/api/books/{book_id}/pdf-total-pages")
async def update_pdf_total_pages(book_id: str, request: Request):
    """The viewer reports the real page count once it has opened the PDF."""
    data = await request.json()
    total = require_int(data.get("totalPages"), "totalPages")
    if not store.update_pdf_total_pages(book_id, total):
        raise HTTPException(status_code=404, detail="Book not found")
    return {"success": True}


@app.get("/api/books/{book_id}/pdf")
async def get_pdf(book_id: str):
    pdf_path = os.path.join(settings.book_dir(book_id), "document.pdf")
    if not os.path.exists(pdf_path):
        raise HTTPException(status_code=404, detail="PDF not found")
    return FileResponse(pdf_path, media_type="application/pdf")


# ============================================================================
# Pages API
# ============================================================================


@app.get("/api/books/{book_id}/page/{page_num}")
async def get_page(book_id: str, page_num: int):
    content = read_page(settings.book_dir(book_id), page_num)
    if content is None:
        raise HTTPException(status_code=404, detail="Page not found")
    return {"content": content, "pageNum": page_num}


@app.get("/api/books/{book_id}/all-pages")
async def get_all_pages(book_id: str):
    """Body content of every page, for continuous scrolling and AI context."""
    book_dir = settings.book_dir(book_id)
    if read_manifest(book_dir) is None:
        raise HTTPException(status_code=404, detail="Book not found")
    pages, total = read_all_pages(book_dir)
    return {"pages": pages, "total": total}


@app.get("/api/books/{book_id}/toc")
async def get_toc(book_id: str):
    return {"toc": build_toc(settings.book_dir(book_id))}


def _require_content(data: dict) -> str:
    content = data.get("content")
    if not content or not isinstance(content, str):
        raise HTTPException(status_code=400, detail="Content is required")
    return content


@app.post("/api/books/{book_id}/page/{page_num}/save-translation")
async def save_translated_page(book_id: str, page_num: int, request: Request):
    data = await request.json()
    content = _require_content(data)
    if not save_translation(settings.book_dir(book_id), page_num, content):
        raise HTTPException(status_code=404, detail="Page not found")
    return {"success": True, "message": "Translation saved"}


@app.post("/api/books/{book_id}/page/{page_num}/restore-original")
async def restore_original_page(book_id: str, page_num: int):
    if not restore_original(settings.book_dir(book_id), page_num):
        raise HTTPException(status_code=404, detail="Original backup not found")
    return {"success": True, "message": "Original restored"}


def _require_pages_dir(book_id: str) -> str:
    book_dir = settings.book_dir(book_id)
    if not os.path.isdir(os.path.join(book_dir, PAGES_DIR)):
        raise HTTPException(status_code=404, detail="Book pages not found")
    return book_dir


@app.get("/api/books/{book_id}/translation-status")
async def get_translation_status(book_id: str):
    translated = translation_status(_require_pages_dir(book_id))
    return {"translatedPages": translated, "totalTranslated": len(translated)}


@app.post("/api/books/{book_id}/restore-all-translations")
async def restore_all(book_id: str):
    restored = restore_all_translations(_require_pages_dir(book_id))
    return {"success": True, "restoredCount": restored}


@app.post("/api/books/{book_id}/page/{page_num}/save-edit")
async def save_edited_page(book_id: str, page_num: int, request: Request):
    data = await request.json()
    content = _require_content(data)
    if not save_edit(settings.book_dir(book_id), page_num, content):
        raise HTTPException(status_code=404, detail="Page not found")
    return {"success": True, "message": "Edit saved"}


# ============================================================================
# Bookmarks, Clips & Notes API
# ============================================================================


@app.get("/api/books/{book_id}/bookmarks")
async def get_bookmarks(book_id: str):
    return [asdict(b) for b in store.get_bookmarks(book_id)]


@app.post("/api/books/{book_id}/bookmarks")
async def add_bookmark(book_id: str, request: Request):
    get_book_or_404(book_id)
    data = await request.json()
    page_num = require_int(data.get("pageNum"), "pageNum")
    bookmark = store.add_bookmark(book_id, page_num, data.get("note") or "")
    return asdict(bookmark)


@app.delete("/api/bookmarks/{bookmark_id}")
async def delete_bookmark(bookmark_id: str):
    if store.delete_bookmark(bookmark_id):
        return {"success": True}
    raise HTTPException(status_code=404, detail="Bookmark not found")


@app.get("/api/books/{book_id}/clips")
async def get_clips(book_id: str):
    return [asdict(c) for c in store.get_clips(book_id)]


@app.get("/api/clips/{clip_id}")
async def get_clip(clip_id: str):
    clip = store.get_clip(clip_id)
    if clip is None:
        raise HTTPException(status_code=404, detail="Clip not found")
    return asdict(clip)


def _clip_position(raw) -> Optional[ClipPosition]:
    """{xRatio, yRatio, widthRatio, heightRatio} from the client, or None."""
    if raw is None:
        return None
    keys = ("xRatio", "yRatio", "widthRatio", "heightRatio")
    if not isinstance(raw, dict) or not all(
        isinstance(raw.get(k), (int, float)) and not isinstance(raw.get(k), bool) for k in keys
    ):
        raise HTTPException(status_code=400, detail="Invalid position")
    return ClipPosition(
        x_ratio=float(raw["xRatio"]),
        y_ratio=float(raw["yRatio"]),
        width_ratio=float(raw["widthRatio"]),
        height_ratio=float(raw["heightRatio"]),
    )


@app.post("/api/books/{book_id}/clips")
async def add_clip(book_id: str, request: Request):
    """Store a screenshot clip (data URL) with its optional page rectangle."""
    get_book_or_404(book_id)
    data = await request.json()
    image_data = data.get("imageData")
    if not image_data or not isinstance(image_data, str):
        raise HTTPException(status_code=400, detail="imageData is required")
    page_num = require_int(data.get("pageNum"), "pageNum")
    clip = store.add_clip(book_id, page_num, image_data, data.get("note") or "",
                          _clip_position(data.get("position")))
    return asdict(clip)


@app.delete("/api/clips/{clip_id}")
async def delete_clip(clip_id: str):
    if store.delete_clip(clip_id):
        return {"success": True}
    raise HTTPException(status_code=404, detail="Clip not found")


@app.get("/api/books/{book_id}/notes")
async def get_notes(book_id: str):
    return [asdict(n) for n in store.get_notes(book_id)]


@app.post("/api/books/{book_id}/notes")
async def add_note(book_id: str, request: Request):
    get_book_or_404(book_id)
    data = await request.json()
    page_num = data.get("pageNum")
    if isinstance(page_num, bool) or not isinstance(page_num, int):
        raise HTTPException(status_code=400, detail="pageNum is required")
    position = data.get("position") or 0
    note = store.add_note(book_id, page_num, data.get("content") or "",
                          position if isinstance(position, int) else 0)
    return asdict(note)


@app.put("/api/notes/{note_id}")
async def update_note(note_id: str, request: Request):
    data = await request.json()
    content = data.get("content")
    if not isinstance(content, str):
        raise HTTPException(status_code=400, detail="content is required")
    note = store.update_note(note_id, content)
    if note is None:
        raise HTTPException(status_code=404, detail="Note not found")
    return asdict(note)


@app.delete("/api/notes/{note_id}")
async def delete_note(note_id: str):
    if store.delete_note(note_id):
        return {"success": True}
    raise HTTPException(status_code=404, detail="Note not found")


# ============================================================================
# Reading Progress API
# ============================================================================


@app.get("/api/books/{book_id}/progress")
async def get_progress(book_id: str):
    progress = store.get_progress(book_id)
    if progress:
        return asdict(progress)
    return {"book_id": book_id, "current_page": 1, "updated_at": None}


@app.post("/api/books/{book_id}/progress")
async def save_progress(book_id: str, request: Request):
    get_book_or_404(book_id)
    data = await request.json()
    current_page = require_int(data.get("currentPage"), "currentPage")
    store.save_progress(book_id, current_page)
    return {"success": True}


# ============================================================================
# Tags API
# ============================================================================


@app.get("/api/tags")
async def get_tags():
    return [asdict(t) for t in store.get_all_tags()]


@app.post("/api/tags")
async def create_tag(request: Request):
    data = await request.json()
    name = data.get("name")
    if not name or not isinstance(name, str) or not name.strip():
        raise HTTPException(status_code=400, detail="Tag name is required")
    try:
        tag = store.create_tag(name.strip(), data.get("color") or "#667eea")
    except TagExistsError:
        raise HTTPException(status_code=400, detail="Tag already exists")
    return asdict(tag)


@app.delete("/api/tags/{tag_id}")
async def delete_tag(tag_id: str):
    try:
        deleted = store.delete_tag(tag_id)
    except ProtectedTagError:
        raise HTTPException(status_code=400, detail=f"The '{PROTECTED_TAG}' tag cannot be deleted")
    if not deleted:
        raise HTTPException(status_code=404, detail="Tag not found")
    return {"success": True}


@app.get("/api/books/{book_id}/tags")
async def get_book_tags(book_id: str):
    return [asdict(t) for t in store.get_book_tags(book_id)]


@app.post("/api/books/{book_id}/tags")
async def add_book_tag(book_id: str, request: Request):
    data = await request.json()
    tag_id = data.get("tagId")
    if not tag_id:
        raise HTTPException(status_code=400, detail="tagId is required")
    get_book_or_404(book_id)
    if tag_id not in {t.id for t in store.get_all_tags()}:
        raise HTTPException(status_code=404, detail="Tag not found")
    store.add_tag_to_book(book_id, tag_id)
    return {"success": True}


@app.delete("/api/books/{book_id}/tags/{tag_id}")
async def remove_book_tag(book_id: str, tag_id: str):
    store.remove_tag_from_book(book_id, tag_id)
    return {"success": True}


# ============================================================================
# Media & Covers API
# ============================================================================


@app.get("/api/books/{book_id}/media/{file_path:path}")
async def serve_media(book_id: str, file_path: str):
    """Serves extracted or downloaded images referenced from page HTML."""
    path = media_path(settings.book_dir(book_id), file_path)
    if path is None:
        raise HTTPException(status_code=404, detail="Media not found")
    return FileResponse(path)


@app.post("/api/books/{book_id}/cover")
async def upload_cover(book_id: str, cover: UploadFile = File(...)):
    ext = os.path.splitext(cover.filename or "")[1].lower()
    if ext not in IMAGE_EXTENSIONS:
        raise HTTPException(status_code=400, detail="Only image files are allowed")

    book_dir = settings.book_dir(book_id)
    if not os.path.isdir(book_dir):
        raise HTTPException(status_code=404, detail="Book not found")

    data = await cover.read()
    if len(data) > MAX_COVER_BYTES:
        raise HTTPException(status_code=400, detail="Cover image is larger than 10MB")

    save_custom_cover(book_dir, data, ext)
    return {"success": True, "message": "Cover updated"}


@app.delete("/api/books/{book_id}/cover")
async def delete_cover(book_id: str):
    deleted = delete_custom_cover(settings.book_dir(book_id))
    return {"success": True, "deleted": deleted}


@app.get("/api/books/{book_id}/cover")
async def get_cover(book_id: str):
    """
    Custom cover if one was uploaded. PDFs otherwise get a thumbnail of
    their first page (rendered once, then cached); other books use an
    image found in their media.
    """
    book_dir = settings.book_dir(book_id)
    if not os.path.isdir(book_dir):
        raise HTTPException(status_code=404, detail="Book directory not found")

    pdf_path = os.path.join(book_dir, "document.pdf")
    if read_manifest(book_dir) is None and os.path.exists(pdf_path):
        custom = custom_cover_path(book_dir)
        if custom:
            return FileResponse(custom)

        thumbnail = os.path.join(book_dir, "pdf-thumbnail.png")
        if not os.path.exists(thumbnail):
            try:
                render_pdf_thumbnail(pdf_path, thumbnail)
            except ConversionError as e:
                logger.error("PDF thumbnail failed for %s: %s", book_id, e)
                raise HTTPException(status_code=404, detail="No cover found for PDF")
        return FileResponse(thumbnail, media_type="image/png")

    cover_path = find_cover(book_dir)
    if cover_path is None:
        raise HTTPException(status_code=404, detail="No cover found")
    return FileResponse(cover_path)


# ============================================================================
# AI API
# ============================================================================


@app.get("/api/ai/settings")
async def get_ai_settings():
    """Configured providers; API keys are never returned."""
    return [
        {"provider": s.provider, "model": s.model, "configured": bool(s.api_key)}
        for s in store.get_ai_settings()
    ]


@app.post("/api/ai/settings")
async def save_ai_setting(request: Request):
    data = await request.json()
    provider = data.get("provider")
    api_key = data.get("apiKey")
    model = data.get("model") or None
    if not provider or not api_key:
        raise HTTPException(status_code=400, detail="provider and apiKey are required")
    if provider not in PROVIDERS:
        raise HTTPException(
            status_code=400, detail=f"Invalid provider. Use: {', '.join(PROVIDERS)}"
        )
    store.save_ai_setting(provider, api_key, model)
    return {"success": True, "provider": provider, "model": model}


@app.delete("/api/ai/settings/{provider}")
async def delete_ai_setting(provider: str):
    store.delete_ai_setting(provider)
    return {"success": True}


@app.post("/api/ai/chat")
async def ai_chat(request: Request):
    """Proxy a reader's question, with optional page context, to a provider."""
    data = await request.json()
    provider = data.get("provider")
    message = data.get("message")
    if not provider or not message:
        raise HTTPException(status_code=400, detail="provider and message are required")
    if provider not in PROVIDERS:
        raise HTTPException(status_code=400, detail="Unknown provider")
    setting = store.get_ai_setting(provider)
    if setting is None or not setting.api_key:
        raise HTTPException(status_code=400, detail=f"{provider} API key is not configured")

    response = await ai_client.chat(provider, message, data.get("context"))
    return {"response": response}


@app.post("/api/ai/generate-clip-description")
async def generate_clip_description(request: Request):
    data = await request.json()
    book_title = data.get("bookTitle")
    page_content = data.get("pageContent")
    if not book_title or not page_content:
        raise HTTPException(status_code=400, detail="bookTitle and pageContent are required")
    description = await ai_client.generate_clip_description(page_content, book_title)
    return {"description": description}


@app.post("/api/ai/auto-tag-all")
async def auto_tag_all(request: Request):
    """
    Suggest tags for every book. Books that already have tags are skipped
    unless `force` is set.
    """
    data = await request.json()
    force = bool(data.get("force"))
    tags_by_id = {t.id: t.name for t in store.get_all_tags()}
    results = []

    for book in store.get_all_books():
        if book.tags and not force:
            results.append({"bookId": book.id, "title": book.title,
                            "tags": [t.name for t in book.tags]})
            continue

        content = book.title
        first_page = read_page(settings.book_dir(book.id), 1)
        if first_page is not None:
            content = first_page[:1000]

        tag_ids = await ai_client.suggest_tags(book.title, content)
        for tag_id in tag_ids:
            store.add_tag_to_book(book.id, tag_id)
        results.append({"bookId": book.id, "title": book.title,
                        "tags": [tags_by_id[t] for t in tag_ids if t in tags_by_id]})

        if AUTO_TAG_DELAY_SECONDS > 0:
            await asyncio.sleep(AUTO_TAG_DELAY_SECONDS)

    return {"success": True, "results": results}


if __name__ == "__main__":
    import uvicorn

    print(f"Starting server at http://{settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port)
