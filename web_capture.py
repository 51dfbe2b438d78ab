"""
Captures web articles: fetch, metadata, readable-content extraction,
image download and multi-page crawling.
"""

import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

import httpx
from bs4 import BeautifulSoup, Comment, Tag

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "ja,en-US;q=0.9,en;q=0.8",
}

IMAGE_TIMEOUT = 15.0
CRAWL_DELAY_SECONDS = 0.5
MIN_CONTENT_CHARS = 100

BOILERPLATE_SELECTORS = [
    "script", "style", "nav", "header", "footer", "aside", "iframe", "noscript",
    ".ads", ".advertisement", ".sidebar", ".menu", ".navigation",
    ".comment", ".comments", "#comments", ".social-share", ".share-buttons", ".related-posts",
    ".hatena-module", ".hatena-urllist", "#box2", ".entry-footer-section", ".entry-footer-modules",
    ".hatena-star-container", ".hatena-bookmark-button-frame", ".subscribe-button", ".reader-button",
    ".page-footer", ".ad-label", ".ad-content", ".google-afc-user-container", ".sentry-error-embed",
    ".entry-reactions", ".customized-footer", ".hatena-asin-detail",
]

# Most specific first, so a blog's real entry wins over a generic wrapper
CONTENT_SELECTORS = [
    ".entry-content.hatenablog-entry",
    ".hatenablog-entry",
    ".entry.hentry .entry-content",
    ".post-content",
    ".article-content",
    "article",
    "main",
    '[role="main"]',
    ".entry-content",
    ".content",
    "#content",
    "body",
]

IMAGE_SOURCE_ATTRS = ("src", "data-src", "data-lazy-src", "data-original")
LAZY_ATTRS = ("data-src", "data-lazy-src", "data-original", "srcset", "loading")
ALLOWED_ATTRS = {"src", "href", "alt", "title", "lang", "dir", "cite", "datetime"}
CODE_ATTRS = {"class", "data-lang"}

EXT_RE = re.compile(r"^\.[A-Za-z0-9]{1,5}$")
LEADING_INT_RE = re.compile(r"^\s*(\d+)")


class FetchError(Exception):
    """The page could not be retrieved."""


@dataclass
class WebsiteMetadata:
    title: str = "Untitled"
    description: Optional[str] = None
    og_image: Optional[str] = None
    favicon: Optional[str] = None
    site_name: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "title": self.title,
            "description": self.description,
            "ogImage": self.og_image,
            "favicon": self.favicon,
            "siteName": self.site_name,
        }


@dataclass
class ExtractedArticle:
    content: str
    images: List[Tuple[str, str]] = field(default_factory=list)  # (url, local name)


@dataclass
class CrawledPage:
    url: str
    title: str
    html: str


class ImageRegistry:
    """
    Assigns sequential local file names ("0.png", "1.jpg", ...) to remote
    image URLs. Sharing one registry across the pages of a crawl keeps
    names unique and downloads each URL once.
    """

    def __init__(self):
        self._names: Dict[str, str] = {}

    def register(self, url: str) -> str:
        name = self._names.get(url)
        if name is None:
            ext = os.path.splitext(urlsplit(url).path)[1]
            if not EXT_RE.match(ext):
                ext = ".jpg"
            name = f"{len(self._names)}{ext}"
            self._names[url] = name
        return name

    def items(self) -> List[Tuple[str, str]]:
        return list(self._names.items())


# --- HTTP ---

def build_client(timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Async client that presents itself as a desktop browser."""
    return httpx.AsyncClient(
        headers=DEFAULT_HEADERS,
        timeout=timeout,
        follow_redirects=True,
        transport=transport,
    )


async def fetch_html(client: httpx.AsyncClient, url: str) -> str:
    try:
        response = await client.get(url)
    except httpx.HTTPError as e:
        raise FetchError(str(e) or e.__class__.__name__) from e
    if not response.is_success:
        raise FetchError(f"{response.status_code} {response.reason_phrase}")
    return response.text


async def download_image(client: httpx.AsyncClient, url: str, dest: str,
                         timeout: float = IMAGE_TIMEOUT) -> bool:
    """Best effort: a failed image never fails the capture."""
    try:
        response = await client.get(url, timeout=timeout)
    except httpx.HTTPError as e:
        logger.warning("Failed to download image %s: %s", url, e)
        return False
    if not response.is_success:
        logger.warning("Failed to download image %s: HTTP %d", url, response.status_code)
        return False

    with open(dest, "wb") as f:
        f.write(response.content)
    return True


async def download_images(client: httpx.AsyncClient, images: List[Tuple[str, str]],
                          media_dir: str, timeout: float = IMAGE_TIMEOUT) -> int:
    """Download (url, local name) pairs into media_dir. Returns how many succeeded."""
    os.makedirs(media_dir, exist_ok=True)
    saved = 0
    for url, name in images:
        if await download_image(client, url, os.path.join(media_dir, name), timeout):
            saved += 1
    logger.info("Downloaded %d/%d images", saved, len(images))
    return saved


# --- Extraction ---

def _meta(soup: BeautifulSoup, **attrs) -> Optional[str]:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return None
    return tag.get("content") or None


def _link_href(soup: BeautifulSoup, rel: str) -> Optional[str]:
    for link in soup.find_all("link", href=True):
        rels = link.get("rel") or []
        if isinstance(rels, str):
            rels = rels.split()
        if " ".join(rels).lower() == rel:
            return link["href"]
    return None


def extract_metadata(html: str, base_url: str) -> WebsiteMetadata:
    soup = BeautifulSoup(html, "html.parser")

    page_title = soup.title.get_text().strip() if soup.title else ""
    title = (_meta(soup, property="og:title")
             or _meta(soup, name="twitter:title")
             or page_title
             or "Untitled")
    description = _meta(soup, property="og:description") or _meta(soup, name="description")
    og_image = _meta(soup, property="og:image") or _meta(soup, name="twitter:image")
    favicon = _link_href(soup, "icon") or _link_href(soup, "shortcut icon") or "/favicon.ico"

    def resolve(url):
        if not url:
            return None
        try:
            return urljoin(base_url, url)
        except ValueError:
            return url

    return WebsiteMetadata(
        title=title,
        description=description,
        og_image=resolve(og_image),
        favicon=resolve(favicon),
        site_name=_meta(soup, property="og:site_name"),
    )


def _remove(el: Tag):
    if not el.decomposed:
        el.decompose()


def _find_container(soup: BeautifulSoup) -> Tag:
    for selector in CONTENT_SELECTORS:
        el = soup.select_one(selector)
        if el is not None and len(el.get_text().strip()) > MIN_CONTENT_CHARS:
            return el
    return soup.body or soup


def _dimension(img: Tag, attr: str) -> int:
    match = LEADING_INT_RE.match(img.get(attr) or "")
    return int(match.group(1)) if match else 0


def _rewrite_images(container: Tag, base_url: str, media_prefix: str,
                    registry: ImageRegistry) -> List[Tuple[str, str]]:
    page_images = []
    for img in container.find_all("img"):
        width, height = _dimension(img, "width"), _dimension(img, "height")
        if 0 < width < 10 or 0 < height < 10:
            img.decompose()
            continue

        src = next((img.get(a) for a in IMAGE_SOURCE_ATTRS if img.get(a)), None)
        if not src or src == "#" or src.startswith("data:"):
            img.decompose()
            continue

        try:
            absolute = urljoin(base_url, src.strip())
        except ValueError:
            img.decompose()
            continue
        if not is_valid_http_url(absolute):
            img.decompose()
            continue

        name = registry.register(absolute)
        if (absolute, name) not in page_images:
            page_images.append((absolute, name))
        img["src"] = f"{media_prefix}{name}"
        for attr in LAZY_ATTRS:
            if attr in img.attrs:
                del img[attr]
    return page_images


def _clean_attributes(container: Tag):
    for el in container.find_all(True):
        is_code = el.name in ("code", "pre") or el.find_parent("pre") is not None
        allowed = ALLOWED_ATTRS | CODE_ATTRS if is_code else ALLOWED_ATTRS
        el.attrs = {k: v for k, v in el.attrs.items() if k in allowed}


def _remove_empty(container: Tag):
    for el in container.find_all(["div", "span", "p"]):
        if el.decomposed:
            continue
        if el.find_parent("pre") is not None or el.find(["pre", "code"]) is not None:
            continue
        if not el.get_text().strip() and el.find("img") is None:
            el.decompose()


def extract_article_content(html: str, base_url: str, media_prefix: str = "media/",
                            registry: Optional[ImageRegistry] = None) -> ExtractedArticle:
    """
    Isolate the readable article from a web page.
    Boilerplate is removed, the main container chosen, images rewritten to
    `{media_prefix}{name}` and attributes reduced to a small allowlist.
    """
    if registry is None:
        registry = ImageRegistry()

    soup = BeautifulSoup(html, "html.parser")

    for el in soup.select(", ".join(BOILERPLATE_SELECTORS)):
        _remove(el)
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    container = _find_container(soup)
    images = _rewrite_images(container, base_url, media_prefix, registry)
    _clean_attributes(container)
    _remove_empty(container)

    content = container.decode_contents() if isinstance(container, Tag) else str(container)
    return ExtractedArticle(content=content.strip(), images=images)


# --- Crawling ---

def should_ignore_path(url_path: str, ignore_paths: List[str]) -> bool:
    """'*x' matches a suffix, 'x*' a prefix, anything else a substring."""
    for pattern in ignore_paths:
        if pattern.startswith("*"):
            if url_path.endswith(pattern[1:]):
                return True
        elif pattern.endswith("*"):
            if url_path.startswith(pattern[:-1]):
                return True
        elif pattern in url_path:
            return True
    return False


def normalize_class_selector(link_class: str) -> str:
    if link_class.startswith(".") or link_class.startswith("a."):
        return link_class
    return f".{link_class}"


def normalize_url(url: str) -> str:
    """Canonical form used to detect revisits; unparseable input is returned as-is."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path or "/",
                       parts.query, parts.fragment))


def resolve_url(href: str, base_url: str) -> Optional[str]:
    try:
        return urljoin(base_url, href)
    except ValueError:
        return None


def is_valid_http_url(url) -> bool:
    if not isinstance(url, str) or not url:
        return False
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def find_next_page_url(html: str, base_url: str, link_class: str) -> Optional[str]:
    """The link to the following page: `a<link_class>` first, then rel=next."""
    soup = BeautifulSoup(html, "html.parser")
    selector = normalize_class_selector(link_class)
    if not selector.startswith("a"):
        selector = f"a{selector}"

    for candidate in (selector, 'a[rel="next"]'):
        link = soup.select_one(candidate)
        if link is not None and link.get("href"):
            next_url = resolve_url(link["href"], base_url)
            if next_url:
                logger.info("Found next page via %s: %s", candidate, next_url)
                return next_url
            logger.info("Invalid next URL: %s", link["href"])
    return None


async def crawl(client: httpx.AsyncClient, start_url: str, link_class: str,
                ignore_paths: Optional[List[str]] = None, max_pages: int = 50,
                delay: Optional[float] = None) -> List[CrawledPage]:
    """
    Follow "next page" links from start_url. Stops at a revisited URL, an
    ignored path, a fetch failure, a page without a next link or max_pages.
    """
    ignore_paths = ignore_paths or []
    if delay is None:
        delay = CRAWL_DELAY_SECONDS
    visited = set()
    pages: List[CrawledPage] = []
    current = start_url

    logger.info("Starting multi-page crawl from %s (link class %s)", start_url, link_class)

    while current and len(pages) < max_pages:
        url = normalize_url(current)
        if url in visited:
            logger.info("Already visited: %s", url)
            break
        if should_ignore_path(urlsplit(url).path, ignore_paths):
            logger.info("Ignoring path: %s", url)
            break
        visited.add(url)

        logger.info("Fetching page %d: %s", len(pages) + 1, url)
        try:
            html = await fetch_html(client, url)
        except FetchError as e:
            logger.warning("Stopping crawl, could not fetch %s: %s", url, e)
            break

        title = extract_metadata(html, url).title
        pages.append(CrawledPage(url=url, title=title, html=html))

        current = find_next_page_url(html, url, link_class)
        if current and delay > 0:
            await asyncio.sleep(delay)

    logger.info("Crawled %d pages", len(pages))
    return pages
