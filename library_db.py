"""
SQLite-backed library store.
Holds books, bookmarks, clips, notes, tags, reading progress and AI
provider settings. Page content lives on disk (see page_store).
"""

import logging
import os
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

logger = logging.getLogger(__name__)

PROTECTED_TAG = "to-read"
WEB_TAG = "web"
DEFAULT_TAG_COLOR = "#667eea"


@dataclass
class Book:
    """A library entry. Pages are stored under converted/{id}/."""
    id: str
    title: str
    original_filename: Optional[str] = None
    total_pages: int = 1
    pdf_total_pages: Optional[int] = None
    category: Optional[str] = None
    language: str = "en"
    book_type: str = "epub"  # epub, pdf, markdown, website
    source_url: Optional[str] = None
    ai_context: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    current_page: Optional[int] = None
    tags: List["Tag"] = field(default_factory=list)


@dataclass
class Bookmark:
    id: str
    book_id: str
    page_num: int
    note: Optional[str] = None
    created_at: str = ""


@dataclass
class ClipPosition:
    """Clip rectangle, each value normalized to the rendered page size."""
    x_ratio: float
    y_ratio: float
    width_ratio: float
    height_ratio: float


@dataclass
class Clip:
    """A screenshot region captured from a rendered page."""
    id: str
    book_id: str
    page_num: int
    image_data: str  # data URL
    note: Optional[str] = None
    x_ratio: Optional[float] = None
    y_ratio: Optional[float] = None
    width_ratio: Optional[float] = None
    height_ratio: Optional[float] = None
    created_at: str = ""


@dataclass
class Note:
    """A note inserted into a page at a character position."""
    id: str
    book_id: str
    page_num: int
    content: str = ""
    position: int = 0
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Tag:
    id: str
    name: str
    color: str = DEFAULT_TAG_COLOR


@dataclass
class ReadingProgress:
    book_id: str
    current_page: int = 1
    updated_at: str = ""


@dataclass
class AISetting:
    """API credentials for one cloud AI provider."""
    provider: str
    api_key: str
    model: Optional[str] = None
    updated_at: str = ""


class TagExistsError(ValueError):
    """A tag with this name already exists."""


class ProtectedTagError(ValueError):
    """The tag cannot be deleted."""


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS books (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    original_filename TEXT,
    total_pages INTEGER DEFAULT 1,
    category TEXT,
    language TEXT DEFAULT 'en',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS bookmarks (
    id TEXT PRIMARY KEY,
    book_id TEXT NOT NULL,
    page_num INTEGER NOT NULL,
    note TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS reading_progress (
    book_id TEXT PRIMARY KEY,
    current_page INTEGER DEFAULT 1,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS clips (
    id TEXT PRIMARY KEY,
    book_id TEXT NOT NULL,
    page_num INTEGER NOT NULL,
    image_data TEXT NOT NULL,
    note TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS notes (
    id TEXT PRIMARY KEY,
    book_id TEXT NOT NULL,
    page_num INTEGER NOT NULL,
    content TEXT DEFAULT '',
    position INTEGER DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS tags (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    color TEXT DEFAULT '#667eea'
);
CREATE TABLE IF NOT EXISTS book_tags (
    book_id TEXT NOT NULL,
    tag_id TEXT NOT NULL,
    PRIMARY KEY (book_id, tag_id),
    FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE,
    FOREIGN KEY (tag_id) REFERENCES tags(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS ai_settings (
    provider TEXT PRIMARY KEY,
    api_key TEXT NOT NULL,
    model TEXT,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_bookmarks_book_id ON bookmarks(book_id);
CREATE INDEX IF NOT EXISTS idx_clips_book_id ON clips(book_id);
CREATE INDEX IF NOT EXISTS idx_notes_book_id ON notes(book_id);
"""

# Columns added after the first release: table -> [(column, definition)]
MIGRATIONS = {
    "books": [
        ("language", "TEXT DEFAULT 'en'"),
        ("book_type", "TEXT DEFAULT 'epub'"),
        ("source_url", "TEXT"),
        ("ai_context", "TEXT"),
        ("pdf_total_pages", "INTEGER"),
    ],
    "clips": [
        ("x_ratio", "REAL"),
        ("y_ratio", "REAL"),
        ("width_ratio", "REAL"),
        ("height_ratio", "REAL"),
    ],
}


def generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.now().isoformat()


class LibraryStore:
    """Manages library persistence in a single SQLite database."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def conn(self) -> sqlite3.Connection:
        """Open the database on first use and run migrations."""
        if self._conn is None:
            self._conn = self._connect()
        return self._conn

    def _connect(self) -> sqlite3.Connection:
        data_dir = os.path.dirname(self.db_path)
        if data_dir:
            os.makedirs(data_dir, exist_ok=True)
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.executescript(SCHEMA_SQL)
        for table, columns in MIGRATIONS.items():
            existing = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})")}
            for name, definition in columns:
                if name not in existing:
                    conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {definition}")
        for name in (PROTECTED_TAG, WEB_TAG):
            conn.execute(
                "INSERT OR IGNORE INTO tags (id, name, color) VALUES (?, ?, ?)",
                (generate_id(), name, DEFAULT_TAG_COLOR),
            )
        conn.commit()
        logger.debug("Opened library database %s", self.db_path)
        return conn

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # Books
    def add_book(self, book_id: str, title: str, original_filename: Optional[str],
                 total_pages: int, book_type: str = "epub",
                 source_url: Optional[str] = None, category: Optional[str] = None,
                 language: str = "en", pdf_total_pages: Optional[int] = None) -> Book:
        """Insert a new book row."""
        now = now_iso()
        self.conn.execute(
            """
            INSERT INTO books (id, title, original_filename, total_pages, book_type,
                               source_url, category, language, pdf_total_pages,
                               created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (book_id, title, original_filename, total_pages, book_type,
             source_url, category, language, pdf_total_pages, now, now),
        )
        self.conn.commit()
        return self.get_book(book_id)

    def _book_from_row(self, row: sqlite3.Row) -> Book:
        book = Book(**dict(row))
        book.tags = self.get_book_tags(book.id)
        return book

    def get_all_books(self) -> List[Book]:
        """All books, most recently touched first."""
        rows = self.conn.execute(
            """
            SELECT b.*, rp.current_page
            FROM books b
            LEFT JOIN reading_progress rp ON b.id = rp.book_id
            ORDER BY b.updated_at DESC
            """
        ).fetchall()
        return [self._book_from_row(row) for row in rows]

    def get_book(self, book_id: str) -> Optional[Book]:
        row = self.conn.execute(
            """
            SELECT b.*, rp.current_page
            FROM books b
            LEFT JOIN reading_progress rp ON b.id = rp.book_id
            WHERE b.id = ?
            """,
            (book_id,),
        ).fetchone()
        if row:
            return self._book_from_row(row)
        return None

    def update_book(self, book_id: str, title: Optional[str] = None,
                    language: Optional[str] = None,
                    ai_context: Optional[str] = None) -> Optional[Book]:
        """Update editable fields. Returns None if nothing changed or book is unknown."""
        updates = []
        values: list = []
        for column, value in (("title", title), ("language", language), ("ai_context", ai_context)):
            if value is not None:
                updates.append(f"{column} = ?")
                values.append(value)
        if not updates:
            return None

        updates.append("updated_at = ?")
        values.append(now_iso())
        values.append(book_id)
        cursor = self.conn.execute(
            f"UPDATE books SET {', '.join(updates)} WHERE id = ?", values
        )
        self.conn.commit()
        if cursor.rowcount == 0:
            return None
        return self.get_book(book_id)

    def update_pdf_total_pages(self, book_id: str, total_pages: int) -> bool:
        cursor = self.conn.execute(
            "UPDATE books SET pdf_total_pages = ? WHERE id = ?", (total_pages, book_id)
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def delete_book(self, book_id: str) -> bool:
        """Delete a book; bookmarks, clips, notes, progress and tag links cascade."""
        cursor = self.conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        self.conn.commit()
        return cursor.rowcount > 0

    # Bookmarks
    def add_bookmark(self, book_id: str, page_num: int, note: str = "") -> Bookmark:
        bookmark = Bookmark(id=generate_id(), book_id=book_id, page_num=page_num,
                            note=note, created_at=now_iso())
        self.conn.execute(
            "INSERT INTO bookmarks (id, book_id, page_num, note, created_at) VALUES (?, ?, ?, ?, ?)",
            (bookmark.id, book_id, page_num, note, bookmark.created_at),
        )
        self.conn.commit()
        return bookmark

    def get_bookmarks(self, book_id: str) -> List[Bookmark]:
        rows = self.conn.execute(
            "SELECT * FROM bookmarks WHERE book_id = ? ORDER BY page_num, created_at",
            (book_id,),
        ).fetchall()
        return [Bookmark(**dict(row)) for row in rows]

    def delete_bookmark(self, bookmark_id: str) -> bool:
        cursor = self.conn.execute("DELETE FROM bookmarks WHERE id = ?", (bookmark_id,))
        self.conn.commit()
        return cursor.rowcount > 0

    # Clips
    def add_clip(self, book_id: str, page_num: int, image_data: str, note: str = "",
                 position: Optional[ClipPosition] = None) -> Clip:
        """Store a captured screenshot, optionally with its page rectangle."""
        clip = Clip(id=generate_id(), book_id=book_id, page_num=page_num,
                    image_data=image_data, note=note, created_at=now_iso())
        if position is not None:
            clip.x_ratio = position.x_ratio
            clip.y_ratio = position.y_ratio
            clip.width_ratio = position.width_ratio
            clip.height_ratio = position.height_ratio
        self.conn.execute(
            """
            INSERT INTO clips (id, book_id, page_num, image_data, note,
                               x_ratio, y_ratio, width_ratio, height_ratio, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (clip.id, book_id, page_num, image_data, note, clip.x_ratio, clip.y_ratio,
             clip.width_ratio, clip.height_ratio, clip.created_at),
        )
        self.conn.commit()
        return clip

    def get_clips(self, book_id: str) -> List[Clip]:
        rows = self.conn.execute(
            """
            SELECT id, book_id, page_num, image_data, note, x_ratio, y_ratio,
                   width_ratio, height_ratio, created_at
            FROM clips WHERE book_id = ? ORDER BY created_at DESC
            """,
            (book_id,),
        ).fetchall()
        return [Clip(**dict(row)) for row in rows]

    def get_clip(self, clip_id: str) -> Optional[Clip]:
        row = self.conn.execute(
            """
            SELECT id, book_id, page_num, image_data, note, x_ratio, y_ratio,
                   width_ratio, height_ratio, created_at
            FROM clips WHERE id = ?
            """,
            (clip_id,),
        ).fetchone()
        return Clip(**dict(row)) if row else None

    def delete_clip(self, clip_id: str) -> bool:
        cursor = self.conn.execute("DELETE FROM clips WHERE id = ?", (clip_id,))
        self.conn.commit()
        return cursor.rowcount > 0

    # Notes
    def add_note(self, book_id: str, page_num: int, content: str = "", position: int = 0) -> Note:
        now = now_iso()
        note = Note(id=generate_id(), book_id=book_id, page_num=page_num,
                    content=content, position=position, created_at=now, updated_at=now)
        self.conn.execute(
            """
            INSERT INTO notes (id, book_id, page_num, content, position, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (note.id, book_id, page_num, content, position, now, now),
        )
        self.conn.commit()
        return note

    def get_notes(self, book_id: str) -> List[Note]:
        rows = self.conn.execute(
            "SELECT * FROM notes WHERE book_id = ? ORDER BY page_num, position",
            (book_id,),
        ).fetchall()
        return [Note(**dict(row)) for row in rows]

    def update_note(self, note_id: str, content: str) -> Optional[Note]:
        cursor = self.conn.execute(
            "UPDATE notes SET content = ?, updated_at = ? WHERE id = ?",
            (content, now_iso(), note_id),
        )
        self.conn.commit()
        if cursor.rowcount == 0:
            return None
        row = self.conn.execute("SELECT * FROM notes WHERE id = ?", (note_id,)).fetchone()
        return Note(**dict(row))

    def delete_note(self, note_id: str) -> bool:
        cursor = self.conn.execute("DELETE FROM notes WHERE id = ?", (note_id,))
        self.conn.commit()
        return cursor.rowcount > 0

    # Tags
    def get_all_tags(self) -> List[Tag]:
        rows = self.conn.execute("SELECT id, name, color FROM tags ORDER BY name").fetchall()
        return [Tag(**dict(row)) for row in rows]

    def get_tag_by_name(self, name: str) -> Optional[Tag]:
        row = self.conn.execute(
            "SELECT id, name, color FROM tags WHERE name = ?", (name,)
        ).fetchone()
        return Tag(**dict(row)) if row else None

    def create_tag(self, name: str, color: str = DEFAULT_TAG_COLOR) -> Tag:
        tag = Tag(id=generate_id(), name=name, color=color)
        try:
            self.conn.execute(
                "INSERT INTO tags (id, name, color) VALUES (?, ?, ?)",
                (tag.id, tag.name, tag.color),
            )
        except sqlite3.IntegrityError as e:
            raise TagExistsError(f"Tag already exists: {name}") from e
        self.conn.commit()
        return tag

    def delete_tag(self, tag_id: str) -> bool:
        row = self.conn.execute("SELECT name FROM tags WHERE id = ?", (tag_id,)).fetchone()
        if row is None:
            return False
        if row["name"] == PROTECTED_TAG:
            raise ProtectedTagError(f"The '{PROTECTED_TAG}' tag cannot be deleted")
        self.conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))
        self.conn.commit()
        return True

    def get_book_tags(self, book_id: str) -> List[Tag]:
        rows = self.conn.execute(
            """
            SELECT t.id, t.name, t.color FROM tags t
            JOIN book_tags bt ON bt.tag_id = t.id
            WHERE bt.book_id = ?
            ORDER BY t.name
            """,
            (book_id,),
        ).fetchall()
        return [Tag(**dict(row)) for row in rows]

    def add_tag_to_book(self, book_id: str, tag_id: str):
        """Link a tag to a book. Linking twice is a no-op."""
        self.conn.execute(
            "INSERT OR IGNORE INTO book_tags (book_id, tag_id) VALUES (?, ?)",
            (book_id, tag_id),
        )
        self.conn.commit()

    def remove_tag_from_book(self, book_id: str, tag_id: str) -> bool:
        cursor = self.conn.execute(
            "DELETE FROM book_tags WHERE book_id = ? AND tag_id = ?", (book_id, tag_id)
        )
        self.conn.commit()
        return cursor.rowcount > 0

    # Reading Progress
    def save_progress(self, book_id: str, current_page: int) -> ReadingProgress:
        """Record the current page and mark the book as recently read."""
        now = now_iso()
        self.conn.execute(
            """
            INSERT INTO reading_progress (book_id, current_page, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(book_id) DO UPDATE SET
                current_page = excluded.current_page,
                updated_at = excluded.updated_at
            """,
            (book_id, current_page, now),
        )
        self.conn.execute("UPDATE books SET updated_at = ? WHERE id = ?", (now, book_id))
        self.conn.commit()
        return ReadingProgress(book_id=book_id, current_page=current_page, updated_at=now)

    def get_progress(self, book_id: str) -> Optional[ReadingProgress]:
        row = self.conn.execute(
            "SELECT * FROM reading_progress WHERE book_id = ?", (book_id,)
        ).fetchone()
        return ReadingProgress(**dict(row)) if row else None

    # AI settings
    def get_ai_settings(self) -> List[AISetting]:
        rows = self.conn.execute("SELECT * FROM ai_settings ORDER BY provider").fetchall()
        return [AISetting(**dict(row)) for row in rows]

    def get_ai_setting(self, provider: str) -> Optional[AISetting]:
        row = self.conn.execute(
            "SELECT * FROM ai_settings WHERE provider = ?", (provider,)
        ).fetchone()
        return AISetting(**dict(row)) if row else None

    def save_ai_setting(self, provider: str, api_key: str, model: Optional[str] = None) -> AISetting:
        now = now_iso()
        self.conn.execute(
            """
            INSERT INTO ai_settings (provider, api_key, model, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(provider) DO UPDATE SET
                api_key = excluded.api_key,
                model = excluded.model,
                updated_at = excluded.updated_at
            """,
            (provider, api_key, model, now),
        )
        self.conn.commit()
        return AISetting(provider=provider, api_key=api_key, model=model, updated_at=now)

    def delete_ai_setting(self, provider: str) -> bool:
        cursor = self.conn.execute("DELETE FROM ai_settings WHERE provider = ?", (provider,))
        self.conn.commit()
        return cursor.rowcount > 0
