"""
Runtime configuration for the library server.
Values come from environment variables so the launcher, the importer and
the tests can point the server at different library roots.
"""

import os
from dataclasses import dataclass, field


@dataclass
class Settings:
    """Filesystem locations and service options."""
    root_dir: str = field(default_factory=os.getcwd)
    host: str = "127.0.0.1"
    port: int = 3001
    pandoc_path: str = "pandoc"
    fetch_timeout: float = 30.0
    image_timeout: float = 15.0
    log_level: str = "info"

    @property
    def converted_dir(self) -> str:
        return os.path.join(self.root_dir, "converted")

    @property
    def uploads_dir(self) -> str:
        return os.path.join(self.root_dir, "uploads")

    @property
    def db_path(self) -> str:
        return os.path.join(self.root_dir, "data", "library.db")

    def book_dir(self, book_id: str) -> str:
        """Directory holding every file of one book."""
        return os.path.join(self.converted_dir, os.path.basename(book_id))

    def ensure_dirs(self):
        for path in (self.converted_dir, self.uploads_dir, os.path.dirname(self.db_path)):
            os.makedirs(path, exist_ok=True)


def load_settings() -> Settings:
    """Build settings from the environment."""
    env = os.environ
    return Settings(
        root_dir=env.get("LIBRARY_ROOT") or os.getcwd(),
        host=env.get("LIBRARY_HOST", "127.0.0.1"),
        port=int(env.get("PORT", "3001")),
        pandoc_path=env.get("PANDOC_PATH", "pandoc"),
        fetch_timeout=float(env.get("FETCH_TIMEOUT", "30")),
        image_timeout=float(env.get("IMAGE_TIMEOUT", "15")),
        log_level=env.get("LOG_LEVEL", "info").lower(),
    )
