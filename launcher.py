import sys
import threading
import time
import webbrowser
from copy import deepcopy
from typing import Any, Dict

import uvicorn
from uvicorn.config import LOGGING_CONFIG

from config import Settings, load_settings

APP_LOGGERS = (
    "server",
    "converter",
    "splitter",
    "page_store",
    "web_capture",
    "library_db",
    "ai_settings",
    "importer",
)


def build_log_config(level: str = "info") -> Dict[str, Any]:
    """Uvicorn's logging config, extended so the application modules log too."""
    config = deepcopy(LOGGING_CONFIG)
    config["formatters"]["app"] = {
        "()": "uvicorn.logging.DefaultFormatter",
        "fmt": "%(levelprefix)s %(name)s: %(message)s",
        "use_colors": None,
    }
    config["handlers"]["app"] = {
        "formatter": "app",
        "class": "logging.StreamHandler",
        "stream": "ext://sys.stderr",
    }
    for name in APP_LOGGERS:
        config["loggers"][name] = {
            "handlers": ["app"],
            "level": level.upper(),
            "propagate": False,
        }
    return config


def open_browser(url: str):
    """Open the library after a short delay so the server is accepting requests."""
    time.sleep(2)
    webbrowser.open(url)


def main(settings: Settings = None):
    settings = settings or load_settings()
    settings.ensure_dirs()

    if "--no-browser" not in sys.argv[1:]:
        url = f"http://{settings.host}:{settings.port}"
        threading.Thread(target=open_browser, args=(url,), daemon=True).start()

    uvicorn.run(
        "server:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        log_config=build_log_config(settings.log_level),
    )


if __name__ == "__main__":
    main()
