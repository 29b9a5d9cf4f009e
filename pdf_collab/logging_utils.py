import logging
from logging.handlers import RotatingFileHandler
from typing import Optional


def configure_logging(level: str = 'INFO', log_path: Optional[str] = None) -> None:
    """Configure root logging once: console always, rotating file when a path is given."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Repeated app creation (tests, reloader) must not stack handlers.
    if getattr(root, '_pdf_collab_configured', False):
        return

    fmt = logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )

    console = logging.StreamHandler()
    console.setFormatter(fmt)
    root.addHandler(console)

    if log_path:
        file_handler = RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=3, encoding='utf-8')
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)

    setattr(root, '_pdf_collab_configured', True)
