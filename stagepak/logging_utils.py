"""Logging helpers: route records through tqdm so progress bars stay intact."""

from __future__ import annotations

import io
import logging
import os
import sys
from pathlib import Path

from tqdm import tqdm


class TqdmLoggingHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            stream = getattr(sys, "stderr", None)
            if stream is not None and hasattr(stream, "write"):
                tqdm.write(msg, file=stream)
        except Exception:
            self.handleError(record)


def configure_logging(level: int = logging.INFO, log_path: str | Path | None = None) -> None:
    """Configure default logging if no handlers are present."""
    root = logging.getLogger()
    if root.handlers:
        return
    handlers: list[logging.Handler] = [TqdmLoggingHandler()]
    if log_path:
        path = Path(log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )


def tqdm_file():
    """
    Return a file-like object for tqdm to write to.
    Without a real stderr (embedded/frozen runs) fall back to a sink.
    """
    f = getattr(sys, "stderr", None)
    return f if (f is not None and hasattr(f, "write")) else io.StringIO()


def tqdm_disable() -> bool:
    """
    Disable tqdm when there is no real stderr or when explicitly requested.
    Env override: STAGEPAK_TQDM=0 forces enable, =1 forces disable.
    """
    env = os.environ.get("STAGEPAK_TQDM")
    if env == "0":
        return False
    if env == "1":
        return True
    f = getattr(sys, "stderr", None)
    return not (f is not None and hasattr(f, "write"))


def progress(total: int, desc: str, unit: str = "file") -> tqdm:
    return tqdm(total=total, desc=desc, unit=unit, file=tqdm_file(), disable=tqdm_disable())
