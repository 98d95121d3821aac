import faulthandler
import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional

APP_LOGGER = "mint"

_FORMAT = "[%(asctime)s] [%(name)s] %(message)s"
_DATE_FORMAT = "%H:%M:%S"

# Third-party loggers that only reach the file at WARNING and above.
_QUIET_LOGGERS = ("aiohttp", "urllib3", "asyncio", "multipart")

_crash_file_handle: Optional[object] = None


def _handlers(log_path: str) -> list[logging.Handler]:
    formatter = logging.Formatter(_FORMAT, _DATE_FORMAT)

    file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.name = "mint_file"

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(logging.INFO)
    stream_handler.name = "mint_stream"

    for handler in (file_handler, stream_handler):
        handler.setFormatter(formatter)
    return [file_handler, stream_handler]


def _attach(logger: logging.Logger, handlers: list[logging.Handler], level: int) -> None:
    for previous in list(logger.handlers):
        logger.removeHandler(previous)
        if previous.name in ("mint_file", "mint_stream"):
            previous.close()
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False


def configure_logging(logs_dir: str) -> str:
    """
    Route the ``mint.*`` tree (audio, transcription, merge, meetings, recording,
    notes, llm, api) to a rotating DEBUG file and an INFO console stream.
    uvicorn logs share the handlers; everything else is held to WARNING.
    """
    os.makedirs(logs_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_path = os.path.join(logs_dir, f"mint_{timestamp}.log")
    handlers = _handlers(log_path)

    _attach(logging.getLogger(APP_LOGGER), handlers, logging.DEBUG)
    _attach(logging.getLogger(), handlers, logging.WARNING)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        _attach(logging.getLogger(name), handlers, logging.INFO)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(f"{APP_LOGGER}.boot").info("Logging initialized: %s", log_path)
    return log_path


def enable_crash_logging(logs_dir: str) -> str:
    """Dump tracebacks of all threads to crash.log on fatal signals."""
    global _crash_file_handle
    os.makedirs(logs_dir, exist_ok=True)
    crash_log_path = os.path.join(logs_dir, "crash.log")
    if _crash_file_handle is None:
        _crash_file_handle = open(crash_log_path, "a", encoding="utf-8")
        faulthandler.enable(file=_crash_file_handle, all_threads=True)
    return crash_log_path
