from datetime import datetime
from pytz import timezone
import logging.config
import logging
import os
from logging import Logger


DEFAULT_TIMEZONE = "Asia/Kuala_Lumpur"
LOG_FORMAT_FILE = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
LOG_FORMAT_CONSOLE = "%(asctime)s - %(levelname)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

_ANSI_RESET = "\033[0m"
_COLOR_MAP: dict[str, str] = {
    "cyan":    "\033[36m",
    "green":   "\033[32m",
    "yellow":  "\033[33m",
    "red":     "\033[31m",
    "magenta": "\033[35m",
    "blue":    "\033[34m",
}


def is_debug_mode() -> bool:
    return os.getenv("LOG_LEVEL", "info").lower() == "debug"


class RegistryTimeFormatter(logging.Formatter):
    """Renders timestamps in the registry's local timezone and prefixes warnings and errors."""

    def __init__(self, tz_name, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tz = timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, self.tz)
        return dt.strftime(datefmt) if datefmt else dt.isoformat()

    def format(self, record):
        message = record.getMessage()
        if record.levelno >= logging.ERROR:
            message = "⛔ " + message
        elif record.levelno == logging.WARNING:
            message = "⚠️ " + message

        # work on a copy so the file handler does not see the console prefix twice
        record = logging.makeLogRecord(record.__dict__)
        record.msg = message
        record.args = ()
        return super().format(record)


class ColoredFormatter(RegistryTimeFormatter):
    """Console formatter. Colors a line when its record carries a ``color`` attribute."""

    def format(self, record) -> str:
        line = super().format(record)
        ansi = _COLOR_MAP.get(getattr(record, "color", None) or "", "")
        return f"{ansi}{line}{_ANSI_RESET}" if ansi else line


class ColorLogger:
    """
    Wraps a :class:`logging.Logger` and accepts an optional ``color=`` keyword on
    every log call, e.g. ``logger.info("Sync complete", color="green")``.
    Only the console handler renders the color.
    """

    def __init__(self, logger: Logger):
        self._logger = logger

    def _log(self, level: int, msg, args: tuple, color: str | None, kwargs: dict) -> None:
        if color is not None:
            kwargs["extra"] = {**(kwargs.get("extra") or {}), "color": color}
        kwargs.setdefault("stacklevel", 3)
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.DEBUG, msg, args, color, kwargs)

    def info(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.INFO, msg, args, color, kwargs)

    def warning(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.WARNING, msg, args, color, kwargs)

    def error(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.ERROR, msg, args, color, kwargs)

    def exception(self, msg, *args, color: str | None = None, **kwargs):
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, args, color, kwargs)

    def __getattr__(self, name):
        # setLevel, handlers, isEnabledFor, ...
        return getattr(self._logger, name)


def setup_logging(name: str = "einvoice_sync") -> ColorLogger:
    """Configure console and file logging and return the application logger.

    Reads LOG_LEVEL (``debug`` enables debug output everywhere), LOG_DIR (default
    ``./logs``) and TIMEZONE (default the registry's local zone).
    """
    debug_mode = is_debug_mode()
    loglevel = logging.DEBUG if debug_mode else logging.INFO
    log_dir = os.getenv("LOG_DIR") or os.path.join(os.getcwd(), "logs")
    tz_name = os.getenv("TIMEZONE", DEFAULT_TIMEZONE)
    os.makedirs(log_dir, exist_ok=True)

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "file": {
                "()": RegistryTimeFormatter,
                "format": LOG_FORMAT_FILE,
                "datefmt": LOG_DATEFMT,
                "tz_name": tz_name,
            },
            "console": {
                "()": ColoredFormatter,
                "format": LOG_FORMAT_CONSOLE,
                "datefmt": LOG_DATEFMT,
                "tz_name": tz_name,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "console",
                "level": loglevel,
                "stream": "ext://sys.stdout",
            },
            "file": {
                "class": "logging.FileHandler",
                "formatter": "file",
                "level": loglevel,
                "filename": os.path.join(log_dir, "sync.log"),
                "encoding": "utf-8",
            },
        },
        "root": {
            "handlers": ["console", "file"],
            "level": loglevel,
        },
    })

    # per-request client and SQL logs only in debug mode
    quiet_level = logging.DEBUG if debug_mode else logging.WARNING
    for noisy in ("httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(quiet_level)

    return ColorLogger(logging.getLogger(name))
