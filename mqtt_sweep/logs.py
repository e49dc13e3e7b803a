"""
Logging setup.

Two sinks hang off the ``mqtt_sweep`` logger: a coloured console handler and a
JSON-lines file handler under ``logs/``, both fed from a queue by a listener
thread. Actors never use a module-global
logger; each gets an ``ActorLogger`` at construction whose context map
(role, client id, ...) is attached to every record it emits.
"""

import json
import logging
import logging.handlers
import os
import queue
from datetime import datetime, timezone

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

ROOT_LOGGER = "mqtt_sweep"

_listener: logging.handlers.QueueListener | None = None


class C:
    OK   = "\033[92m"
    FAIL = "\033[91m"
    WARN = "\033[93m"
    INFO = "\033[94m"
    CYAN = "\033[96m"
    BOLD = "\033[1m"
    DIM  = "\033[2m"
    END  = "\033[0m"


LEVEL_COLORS = {
    TRACE:            C.DIM,
    logging.DEBUG:    C.DIM,
    logging.INFO:     C.INFO,
    logging.WARNING:  C.WARN,
    logging.ERROR:    C.FAIL,
    logging.CRITICAL: C.BOLD + C.FAIL,
}


# --------------------------------------------------------------------------- #
# Formatters
# --------------------------------------------------------------------------- #
def _context_of(record: logging.LogRecord) -> dict:
    return getattr(record, "context", None) or {}


class ConsoleFormatter(logging.Formatter):
    """Coloured single-line records with the actor context appended."""

    def __init__(self, color: bool = True):
        super().__init__("%(asctime)s %(levelname)-8s [%(threadName)s] %(message)s",
                         datefmt="%H:%M:%S")
        self.color = color

    def format(self, record):
        line = super().format(record)
        ctx = _context_of(record)
        if ctx:
            line += "  " + " ".join(f"{k}={v}" for k, v in ctx.items())
        if self.color:
            line = f"{LEVEL_COLORS.get(record.levelno, '')}{line}{C.END}"
        return line


class JsonFormatter(logging.Formatter):
    """One JSON object per line, context keys merged at top level."""

    def format(self, record):
        obj = {
            "ts":     datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level":  record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg":    record.getMessage(),
        }
        obj.update(_context_of(record))
        if record.exc_info:
            obj["exc"] = self.formatException(record.exc_info)
        return json.dumps(obj, separators=(",", ":"), default=str)


# --------------------------------------------------------------------------- #
# Actor loggers
# --------------------------------------------------------------------------- #
class ActorLogger(logging.LoggerAdapter):
    """LoggerAdapter carrying a structured context map."""

    def process(self, msg, kwargs):
        extra = kwargs.setdefault("extra", {})
        extra["context"] = {**self.extra, **extra.get("context", {})}
        return msg, kwargs

    def trace(self, msg, *args, **kwargs):
        self.log(TRACE, msg, *args, **kwargs)

    def bind(self, **context) -> "ActorLogger":
        """Child adapter with additional context."""
        return ActorLogger(self.logger, {**self.extra, **context})


def actor_logger(parent=None, role: str = "main", **context) -> ActorLogger:
    if parent is None:
        parent = logging.getLogger(ROOT_LOGGER)
    elif isinstance(parent, logging.LoggerAdapter):
        context = {**parent.extra, **context}
        parent = parent.logger
    context.pop("role", None)
    return ActorLogger(parent, {"role": role, **context})


# --------------------------------------------------------------------------- #
# Initialisation
# --------------------------------------------------------------------------- #
def level_from_name(name: str) -> int:
    value = logging.getLevelName(name.upper())
    if not isinstance(value, int):
        raise ValueError(f"unknown log level: {name}")
    return value


def shutdown_logging():
    """Drain queued records into the sinks and close them. Idempotent."""
    global _listener
    if _listener is None:
        return
    _listener.stop()
    for h in _listener.handlers:
        h.close()
    _listener = None


def initialize_logging(prefix: str = "", log_dir: str = "logs",
                       level: str = "INFO", color: bool = True) -> logging.Logger:
    """
    Configure the ``mqtt_sweep`` logger with console and JSON file sinks.

    Records are handed to a QueueListener thread so actors never block on
    console or file I/O; call ``shutdown_logging()`` to flush before exit.
    Safe to call more than once: previous handlers are closed and replaced.
    """
    global _listener
    levelno = level_from_name(level)

    if os.path.isdir(log_dir):
        dir_message = "Logging directory already exists, skipping"
    else:
        os.makedirs(log_dir, exist_ok=True)
        dir_message = "Created logging directory"

    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    log_path = os.path.join(log_dir, f"{prefix}{stamp}.log")

    shutdown_logging()
    logger = logging.getLogger(ROOT_LOGGER)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    console = logging.StreamHandler()
    console.setFormatter(ConsoleFormatter(color=color))
    file_handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    file_handler.setFormatter(JsonFormatter())

    records = queue.SimpleQueue()
    logger.addHandler(logging.handlers.QueueHandler(records))
    _listener = logging.handlers.QueueListener(records, console, file_handler,
                                               respect_handler_level=True)
    _listener.start()
    logger.setLevel(levelno)
    logger.propagate = False

    logger.info(dir_message)
    logger.debug("Logging to %s", log_path)
    return logger
