import json
import logging
import os
import sys
import time
from typing import Any, Dict

# Logs go to stdout as one JSON object per line so that a log shipper can
# index the extra= fields (student_id, question_id, ...) directly.
# Everything is WARNING by default, except the "exam_hwr" namespace (INFO).

_RESERVED = (
    "args", "msg", "levelname", "name", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno",
    "funcName", "created", "msecs", "relativeCreated", "thread",
    "threadName", "processName", "process", "taskName",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": time.time(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for k, v in record.__dict__.items():
            if k in _RESERVED or k.startswith("_"):
                continue
            payload.setdefault(k, v)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(verbose: bool = False, handler: logging.Handler | None = None) -> None:
    """
    Setup logging for the recognition pipeline.

    Args:
        verbose: If True, sets the exam_hwr logger to DEBUG and root logger to INFO.
                 If False, uses environment variables or defaults (WARNING for root, INFO for exam_hwr).
        handler: Handler to install on the root logger. Defaults to a JSON handler on stdout.
    """
    if verbose:
        root_level = "INFO"
        app_level = "DEBUG"
    else:
        root_level = os.environ.get("HWR_ROOT_LOG_LEVEL", "WARNING").upper()
        app_level = os.environ.get("HWR_APP_LOG_LEVEL", "INFO").upper()

    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
    # Handler should not filter - let loggers control what gets through
    handler.setLevel(logging.DEBUG if verbose else logging.INFO)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(root_level)
    root.addHandler(handler)

    app_logger = logging.getLogger("exam_hwr")
    app_logger.setLevel(app_level)
    app_logger.propagate = True

    # Per-line inference/decoding timings - ERROR by default, too chatty otherwise
    timings_level = os.environ.get("HWR_TIMINGS_LOG_LEVEL", "ERROR").upper()
    if verbose:
        timings_level = "INFO"
    timings_logger = logging.getLogger("exam_hwr_timings")
    timings_logger.setLevel(timings_level)
    timings_logger.propagate = True

    # onnxruntime is noisy about provider fallbacks on CPU-only hosts
    logging.getLogger("onnxruntime").setLevel(logging.ERROR)
