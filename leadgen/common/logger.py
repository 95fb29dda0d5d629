"""
Logging setup for the lead generation pipeline.

Every log line about a work item carries the item id and, when known, the
stage, so one post can be followed through the whole pipeline with a grep.
"""

import json
import logging
import sys
from typing import Any, MutableMapping, Optional, Tuple

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "pymongo")


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with the item and stage context when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in ("item_id", "stage"):
            value = getattr(record, key, None)
            if value:
                entry[key] = value
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class PipelineLogger(logging.LoggerAdapter):
    """
    Logger adapter that prefixes messages with "[item:<id>] [<stage>]".

    Item ids are cut to 12 characters to keep lines readable.
    """

    def __init__(self, name: str, item_id: Optional[str] = None, stage: Optional[str] = None):
        super().__init__(logging.getLogger(name), {"item_id": item_id, "stage": stage})

    @property
    def item_id(self) -> Optional[str]:
        return self.extra["item_id"]

    @property
    def stage(self) -> Optional[str]:
        return self.extra["stage"]

    def prefix(self, message: str) -> str:
        tags = []
        if self.item_id:
            tags.append(f"[item:{str(self.item_id)[:12]}]")
        if self.stage:
            tags.append(f"[{self.stage}]")
        return " ".join(tags + [message]) if tags else message

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[str, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return self.prefix(str(msg)), kwargs


def setup_logging(level: str = "INFO", format: str = "text") -> None:
    """
    Configure the root logger once at process start.

    Args:
        level: DEBUG, INFO, WARNING or ERROR (unknown values mean INFO)
        format: "text" or "json"
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    stdout = logging.StreamHandler(sys.stdout)
    if format == "json":
        stdout.setFormatter(JsonFormatter(datefmt=DATE_FORMAT))
    else:
        stdout.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT))

    root = logging.getLogger()
    root.handlers = [stdout]
    root.setLevel(log_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def get_logger(name: str, item_id: Optional[str] = None, stage: Optional[str] = None) -> PipelineLogger:
    return PipelineLogger(name, item_id, stage)
