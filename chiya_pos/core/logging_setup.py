from __future__ import annotations

import json
import logging
import os

_TERMINAL_ID = "-"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "terminal": _TERMINAL_ID,
        }
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


def setup_logging(level: str | None = None, json_output: bool = False, terminal_id: str | None = None) -> None:
    global _TERMINAL_ID
    if terminal_id:
        _TERMINAL_ID = terminal_id
    lvl = getattr(logging, (level or os.getenv("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
    root.addHandler(handler)
    root.setLevel(lvl)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(lvl, logging.WARNING))
