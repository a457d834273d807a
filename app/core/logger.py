# app/core/logger.py
from __future__ import annotations

"""
FanVault Media — Logging (Loguru)
---------------------------------
- Pretty console logs by default; optional JSON logs via `LOG_JSON=1`
- Structured context: `extra={...}` fields on stdlib records (content_id,
  owner_id, label, ...) are carried into Loguru and the JSON payload
- Intercepts stdlib/uvicorn/fastapi/starlette and `app.*` logs into Loguru
- Optional file sink with rotation

Env
---
LOG_LEVEL=INFO|DEBUG|WARNING|ERROR (default: INFO)
LOG_JSON=1 (enable JSON logs; pretty logs otherwise)
LOG_TO_FILE=1 (write logs/app.log with rotation; default: 0)
LOG_DIR=logs
LOG_FILE=app.log
LOG_ROTATION=10 MB
APP_DEBUG=1 (enables backtrace/diagnose in console sink)
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv
from loguru import logger

# ─────────────────────────────────────────────────────────────
# ⚙️ Env
# ─────────────────────────────────────────────────────────────
load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_JSON = os.getenv("LOG_JSON", "0").lower() in {"1", "true", "yes"}
APP_DEBUG = os.getenv("APP_DEBUG", "0").lower() in {"1", "true", "yes"}

LOG_TO_FILE = os.getenv("LOG_TO_FILE", "0").lower() in {"1", "true", "yes"}
LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
LOG_FILE = os.getenv("LOG_FILE", "app.log")
LOG_ROTATION = os.getenv("LOG_ROTATION", "10 MB")

# Attributes every LogRecord has; anything else came in through `extra=`.
_STD_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

logger.remove()


# ─────────────────────────────────────────────────────────────
# 🧾 Formatters
# ─────────────────────────────────────────────────────────────
def _fmt_pretty(record):
    """Colorized single-line formatter; appends structured context when present."""
    safe_name = record["name"].replace("<", "[").replace(">", "]")
    safe_func = record["function"].replace("<", "[").replace(">", "]")
    ctx = " ".join(f"{k}={v}" for k, v in record["extra"].items() if k != "context_str")
    record["extra"]["context_str"] = f" | {ctx}" if ctx else ""
    return (
        f"<green>{record['time']:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        f"<level>{record['level']:<8}</level> | "
        f"<cyan>{safe_name}</cyan>:<cyan>{safe_func}</cyan>:<cyan>{record['line']}</cyan> - "
        "<level>{message}</level>{extra[context_str]}\n{exception}"
    )


def _json_sink(message) -> None:
    """Structured JSON logs, safe for ingestion (Datadog, Loki, ELK)."""
    record = message.record
    payload: Dict[str, Any] = {
        "ts": record["time"].timestamp(),
        "time": record["time"].strftime("%Y-%m-%dT%H:%M:%S.%f%z"),
        "level": record["level"].name,
        "logger": record["name"],
        "func": record["function"],
        "line": record["line"],
        "message": record["message"],
    }
    for k, v in record["extra"].items():
        if k not in payload:
            payload[k] = v
    if record["exception"] is not None:
        payload["exception"] = repr(record["exception"].value)
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")


# ─────────────────────────────────────────────────────────────
# 📤 Sinks
# ─────────────────────────────────────────────────────────────
if LOG_JSON:
    logger.add(_json_sink, level=LOG_LEVEL, enqueue=True, backtrace=False, diagnose=False)
else:
    logger.add(
        sys.stdout,
        level=LOG_LEVEL,
        format=_fmt_pretty,
        enqueue=True,
        backtrace=APP_DEBUG,
        diagnose=APP_DEBUG,
    )

if LOG_TO_FILE:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logger.add(
        str(LOG_DIR / LOG_FILE),
        rotation=LOG_ROTATION,
        level=LOG_LEVEL,
        format=_fmt_pretty,
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )


# ─────────────────────────────────────────────────────────────
# 🔁 Intercept stdlib logging → Loguru
# ─────────────────────────────────────────────────────────────
class InterceptHandler(logging.Handler):
    """Route standard logging records into Loguru, keeping `extra=` fields."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        extra = {k: v for k, v in record.__dict__.items() if k not in _STD_RECORD_ATTRS}
        logger.bind(**extra).opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


for name in ("uvicorn", "uvicorn.error", "fastapi", "starlette", "app", "apscheduler", "redis"):
    std_logger = logging.getLogger(name)
    std_logger.handlers = [InterceptHandler()]
    std_logger.setLevel(LOG_LEVEL)
    std_logger.propagate = False
