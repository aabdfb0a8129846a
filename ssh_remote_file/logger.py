from __future__ import annotations

import re
import sys
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from loguru import logger

from ssh_remote_file.settings import RemoteFileSettings

_REDACTIONS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"(?i)(password\s*[:=]\s*)([^\s]+)"), r"\1***"),
    (re.compile(r"(?i)(passwd\s*[:=]\s*)([^\s]+)"), r"\1***"),
    (re.compile(r"(?i)(token\s*[:=]\s*)([^\s]+)"), r"\1***"),
    (re.compile(r"(?i)(private_key\s*[:=]\s*)([^\s]+)"), r"\1***"),
    (
        re.compile(r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----", re.S),
        "***PRIVATE KEY***",
    ),
]


def _redact(text: str) -> str:
    redacted = text
    for pattern, repl in _REDACTIONS:
        redacted = pattern.sub(repl, redacted)
    return redacted


def setup_logger(settings: RemoteFileSettings) -> None:
    try:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        log_dir = Path(settings.log_dir)
    except OSError:
        log_dir = Path(gettempdir()) / "ssh-remote-file-logs"
        log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / "app.log"
    err_file = log_dir / "error.log"

    logger.remove()

    def patcher(record: Any) -> None:
        record["message"] = _redact(record.get("message", ""))

    logger.configure(patcher=patcher)

    if getattr(sys.stderr, "isatty", lambda: False)():
        logger.add(
            sys.stderr,
            level=settings.log_level,
            colorize=True,
            backtrace=False,
            diagnose=False,
            enqueue=True,
        )

    logger.add(
        str(log_file),
        level=settings.log_level,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        encoding="utf-8",
    )

    logger.add(
        str(err_file),
        level="ERROR",
        rotation=settings.log_rotation,
        retention=settings.log_retention,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        encoding="utf-8",
    )
