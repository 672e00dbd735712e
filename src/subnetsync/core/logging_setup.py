"""
Central logging for subnetsync.

- Console handler on stderr: INFO..CRITICAL by default
- Timed rotated file handler: DEBUG (logs/app.log, daily rotation, UTC)
- Secret redaction: masks tokens/passwords in both msg and % args
- UTC timestamps in ISO-8601

Components log through ``logging.getLogger("subnetsync.<component>")``; the
records propagate to the ``subnetsync`` base logger configured here.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional


class MaskSecretsFilter(logging.Filter):
    """
    Redact common secrets (bearer tokens, API keys, passwords) from log records.
    """

    _patterns = [
        re.compile(r"(Authorization:\s*Bearer\s+)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(api[_-]?key\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(password\s*[=:]\s*)([^,\s]+)", re.IGNORECASE),
        re.compile(r"(\btoken\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
    ]

    @staticmethod
    def _mask(text: str) -> str:
        masked = text
        for pat in MaskSecretsFilter._patterns:
            masked = pat.sub(r"\1***REDACTED***", masked)
        return masked

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask(str(v)) if isinstance(v, str) else v for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._mask(v) if isinstance(v, str) else v for v in record.args)
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        return True


class _ContextDefaults(logging.Filter):
    """Fill context fields for records that did not come through the adapter."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key in ("run_id", "action", "cluster"):
            if not hasattr(record, key):
                setattr(record, key, "-")
        return True


def _utc_formatter(fmt: str) -> logging.Formatter:
    f = logging.Formatter(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%SZ")
    f.converter = time.gmtime  # type: ignore[attr-defined]
    return f


def _replace_handlers(base_logger: logging.Logger, kind: type) -> None:
    for h in list(base_logger.handlers):
        if isinstance(h, kind):
            base_logger.removeHandler(h)
            h.close()


def build_logger(
    *,
    name: str = "subnetsync",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """
    Configure the ``<name>`` base logger and return an adapter for one run.

    Calling it again (another command, another test) replaces the handlers
    instead of stacking them.
    """
    mask = MaskSecretsFilter()
    defaults = _ContextDefaults()
    formatter = _utc_formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | "
        "run=%(run_id)s action=%(action)s cluster=%(cluster)s | %(message)s"
    )

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)

    # console: exactly one, on the current stderr (pytest swaps stdio)
    _replace_handlers(base, logging.StreamHandler)
    sh = logging.StreamHandler(stream=sys.stderr)
    sh.setLevel(getattr(logging, console_level.upper(), logging.INFO))
    sh.setFormatter(formatter)
    sh.addFilter(defaults)
    sh.addFilter(mask)
    base.addHandler(sh)

    # rotating file under base_dir
    os.makedirs(base_dir, exist_ok=True)
    app_log = os.path.abspath(os.path.join(base_dir, "app.log"))
    Path(app_log).touch(exist_ok=True)
    rh = logging.handlers.TimedRotatingFileHandler(
        app_log,
        when="midnight",
        backupCount=14,
        encoding="utf-8",
        utc=True,
    )
    rh.setLevel(getattr(logging, file_level.upper(), logging.DEBUG))
    rh.setFormatter(formatter)
    rh.addFilter(defaults)
    rh.addFilter(mask)
    base.addHandler(rh)

    adapter = logging.LoggerAdapter(
        logging.getLogger(f"{name}.{action}"),
        {
            "run_id": run_id,
            "action": action,
            "cluster": (extra or {}).get("cluster", "-"),
        },
    )
    adapter.debug("Logger initialised")
    return adapter
