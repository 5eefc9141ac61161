import json
import logging
import sys
from datetime import datetime, timezone


logger = logging.getLogger("storefront")
logger.setLevel(logging.INFO)
# stdout carries the JSON line; the logger only gates levels and feeds app-installed handlers
logger.addHandler(logging.NullHandler())

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def configure(level: str = "INFO") -> None:
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))


def log_event(level: str, event: str, **fields) -> None:
    lvl = _LEVELS.get(level.lower(), logging.INFO)
    if not logger.isEnabledFor(lvl):
        return
    payload = {
        "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "level": level.lower(),
        "event": event,
    }
    payload.update(fields or {})
    line = json.dumps(payload, ensure_ascii=False, default=str)
    logger.log(lvl, line)
    try:
        sys.stdout.write(line + "\n")
    except Exception:
        # best-effort logging
        pass
