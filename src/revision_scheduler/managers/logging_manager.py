"""
# Logging Manager

Central place where every module obtains its logger. Loggers are plain stdlib
`logging` loggers wrapped in a `LoggerAdapter` that prepends a component prefix
(e.g. `[RolloverService]`), so log lines from one engine are easy to grep.

## Usage

```python
from revision_scheduler.managers.logging_manager import get_logger

logger = get_logger(prefix="[RolloverService]")
logger.info("Rolled %d items", count)
```
"""

import logging
import sys
from typing import Any, MutableMapping, Optional, Tuple

from revision_scheduler.config import settings

ROOT_LOGGER_NAME = "RevisionScheduler"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_configured = False


class PrefixAdapter(logging.LoggerAdapter):
    """Prepend a fixed component prefix to every message."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        prefix = self.extra.get("prefix") if self.extra else None
        if prefix:
            return f"{prefix} {msg}", kwargs
        return msg, kwargs


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    root = logging.getLogger(ROOT_LOGGER_NAME)
    level = getattr(logging, str(settings.DEFAULT_LOG_LEVEL).upper(), logging.INFO)
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.propagate = False
    _configured = True


def get_logger(name: Optional[str] = None, prefix: str = "") -> PrefixAdapter:
    """
    Return a prefixed logger under the application's root logger.

    Args:
        name: Optional child logger name (appended to the root name).
        prefix: Text prepended to each message, usually `[Component]`.

    Returns:
        PrefixAdapter: Adapter exposing the usual `debug/info/warning/error` API.
    """
    _configure_root()
    logger_name = f"{ROOT_LOGGER_NAME}.{name}" if name else ROOT_LOGGER_NAME
    return PrefixAdapter(logging.getLogger(logger_name), {"prefix": prefix})
