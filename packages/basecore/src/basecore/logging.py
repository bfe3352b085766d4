"""
Logging setup shared by every service.

Modules log through ``logging.getLogger(__name__)`` and pass structured
context with ``extra={...}``. The formatter appends those extra fields to
the rendered line so they survive plain-text log collection.
"""

import logging
import sys

from basecore.settings import get_settings

# Attributes every LogRecord carries; anything else came in through extra=
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class ExtraFieldsFormatter(logging.Formatter):
    """Formatter that renders ``extra=`` fields as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        rendered = super().format(record)
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if not extras:
            return rendered
        fields = " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
        return f"{rendered} [{fields}]"


def setup_logging(level: str | None = None) -> None:
    """
    Configure the root logger once.

    Safe to call multiple times; later calls only adjust the level.
    """
    level_name = (level or get_settings().LOG_LEVEL).upper()
    root = logging.getLogger()
    root.setLevel(level_name)

    if any(getattr(h, "_auction_platform", False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ExtraFieldsFormatter(LOG_FORMAT))
    handler._auction_platform = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    # Quiet chatty libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
