from __future__ import annotations

import logging

from chatlens.core.security import clip_text


class ContentClipFilter(logging.Filter):
    """Log filter that clips long chat content before output."""

    def __init__(self, max_chars: int) -> None:
        super().__init__()
        self._max_chars = max_chars

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = clip_text(str(record.msg), self._max_chars * 4)
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                clip_text(arg, self._max_chars) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def setup_logging(level: str, max_content_chars: int = 160) -> None:
    """Configure application logging with content clipping."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    # Handler-level so records propagated from module loggers are clipped too.
    for handler in logging.getLogger().handlers:
        for existing in list(handler.filters):
            if isinstance(existing, ContentClipFilter):
                handler.removeFilter(existing)
        handler.addFilter(ContentClipFilter(max_content_chars))
