"""User-facing notices emitted by the live session client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class NoticeLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Notice:
    level: NoticeLevel
    message: str
    error: Optional[Exception] = None

    @classmethod
    def info(cls, message: str) -> "Notice":
        return cls(NoticeLevel.INFO, message)

    @classmethod
    def success(cls, message: str) -> "Notice":
        return cls(NoticeLevel.SUCCESS, message)

    @classmethod
    def failure(cls, message: str, error: Optional[Exception] = None) -> "Notice":
        return cls(NoticeLevel.ERROR, message, error)


NoticeSink = Callable[[Notice], None]

_LEVELS = {
    NoticeLevel.INFO: logging.INFO,
    NoticeLevel.SUCCESS: logging.INFO,
    NoticeLevel.ERROR: logging.WARNING,
}


def log_notice(notice: Notice) -> None:
    """Default sink for headless clients."""
    logger.log(_LEVELS[notice.level], "Notice (%s): %s", notice.level.value, notice.message)
