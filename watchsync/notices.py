"""
User-visible notifications.

Operations never raise remote or queue failures past the engine; they
return a status and post a Notice here. A front end registers a
callback to display them; recent notices are also kept for inspection.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

SUCCESS = "success"
ERROR = "error"

MAX_HISTORY = 50


@dataclass(frozen=True)
class Notice:
    message: str
    level: str = SUCCESS


class Notifier:
    """Fan-out for notices, with a bounded history."""

    def __init__(self, callback: Optional[Callable[[Notice], None]] = None):
        self._callback = callback
        self.history: deque[Notice] = deque(maxlen=MAX_HISTORY)

    def notify(self, message: str, level: str = SUCCESS) -> Notice:
        notice = Notice(message, level)
        self.history.append(notice)
        if level == ERROR:
            logger.warning("Notice: %s", message)
        else:
            logger.info("Notice: %s", message)
        if self._callback is not None:
            self._callback(notice)
        return notice

    def error(self, message: str) -> Notice:
        return self.notify(message, ERROR)

    @property
    def last(self) -> Optional[Notice]:
        return self.history[-1] if self.history else None
