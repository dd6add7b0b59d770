"""Recoverable, toast-style notices surfaced to the chat UI instead of exceptions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List

logger = logging.getLogger(__name__)

TRIAL_LIMIT_REACHED = "trial_limit_reached"
SAVE_FAILED = "save_failed"
SAVED = "saved"
MIGRATION_FAILED = "migration_failed"

_LEVELS = {"info": logging.INFO, "success": logging.INFO, "error": logging.WARNING}


@dataclass(frozen=True)
class Notice:
    level: str  # "info" | "success" | "error"
    code: str
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NoticeBoard:
    def __init__(self, max_items: int = 50):
        self.max_items = max_items
        self._items: List[Notice] = []

    def post(self, level: str, code: str, message: str) -> Notice:
        notice = Notice(level=level, code=code, message=message)
        logger.log(_LEVELS.get(level, logging.INFO), f"[notice] {code}: {message}")
        self._items.append(notice)
        self._items = self._items[-self.max_items:]
        return notice

    def error(self, code: str, message: str) -> Notice:
        return self.post("error", code, message)

    def success(self, code: str, message: str) -> Notice:
        return self.post("success", code, message)

    def drain(self) -> List[Notice]:
        items, self._items = self._items, []
        return items

    def peek(self) -> List[Notice]:
        return list(self._items)

    def clear(self) -> None:
        self._items = []
