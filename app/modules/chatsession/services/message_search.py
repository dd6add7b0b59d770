"""
In-conversation message search.

Two retrieval paths are rebuilt from the message list on every change:
lower-cased contents for exact substring containment, and rapidfuzz-processed
contents for typo-tolerant matching. Fuzzy hits take precedence; exact
substring hits are only used when the fuzzy path finds nothing. The two are
never merged.

No timers live here: debouncing keystrokes is the caller's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from rapidfuzz import fuzz, utils

from app.modules.chatsession.services.conversation import Message

logger = logging.getLogger(__name__)

DEFAULT_FUZZY_CUTOFF = 70.0


class Direction(str, Enum):
    NEXT = "next"
    PREVIOUS = "previous"


@dataclass
class SearchResult:
    query: str = ""
    terms: List[str] = field(default_factory=list)
    matched_indices: List[int] = field(default_factory=list)
    cursor: Optional[int] = None

    @property
    def current(self) -> Optional[int]:
        """Message position under the cursor."""
        if self.cursor is None:
            return None
        return self.matched_indices[self.cursor]


class MessageSearchIndex:
    def __init__(self, fuzzy_cutoff: float = DEFAULT_FUZZY_CUTOFF):
        self.fuzzy_cutoff = fuzzy_cutoff
        self._lowered: List[str] = []
        self._processed: List[str] = []
        self.result = SearchResult()

    def __len__(self) -> int:
        return len(self._lowered)

    def rebuild(self, messages: Sequence[Message]) -> None:
        self._lowered = [m.content.lower() for m in messages]
        self._processed = [utils.default_process(m.content) for m in messages]

        # An active query follows the list it searches
        if self.result.query:
            previous = self.result.cursor
            self._run(self.result.query)
            if previous is not None and self.result.matched_indices:
                self.result.cursor = min(previous, len(self.result.matched_indices) - 1)

    def search(self, query: str) -> List[int]:
        if not query or not query.strip():
            self.clear()
            return []
        self._run(query.strip())
        return list(self.result.matched_indices)

    def _run(self, query: str) -> None:
        matched = self.fuzzy_matches(query) or self.exact_matches(query)
        self.result = SearchResult(
            query=query,
            terms=query.split(),
            matched_indices=matched,
            cursor=0 if matched else None,
        )
        logger.debug(f"[search] {query!r}: {len(matched)} of {len(self._lowered)} messages")

    def fuzzy_matches(self, query: str) -> List[int]:
        """Positions scored at or above the cutoff, best score first, ties by position."""
        q = utils.default_process(query)
        if not q:
            return []
        hits: List[Tuple[float, int]] = []
        for idx, text in enumerate(self._processed):
            if not text:
                continue
            # partial_ratio aligns the shorter string; never let a short message match inside a long query
            if len(text) >= len(q):
                score = fuzz.partial_ratio(q, text, score_cutoff=self.fuzzy_cutoff)
            else:
                score = fuzz.ratio(q, text, score_cutoff=self.fuzzy_cutoff)
            if score > 0:
                hits.append((score, idx))
        hits.sort(key=lambda h: (-h[0], h[1]))
        return [idx for _, idx in hits]

    def exact_matches(self, query: str) -> List[int]:
        needle = query.lower()
        return [idx for idx, text in enumerate(self._lowered) if needle in text]

    def navigate(self, direction: Direction) -> Optional[int]:
        total = len(self.result.matched_indices)
        if total == 0:
            return self.result.cursor
        cursor = self.result.cursor if self.result.cursor is not None else 0
        step = 1 if Direction(direction) is Direction.NEXT else -1
        self.result.cursor = (cursor + step) % total
        return self.result.cursor

    def clear(self) -> None:
        self.result = SearchResult()

    @property
    def highlight_terms(self) -> List[str]:
        return list(self.result.terms)


class PanelState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    QUERIED = "queried"


class SearchPanel:
    """Open/query/close lifecycle around the index; closing never leaves highlights behind."""

    def __init__(self, index: MessageSearchIndex):
        self.index = index
        self.state = PanelState.CLOSED

    def open(self) -> None:
        if self.state is PanelState.CLOSED:
            self.state = PanelState.OPEN

    def query(self, text: str) -> List[int]:
        self.open()
        matched = self.index.search(text)
        self.state = PanelState.QUERIED if self.index.result.query else PanelState.OPEN
        return matched

    def navigate(self, direction: Direction) -> Optional[int]:
        if self.state is not PanelState.QUERIED:
            return None
        return self.index.navigate(direction)

    def close(self) -> None:
        self.index.clear()
        self.state = PanelState.CLOSED

    @property
    def result(self) -> SearchResult:
        return self.index.result
