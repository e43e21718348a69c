"""
RuleVault - Append-only review conversation.
"""

import itertools
import threading
from datetime import datetime, timezone
from typing import Any, Optional

from .models import ConversationEntry, PendingDecision, Role

WELCOME_MESSAGE = (
    "Welcome to the Compliance Assistant. I can help you extract rules from "
    "investment guidelines, check portfolio compliance, and answer questions "
    "about regulations. How can I assist you today?"
)


class ConversationLog:
    """
    Ordered chat history.

    Entries are never removed; the only in-place change allowed is swapping
    an entry's pending decision, and ``replace_decision`` does that as a
    compare-and-set so late results cannot overwrite a newer decision.
    """

    def __init__(self, welcome: Optional[str] = WELCOME_MESSAGE):
        self._lock = threading.Lock()
        self._counter = itertools.count()
        self._entries: list[ConversationEntry] = []
        self._by_id: dict[str, ConversationEntry] = {}
        if welcome:
            self.append(Role.ASSISTANT, welcome)

    def append(
        self,
        role: Role,
        content: str,
        payload: Optional[dict[str, Any]] = None,
        pending_decision: Optional[PendingDecision] = None,
    ) -> ConversationEntry:
        with self._lock:
            entry = ConversationEntry(
                id=str(next(self._counter)),
                role=role,
                content=content,
                timestamp=datetime.now(timezone.utc),
                payload=payload,
                pending_decision=pending_decision,
            )
            self._entries.append(entry)
            self._by_id[entry.id] = entry
        return entry

    def get(self, entry_id: str) -> Optional[ConversationEntry]:
        with self._lock:
            return self._by_id.get(entry_id)

    def replace_decision(
        self,
        entry_id: str,
        expected: Optional[PendingDecision],
        new: Optional[PendingDecision],
    ) -> bool:
        """Swap the entry's decision only if it is still ``expected`` (identity check)."""
        with self._lock:
            entry = self._by_id.get(entry_id)
            if entry is None or entry.pending_decision is not expected:
                return False
            entry.pending_decision = new
            return True

    def entries(self) -> list[ConversationEntry]:
        with self._lock:
            return list(self._entries)

    def pending(self) -> list[ConversationEntry]:
        """Entries that still carry a pending decision."""
        with self._lock:
            return [e for e in self._entries if e.pending_decision is not None]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
