"""
In-memory store for the latest Summary and a bounded history.

All mutation is serialised by one lock. Callers always receive copies,
so nothing outside the store can change a stored Summary.
"""

import logging
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from .summaries import IssueRef, Summary, SummaryUpdate
from .util import utc_iso

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 50


class SummaryStore:
    """
    Latest-summary holder with a most-recent-first ring buffer.

    set_latest is last-write-wins. update_latest targets whichever summary
    is current when it runs, which may belong to a newer notification.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self._capacity = max(1, capacity)
        self._latest: Optional[Summary] = None
        self._history: Deque[Summary] = deque(maxlen=self._capacity)
        self._issue_claimed = False
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def set_latest(self, summary: Summary) -> Summary:
        """
        Publish a summary as the latest and append a snapshot to history.

        A summary for the same record as the current latest absorbs it:
        flags never regress, and an already enriched body, title or
        issue reference is kept.

        Returns:
            A copy of the summary as stored
        """
        with self._lock:
            stored = summary.copy()
            current = self._latest
            if current is not None and stored.key and stored.key == current.key:
                stored = self._absorb(current, stored)

            self._latest = stored

            snapshot = stored.copy()
            snapshot.updated_at = utc_iso()
            self._history.appendleft(snapshot)
            return stored.copy()

    def update_latest(self, update: SummaryUpdate) -> Optional[Summary]:
        """
        Merge a partial update onto the current latest summary.

        Returns:
            A copy of the updated summary, or None if nothing was updated
        """
        with self._lock:
            if self._latest is None:
                logger.warning("update_latest called with no current summary; ignored")
                return None
            if self._latest.is_final:
                logger.warning("Latest summary already has an issue recorded; update ignored")
                return None
            update.apply(self._latest)
            return self._latest.copy()

    def claim_issue(self) -> Optional[Summary]:
        """
        Reserve issue filing for the current latest summary.

        Only one claim is held at a time. Every successful claim must be
        followed by record_issue, with None when filing failed.

        Returns:
            A copy of the summary to file, or None if there is no summary,
            it already has an issue, or another filing is in progress
        """
        with self._lock:
            if self._latest is None or self._latest.is_final or self._issue_claimed:
                return None
            self._issue_claimed = True
            return self._latest.copy()

    def record_issue(self, ref: Optional[IssueRef]) -> Optional[Summary]:
        """Release the filing claim, recording ref on the latest summary."""
        with self._lock:
            self._issue_claimed = False
            if ref is None or self._latest is None or self._latest.is_final:
                return None
            SummaryUpdate(external_issue_ref=ref).apply(self._latest)
            return self._latest.copy()

    def get_latest(self) -> Optional[Summary]:
        with self._lock:
            return self._latest.copy() if self._latest is not None else None

    def get_history(self, limit: Optional[int] = None) -> List[Summary]:
        """Most-recent-first snapshots, at most `limit` of them."""
        with self._lock:
            items = list(self._history)
        if limit is not None:
            items = items[:max(0, limit)]
        return [item.copy() for item in items]

    def clear(self) -> None:
        with self._lock:
            self._latest = None
            self._history.clear()

    def status(self) -> Dict[str, Any]:
        with self._lock:
            latest = self._latest
            return {
                "has_latest_summary": latest is not None,
                "latest_flags": latest.flags() if latest is not None else None,
                "latest_title": latest.title if latest is not None else None,
                "history_count": len(self._history),
                "history_capacity": self._capacity,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)

    @staticmethod
    def _absorb(current: Summary, incoming: Summary) -> Summary:
        incoming.has_enriched_content = incoming.has_enriched_content or current.has_enriched_content
        incoming.has_insights = incoming.has_insights or current.has_insights

        if current.has_enriched_content or current.is_final:
            incoming.title = current.title
            incoming.body = current.body
            incoming.is_metadata_only = current.is_metadata_only
            incoming.insights = current.insights
            incoming.transcript_text = current.transcript_text
            incoming.details = {**incoming.details, **current.details}

        if current.external_issue_ref is not None:
            incoming.external_issue_ref = current.external_issue_ref

        incoming.created_at = current.created_at
        incoming.updated_at = utc_iso()
        return incoming
