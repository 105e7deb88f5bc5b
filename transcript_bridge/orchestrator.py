"""
Enrichment orchestration for reconstructed notification records.

Per notification:

    Received -> Decrypted -> Reconstructed -> (EnrichmentAttempted) -> Published -> (IssueFiled)

The interim summary is published synchronously; enrichment and issue
filing run on a background executor so the inbound acknowledgment never
waits on outbound calls. Background failures are logged through the
future's done-callback.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import Any, Dict, Optional, Set

from .errors import EnrichmentFailed, IssueAlreadyFiled, IssueFilingFailed
from .graph_client import GraphClient
from .issue_tracker import IssueTracker
from .logging_config import event_log, get_notification_id, set_notification_id
from .reconstruction import DecryptedRecord
from .store import SummaryStore
from .summaries import (
    IssueRef,
    Summary,
    SummaryUpdate,
    build_insights_summary,
    build_interim_summary,
    render_insights,
    transcript_section,
)

logger = logging.getLogger(__name__)

COUNTER_NAMES = (
    "received",
    "decrypted",
    "decryption_failed",
    "unparseable",
    "enrichment_succeeded",
    "enrichment_failed",
    "issues_filed",
)


class NotificationStage(str, Enum):
    """Pipeline stages a notification moves through."""
    RECEIVED = "received"
    DECRYPTED = "decrypted"
    RECONSTRUCTED = "reconstructed"
    ENRICHMENT_ATTEMPTED = "enrichment_attempted"
    PUBLISHED = "published"
    ISSUE_FILED = "issue_filed"


class PipelineStats:
    """Process-wide counters and the last stage reached. Thread-safe."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {name: 0 for name in COUNTER_NAMES}
        self._last_stage: Optional[NotificationStage] = None

    def increment(self, name: str) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + 1

    def record_stage(self, stage: NotificationStage) -> None:
        with self._lock:
            self._last_stage = stage

    @property
    def last_stage(self) -> Optional[NotificationStage]:
        return self._last_stage

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "last_stage": self._last_stage.value if self._last_stage else None,
            }


class EnrichmentOrchestrator:
    """
    Publishes interim summaries and drives background enrichment.

    Args:
        store: Where summaries are published
        graph: Insights and transcript source; None disables enrichment
        issues: Issue tracker; None or unconfigured disables filing
        transcript_max_chars: Truncation limit for appended transcripts
        workers: Background executor size
        stats: Shared counters (one is created if omitted)
    """

    def __init__(
        self,
        store: SummaryStore,
        graph: Optional[GraphClient] = None,
        issues: Optional[IssueTracker] = None,
        transcript_max_chars: int = 60000,
        workers: int = 4,
        stats: Optional[PipelineStats] = None,
    ):
        self.store = store
        self.graph = graph
        self.issues = issues
        self.transcript_max_chars = transcript_max_chars
        self.stats = stats or PipelineStats()
        self._executor = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="enrichment")
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()
        self._in_flight: Set[str] = set()

    # ------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------

    def handle_record(self, record: DecryptedRecord) -> Summary:
        """
        Publish the interim summary for a record and schedule enrichment.

        Returns immediately; enrichment happens in the background.
        """
        self.stats.record_stage(NotificationStage.RECONSTRUCTED)
        published = self.store.set_latest(build_interim_summary(record))
        self.stats.record_stage(NotificationStage.PUBLISHED)

        if published.is_final:
            event_log.enrichment("none", "skipped", "issue already recorded")
            return published
        if published.has_enriched_content:
            event_log.enrichment("none", "skipped", "already enriched")
            return published

        identity = record.identity or ""
        with self._pending_lock:
            if identity and identity in self._in_flight:
                event_log.enrichment("none", "skipped", "enrichment already in progress")
                return published
            if identity:
                self._in_flight.add(identity)

        try:
            self.submit("enrich", self._enrich, record, get_notification_id())
        except RuntimeError:
            self._release(identity)
            raise
        return published

    def _release(self, identity: str) -> None:
        with self._pending_lock:
            self._in_flight.discard(identity)

    def publish(self, summary: Summary) -> Summary:
        """Publish a summary that needs no enrichment."""
        published = self.store.set_latest(summary)
        self.stats.record_stage(NotificationStage.PUBLISHED)
        return published

    def submit(self, task: str, fn, *args) -> Future:
        """Run fn on the background executor; failures are logged, never raised."""
        future = self._executor.submit(fn, *args)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(lambda f: self._task_done(task, f))
        return future

    def _task_done(self, task: str, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            event_log.background_task_error(task, error)

    # ------------------------------------------------------------
    # Background enrichment
    # ------------------------------------------------------------

    def _enrich(self, record: DecryptedRecord, notification_id: str = "") -> Optional[Summary]:
        if notification_id:
            set_notification_id(notification_id)

        try:
            return self._enrich_record(record)
        finally:
            self._release(record.identity or "")

    def _enrich_record(self, record: DecryptedRecord) -> Optional[Summary]:
        self.stats.record_stage(NotificationStage.ENRICHMENT_ATTEMPTED)
        try:
            update = self._insights_update(record) or self._transcript_update(record)
        except Exception:
            self.stats.increment("enrichment_failed")
            raise
        if update is None:
            self.stats.increment("enrichment_failed")
            return None

        updated = self.store.update_latest(update)
        if updated is None:
            return None

        self.stats.increment("enrichment_succeeded")
        self.stats.record_stage(NotificationStage.PUBLISHED)
        self.file_issue_best_effort()
        return updated

    def _insights_update(self, record: DecryptedRecord) -> Optional[SummaryUpdate]:
        if self.graph is None:
            event_log.enrichment("insights", "skipped", "no meeting data client")
            return None
        if not (record.meeting_id and record.organizer_user_id):
            event_log.enrichment("insights", "skipped", "missing meeting or organizer id")
            return None

        try:
            insights = self.graph.fetch_meeting_insights(record.organizer_user_id, record.meeting_id)
        except EnrichmentFailed as e:
            event_log.enrichment("insights", "failed", e.detail or e.message)
            return None
        if not insights:
            event_log.enrichment("insights", "unavailable")
            return None

        try:
            rendered = render_insights(insights, record.to_dict())
        except (AttributeError, TypeError, ValueError) as e:
            event_log.enrichment("insights", "failed", f"malformed insights document: {type(e).__name__}")
            return None
        event_log.enrichment("insights", "success")
        return SummaryUpdate(
            title=rendered["title"],
            body_append=rendered["body"],
            is_metadata_only=False,
            has_enriched_content=True,
            has_insights=True,
            details={k: v for k, v in rendered["details"].items() if v is not None},
            insights=insights,
        )

    def _transcript_update(self, record: DecryptedRecord) -> Optional[SummaryUpdate]:
        if self.graph is None:
            event_log.enrichment("transcript", "skipped", "no meeting data client")
            return None
        if not record.content_url:
            event_log.enrichment("transcript", "skipped", "no content reference")
            return None

        try:
            text = self.graph.fetch_transcript_content(record.content_url)
        except EnrichmentFailed as e:
            event_log.enrichment("transcript", "failed", e.detail or e.message)
            return None
        if not text:
            event_log.enrichment("transcript", "unavailable")
            return None

        event_log.enrichment("transcript", "success")
        return self.transcript_update(text)

    def transcript_update(self, text: str) -> SummaryUpdate:
        return SummaryUpdate(
            body_append=transcript_section(text, self.transcript_max_chars),
            is_metadata_only=False,
            has_enriched_content=True,
            transcript_text=text,
        )

    # ------------------------------------------------------------
    # Issue filing
    # ------------------------------------------------------------

    def file_issue(self) -> IssueRef:
        """
        File an issue for the latest summary and record it there.

        At most one filing runs at a time; a summary with an issue is
        never filed again.

        Raises:
            IssueAlreadyFiled: If the latest summary has an issue or one is being filed
            IssueFilingFailed: If no tracker is configured or filing fails
        """
        if self.issues is None:
            raise IssueFilingFailed("Issue tracker is not configured")

        summary = self.store.claim_issue()
        if summary is None:
            raise IssueAlreadyFiled("No summary is awaiting an issue")

        ref = None
        try:
            ref = self.issues.file_issue(summary)
        except IssueFilingFailed as e:
            event_log.issue_filing_failed(e.detail or e.message)
            raise
        finally:
            self.store.record_issue(ref)

        self.stats.increment("issues_filed")
        self.stats.record_stage(NotificationStage.ISSUE_FILED)
        event_log.issue_filed(ref.url, ref.number)
        return ref

    def file_issue_best_effort(self) -> Optional[IssueRef]:
        if self.issues is None or not self.issues.configured:
            logger.info("Issue tracker not configured; skipping issue filing")
            return None
        try:
            return self.file_issue()
        except IssueAlreadyFiled:
            logger.info("Latest summary already has an issue; skipping issue filing")
            return None
        except IssueFilingFailed:
            return None

    # ------------------------------------------------------------
    # Manual triggers
    # ------------------------------------------------------------

    def fetch_insights_summary(
        self,
        user_id: str,
        meeting_id: Optional[str] = None,
        join_web_url: Optional[str] = None,
    ) -> Optional[Summary]:
        """
        Fetch insights for a meeting, publish them as a new summary and
        file an issue best-effort.

        Returns:
            The published summary, or None when no insights are available

        Raises:
            EnrichmentFailed: If the meeting data API fails
        """
        if self.graph is None:
            raise EnrichmentFailed("Meeting data client is not configured")

        if not meeting_id and join_web_url:
            meeting_id = self.graph.find_meeting_id(join_web_url)
        if not meeting_id:
            event_log.enrichment("insights", "unavailable", "meeting id unresolved")
            return None

        insights = self.graph.fetch_meeting_insights(user_id, meeting_id)
        if not insights:
            event_log.enrichment("insights", "unavailable")
            return None

        try:
            summary = build_insights_summary(insights, {"meetingId": meeting_id})
        except (AttributeError, TypeError, ValueError) as e:
            event_log.enrichment("insights", "failed", f"malformed insights document: {type(e).__name__}")
            self.stats.increment("enrichment_failed")
            raise EnrichmentFailed("Insights document has an unexpected shape", detail=type(e).__name__)

        event_log.enrichment("insights", "success")
        published = self.publish(summary)
        self.stats.increment("enrichment_succeeded")
        ref = self.file_issue_best_effort()
        if ref is not None:
            return self.store.get_latest()
        return published

    def merge_transcript(self, content_reference: str) -> Optional[Summary]:
        """
        Fetch transcript content and merge it into the latest summary.

        Returns:
            The updated summary, or None when content is unavailable or
            the latest summary can no longer change

        Raises:
            EnrichmentFailed: If the meeting data API fails
        """
        if self.graph is None:
            raise EnrichmentFailed("Meeting data client is not configured")

        text = self.graph.fetch_transcript_content(content_reference)
        if not text:
            event_log.enrichment("transcript", "unavailable")
            return None

        event_log.enrichment("transcript", "success")
        updated = self.store.update_latest(self.transcript_update(text))
        if updated is not None:
            self.stats.increment("enrichment_succeeded")
        return updated

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until all background tasks finish. True if none remain."""
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_tasks: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_tasks)
