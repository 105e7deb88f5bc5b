"""
Meeting summaries and the builders that produce them.

A Summary is what the rest of the system sees of a processed
notification. It starts as an interim, metadata-only summary built from
the reconstructed record and is enriched in place as insights or
transcript content arrive.
"""

import copy
import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .reconstruction import DecryptedRecord
from .util import parse_graph_datetime, utc_iso, utc_now

TRANSCRIPT_HEADING = "## Transcript"
TRUNCATION_MARKER = "\n\n*[transcript truncated]*"
PENDING_NOTE = "*Enrichment pending: this summary is updated once meeting insights or transcript content are fetched.*"

ACTION_WORDS = (
    "action", "todo", "follow up", "next step", "assign",
    "responsible", "deadline", "complete", "finish",
)
DECISION_WORDS = ("decide", "agreed", "conclusion", "final", "approve", "confirm", "resolution")

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


@dataclass
class IssueRef:
    """Reference to an issue filed for a summary."""
    url: str
    number: Optional[int] = None
    created_at: str = field(default_factory=utc_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "number": self.number, "createdAt": self.created_at}


@dataclass
class Summary:
    """
    A published meeting summary.

    `has_enriched_content` and `has_insights` only ever go from False to
    True; the store enforces that on every update.
    """
    title: str
    body: str
    is_metadata_only: bool = False
    has_enriched_content: bool = False
    has_insights: bool = False
    content_reference_url: Optional[str] = None
    external_issue_ref: Optional[IssueRef] = None
    key: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    insights: Optional[Dict[str, Any]] = None
    transcript_text: Optional[str] = None
    provenance: Optional[str] = None
    created_at: str = field(default_factory=utc_iso)
    updated_at: Optional[str] = None

    @property
    def is_final(self) -> bool:
        """Summaries become immutable once an issue is recorded."""
        return self.external_issue_ref is not None

    def copy(self) -> "Summary":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "isMetadataOnly": self.is_metadata_only,
            "hasEnrichedContent": self.has_enriched_content,
            "hasInsights": self.has_insights,
            "contentReferenceUrl": self.content_reference_url,
            "githubIssue": self.external_issue_ref.to_dict() if self.external_issue_ref else None,
            "meetingDetails": dict(self.details),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def flags(self) -> Dict[str, bool]:
        return {
            "isMetadataOnly": self.is_metadata_only,
            "hasEnrichedContent": self.has_enriched_content,
            "hasInsights": self.has_insights,
            "hasIssue": self.external_issue_ref is not None,
        }


@dataclass
class SummaryUpdate:
    """
    A partial update merged onto the latest Summary.

    None means "leave unchanged". Flags can only be raised; a False here
    is ignored for the monotonic flags.
    """
    title: Optional[str] = None
    body: Optional[str] = None
    body_append: Optional[str] = None
    is_metadata_only: Optional[bool] = None
    has_enriched_content: Optional[bool] = None
    has_insights: Optional[bool] = None
    external_issue_ref: Optional[IssueRef] = None
    details: Optional[Dict[str, Any]] = None
    insights: Optional[Dict[str, Any]] = None
    transcript_text: Optional[str] = None

    def apply(self, summary: Summary) -> None:
        if self.has_enriched_content and PENDING_NOTE in summary.body:
            summary.body = summary.body.replace(PENDING_NOTE, "").rstrip()
        if self.title is not None:
            summary.title = self.title
        if self.body is not None:
            summary.body = self.body
        if self.body_append:
            summary.body = f"{summary.body.rstrip()}\n\n{self.body_append}" if summary.body else self.body_append
        if self.is_metadata_only is not None:
            summary.is_metadata_only = self.is_metadata_only
        if self.has_enriched_content:
            summary.has_enriched_content = True
        if self.has_insights:
            summary.has_insights = True
        if self.external_issue_ref is not None:
            summary.external_issue_ref = self.external_issue_ref
        if self.details:
            summary.details.update(self.details)
        if self.insights is not None:
            summary.insights = self.insights
        if self.transcript_text is not None:
            summary.transcript_text = self.transcript_text
        summary.updated_at = utc_iso()


# ============================================================
# Helpers
# ============================================================

def _date_label(dt: Optional[datetime]) -> str:
    return (dt or utc_now()).strftime("%Y-%m-%d")


def duration_minutes(start: Optional[str], end: Optional[str]) -> Optional[int]:
    started = parse_graph_datetime(start)
    ended = parse_graph_datetime(end)
    if started is None or ended is None:
        return None
    return round((ended - started).total_seconds() / 60)


def meeting_details(record: DecryptedRecord) -> Dict[str, Any]:
    return {
        "organizer": record.organizer_name or record.organizer_user_id or "Unknown Organizer",
        "organizerId": record.organizer_user_id,
        "startTime": record.created,
        "endTime": record.ended,
        "duration": duration_minutes(record.created, record.ended),
        "meetingId": record.meeting_id,
        "callId": record.call_id,
        "transcriptId": record.id,
        "contentCorrelationId": record.content_correlation_id,
        "transcriptContentUrl": record.content_url,
    }


# ============================================================
# Builders
# ============================================================

def build_interim_summary(record: DecryptedRecord) -> Summary:
    """Metadata-only summary published as soon as a record is recovered."""
    details = meeting_details(record)
    duration = details["duration"]

    lines = [
        "## Meeting Transcript Available",
        "",
        f"- **Organizer**: {details['organizer']}",
        f"- **Start**: {details['startTime'] or 'unknown'}",
        f"- **End**: {details['endTime'] or 'unknown'}",
        f"- **Duration**: {f'{duration} minutes' if duration is not None else 'unknown'}",
        f"- **Meeting ID**: {details['meetingId'] or 'unknown'}",
        f"- **Content reference**: {details['transcriptContentUrl'] or 'unavailable'}",
        "",
        PENDING_NOTE,
    ]

    return Summary(
        title=f"Meeting Transcript - {_date_label(parse_graph_datetime(record.created))}",
        body="\n".join(lines),
        is_metadata_only=True,
        content_reference_url=record.content_url,
        key=record.identity,
        details=details,
        provenance=json.dumps(record.to_dict(), default=str),
    )


def render_insights(insights: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Render an insights document to a title and markdown body.

    Returns:
        Dict with title, body and details
    """
    metadata = metadata or {}
    start = metadata.get("createdDateTime") or insights.get("createdDateTime")
    end = metadata.get("endDateTime") or insights.get("endDateTime")
    duration = duration_minutes(start, end)
    started = parse_graph_datetime(start)

    sections: List[str] = []

    notes = insights.get("meetingNotes") or []
    if notes:
        parts = ["## Meeting Notes", ""]
        for index, note in enumerate(notes, 1):
            parts.append(f"### {index}. {note.get('title', '')}")
            parts.append(f"{note.get('text', '')}")
            subpoints = note.get("subpoints") or []
            if subpoints:
                parts.append("")
                parts.extend(f"- **{sub.get('title', '')}**: {sub.get('text', '')}" for sub in subpoints)
            parts.append("")
        sections.append("\n".join(parts).rstrip())

    actions = insights.get("actionItems") or []
    if actions:
        parts = ["## Action Items", ""]
        for index, item in enumerate(actions, 1):
            parts.append(f"### {index}. {item.get('title', '')}")
            parts.append(f"**Description**: {item.get('text', '')}")
            if item.get("ownerDisplayName"):
                parts.append(f"**Assigned to**: {item['ownerDisplayName']}")
            parts.append("")
        sections.append("\n".join(parts).rstrip())

    mentions = (insights.get("viewpoint") or {}).get("mentionEvents") or []
    if mentions:
        parts = ["## Key Mentions", ""]
        for index, mention in enumerate(mentions, 1):
            speaker = ((mention.get("speaker") or {}).get("user") or {}).get("displayName") or "Unknown Speaker"
            parts.append(f"### {index}. Mentioned at {mention.get('eventDateTime', 'unknown time')}")
            parts.append(f"**Speaker**: {speaker}")
            parts.append(f"**Quote**: \"{mention.get('transcriptUtterance', '')}\"")
            parts.append("")
        sections.append("\n".join(parts).rstrip())

    if sections:
        body = "\n\n".join(sections)
    else:
        body = (
            "## Meeting Summary\n\n"
            f"Meeting completed on {_date_label(started)}"
            f"{f' with a duration of {duration} minutes' if duration is not None else ''}.\n\n"
            "*Generated insights are not available yet.*"
        )

    return {
        "title": f"Meeting Summary - {_date_label(started)} ({duration if duration is not None else '?'}min)",
        "body": body,
        "details": {
            "duration": duration,
            "callId": metadata.get("callId") or insights.get("callId"),
            "aiInsightId": insights.get("id"),
            "contentCorrelationId": insights.get("contentCorrelationId"),
        },
    }


def build_insights_summary(insights: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None) -> Summary:
    """A standalone insights summary, as published by a manual insights fetch."""
    rendered = render_insights(insights, metadata)
    metadata = metadata or {}
    details = {
        "organizer": ((metadata.get("meetingOrganizer") or {}).get("user") or {}).get("displayName") or "Unknown Organizer",
        "startTime": metadata.get("createdDateTime"),
        "endTime": metadata.get("endDateTime"),
        "meetingId": metadata.get("meetingId"),
    }
    details.update({k: v for k, v in rendered["details"].items() if v is not None})

    return Summary(
        title=rendered["title"],
        body=rendered["body"],
        has_enriched_content=True,
        has_insights=True,
        content_reference_url=metadata.get("transcriptContentUrl"),
        key=metadata.get("id") or insights.get("id"),
        details=details,
        insights=insights,
        provenance=json.dumps(insights, default=str),
    )


def transcript_section(text: str, max_chars: int) -> str:
    """Normalised transcript text under its heading, truncated to max_chars."""
    if len(text) > max_chars:
        text = text[:max_chars].rstrip() + TRUNCATION_MARKER
    return f"{TRANSCRIPT_HEADING}\n\n{text}"


def summarize_text(text: str) -> str:
    """
    Keyword-driven extractive summary: up to three key points and three
    action items. Falls back to an overview of the opening sentences.
    """
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(text) if len(s.strip()) > 10]
    key_points: List[str] = []
    action_items: List[str] = []

    for sentence in sentences:
        lowered = sentence.lower()
        if any(word in lowered for word in ACTION_WORDS):
            action_items.append(sentence)
        elif any(word in lowered for word in DECISION_WORDS) or len(sentence) > 50:
            key_points.append(sentence)

    parts: List[str] = []
    if key_points:
        parts.append("**Key Discussion Points:**\n" + "\n".join(
            f"{i}. {point}" for i, point in enumerate(key_points[:3], 1)
        ))
    if action_items:
        parts.append("**Action Items:**\n" + "\n".join(
            f"{i}. {item}" for i, item in enumerate(action_items[:3], 1)
        ))

    if not parts:
        overview = ". ".join(sentences[:2]).strip() or "Meeting discussion covered various topics."
        parts.append(f"**Meeting Overview:**\n{overview}")
        parts.append(f"**Meeting Statistics:**\n- Content: {len(text.split())} words of discussion")

    return "\n\n".join(parts)


def build_plain_summary(resource: Dict[str, Any]) -> Optional[Summary]:
    """
    Summary for a plain resourceData object that carries no content
    reference: inline content is summarised, a bare user becomes a
    metadata-only summary. Anything else yields None.
    """
    text = ""
    if isinstance(resource.get("content"), str):
        text = resource["content"]
    elif isinstance(resource.get("transcripts"), list):
        text = "\n".join(
            t["content"] for t in resource["transcripts"]
            if isinstance(t, dict) and isinstance(t.get("content"), str)
        )

    title = f"Meeting Summary - {_date_label(None)}"

    if text.strip():
        participants = ""
        organizer = resource.get("organizer")
        if isinstance(organizer, dict):
            participants += f"Organizer: {organizer.get('displayName') or 'Unknown'}\n"
        if isinstance(resource.get("participants"), list):
            names = [p.get("displayName") or "Unknown" for p in resource["participants"] if isinstance(p, dict)]
            participants += f"Participants: {', '.join(names)}\n"

        body = "## Meeting Summary\n\n"
        if participants:
            body += participants + "\n"
        body += summarize_text(text)

        return Summary(
            title=title,
            body=body,
            has_enriched_content=True,
            key=resource.get("id"),
            transcript_text=text,
            provenance=json.dumps(resource, default=str),
        )

    user = resource.get("user")
    if isinstance(user, dict):
        name = user.get("displayName") or "Unknown User"
        return Summary(
            title=title,
            body=(
                "## Meeting Summary\n\n"
                f"Meeting transcript notification received for user: {name}\n\n"
                "*No transcript content was included in the notification.*"
            ),
            is_metadata_only=True,
            key=resource.get("id"),
            details={"organizer": name, "organizerId": user.get("id")},
            provenance=json.dumps(resource, default=str),
        )

    return None
