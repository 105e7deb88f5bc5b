import json
import unittest

from transcript_bridge.reconstruction import DecryptedRecord
from transcript_bridge.summaries import (
    PENDING_NOTE,
    TRUNCATION_MARKER,
    IssueRef,
    Summary,
    SummaryUpdate,
    build_insights_summary,
    build_interim_summary,
    build_plain_summary,
    duration_minutes,
    render_insights,
    summarize_text,
    transcript_section,
)

from factories import SAMPLE_INSIGHTS, TRANSCRIPT_ID, transcript_record


class TestInterimSummary(unittest.TestCase):

    def test_metadata_only_with_provenance(self):
        summary = build_interim_summary(DecryptedRecord(fields=transcript_record()))

        self.assertEqual(summary.title, "Meeting Transcript - 2024-03-01")
        self.assertTrue(summary.is_metadata_only)
        self.assertFalse(summary.has_enriched_content)
        self.assertEqual(summary.key, TRANSCRIPT_ID)
        self.assertEqual(summary.details["duration"], 45)
        self.assertEqual(json.loads(summary.provenance)["id"], TRANSCRIPT_ID)

    def test_enrichment_removes_pending_note(self):
        summary = build_interim_summary(DecryptedRecord(fields=transcript_record()))
        self.assertIn(PENDING_NOTE, summary.body)

        SummaryUpdate(title="renamed").apply(summary)
        self.assertIn(PENDING_NOTE, summary.body)

        SummaryUpdate(body_append="## Transcript\n\nhi", has_enriched_content=True).apply(summary)
        self.assertNotIn(PENDING_NOTE, summary.body)
        self.assertTrue(summary.body.endswith("## Transcript\n\nhi"))
        self.assertIn("**Organizer**: Alice Smith", summary.body)

    def test_partial_record(self):
        summary = build_interim_summary(DecryptedRecord(fields={"transcriptContentUrl": "u"}))
        self.assertIn("Unknown Organizer", summary.body)
        self.assertIn("**Duration**: unknown", summary.body)
        self.assertEqual(summary.key, "u")


class TestRenderInsights(unittest.TestCase):

    def test_sections(self):
        rendered = render_insights(SAMPLE_INSIGHTS)
        body = rendered["body"]

        self.assertEqual(rendered["title"], "Meeting Summary - 2024-03-01 (45min)")
        self.assertIn("### 1. Release planning", body)
        self.assertIn("- **Date**: Release moves to Friday.", body)
        self.assertIn("**Assigned to**: Bob Jones", body)
        self.assertIn("**Speaker**: Alice Smith", body)
        self.assertIn('**Quote**: "Let\'s ship on Friday."', body)
        self.assertEqual(rendered["details"]["aiInsightId"], "insight-0002")

    def test_empty_insights_fall_back(self):
        rendered = render_insights({"createdDateTime": "2024-03-01T10:00:00Z"})
        self.assertIn("not available yet", rendered["body"])
        self.assertTrue(rendered["title"].endswith("(?min)"))

    def test_standalone_summary(self):
        summary = build_insights_summary(SAMPLE_INSIGHTS, {"meetingId": "m-1"})
        self.assertTrue(summary.has_insights)
        self.assertTrue(summary.has_enriched_content)
        self.assertEqual(summary.details["meetingId"], "m-1")
        self.assertEqual(summary.key, "insight-0002")


class TestTranscriptText(unittest.TestCase):

    def test_section_within_limit(self):
        self.assertEqual(transcript_section("hello", 100), "## Transcript\n\nhello")

    def test_section_truncated(self):
        section = transcript_section("a" * 50, 10)
        self.assertTrue(section.endswith("a" * 10 + TRUNCATION_MARKER))

    def test_summarize_text(self):
        text = (
            "We agreed to move the launch to Friday. "
            "Bob will follow up with the vendor about pricing. "
            "Short one."
        )
        summary = summarize_text(text)
        self.assertIn("**Key Discussion Points:**\n1. We agreed to move the launch to Friday", summary)
        self.assertIn("**Action Items:**\n1. Bob will follow up with the vendor about pricing", summary)

    def test_summarize_text_overview(self):
        summary = summarize_text("Hello there everyone. Nice weather today.")
        self.assertIn("**Meeting Overview:**", summary)
        self.assertIn("6 words", summary)

    def test_duration(self):
        self.assertEqual(duration_minutes("2024-03-01T10:00:00.0000000Z", "2024-03-01T10:30:29Z"), 30)
        self.assertIsNone(duration_minutes(None, "2024-03-01T10:30:00Z"))
        self.assertIsNone(duration_minutes("not a date", "2024-03-01T10:30:00Z"))


class TestPlainSummary(unittest.TestCase):

    def test_transcript_list(self):
        summary = build_plain_summary({
            "transcripts": [{"content": "We decided to approve the new hire plan."}, {"content": 3}],
            "participants": [{"displayName": "Carol"}, {}],
        })
        self.assertTrue(summary.has_enriched_content)
        self.assertIn("Participants: Carol, Unknown", summary.body)

    def test_nothing_usable(self):
        self.assertIsNone(build_plain_summary({"content": "   "}))
        self.assertIsNone(build_plain_summary({}))


class TestSummary(unittest.TestCase):

    def test_to_dict(self):
        summary = Summary(title="t", body="b", external_issue_ref=IssueRef(url="https://x/1", number=1))
        data = summary.to_dict()
        self.assertEqual(data["githubIssue"]["number"], 1)
        self.assertTrue(summary.is_final)
        self.assertTrue(summary.flags()["hasIssue"])


if __name__ == "__main__":
    unittest.main()
