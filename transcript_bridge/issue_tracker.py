"""
Issue tracker client (GitHub issues REST API).
"""

import logging
from typing import Optional, Sequence

import requests

from .config import Settings
from .errors import IssueFilingFailed
from .summaries import IssueRef, Summary

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"


class IssueTracker:
    """Files one issue per summary."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self._settings = settings
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return self._settings.issue_tracker_configured

    @property
    def labels(self) -> Sequence[str]:
        return self._settings.github_issue_labels

    def _headers(self) -> dict:
        return {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self._settings.github_token}",
            "X-GitHub-Api-Version": API_VERSION,
        }

    def file_issue(self, summary: Summary) -> IssueRef:
        """
        Create an issue from a summary's title and body.

        Raises:
            IssueFilingFailed: Not configured, transport error or non-2xx
        """
        if not self.configured:
            raise IssueFilingFailed("Issue tracker is not configured")

        url = f"{self._settings.github_api_url}/repos/{self._settings.github_repo}/issues"
        try:
            response = self._session.post(
                url,
                headers=self._headers(),
                json={"title": summary.title, "body": summary.body, "labels": list(self.labels)},
                timeout=self._settings.http_timeout_seconds,
            )
        except requests.RequestException as e:
            raise IssueFilingFailed("Issue tracker request failed", detail=type(e).__name__) from e

        if not 200 <= response.status_code < 300:
            raise IssueFilingFailed("Issue tracker rejected the issue", detail=f"status={response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise IssueFilingFailed("Issue tracker response is not JSON") from e
        if not isinstance(data, dict) or not data.get("html_url"):
            raise IssueFilingFailed("Issue tracker response carried no issue URL")
        return IssueRef(url=data["html_url"], number=data.get("number"))

    def validate_credentials(self) -> bool:
        """True when the token can read the configured repository."""
        if not self.configured:
            return False
        try:
            response = self._session.get(
                f"{self._settings.github_api_url}/repos/{self._settings.github_repo}",
                headers=self._headers(),
                timeout=self._settings.http_timeout_seconds,
            )
        except requests.RequestException as e:
            logger.warning("Issue tracker credential check failed: %s", type(e).__name__)
            return False
        return response.status_code == 200
