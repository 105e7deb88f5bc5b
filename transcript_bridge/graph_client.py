"""
Client for the identity provider and the meeting data API.

Every call carries the configured timeout. Transport errors and
unexpected status codes raise EnrichmentFailed; "nothing there yet"
answers (404, an empty list) return None.
"""

import logging
import threading
import time
from typing import Any, Dict, Optional

import requests

from .captions import normalize_transcript
from .config import Settings
from .errors import EnrichmentFailed

logger = logging.getLogger(__name__)

# refresh this many seconds before the token actually expires
TOKEN_EXPIRY_MARGIN = 60


def _json(response: requests.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as e:
        raise EnrichmentFailed("Response body is not JSON", detail=f"status={response.status_code}") from e
    if not isinstance(payload, dict):
        raise EnrichmentFailed("Response body is not a JSON object", detail=f"status={response.status_code}")
    return payload


class ClientCredentialsToken:
    """
    OAuth2 client-credentials token, cached until shortly before expiry.

    Population is serialised by a lock so concurrent callers share one
    token request.
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self._settings = settings
        self._session = session or requests.Session()
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._expires_at = 0.0

    @property
    def token_url(self) -> str:
        return f"{self._settings.identity_authority}/{self._settings.tenant_id}/oauth2/v2.0/token"

    def get(self) -> str:
        """
        Return a valid access token, requesting a new one if needed.

        Raises:
            EnrichmentFailed: If credentials are missing or the request fails
        """
        with self._lock:
            if self._token and time.time() < self._expires_at:
                return self._token

            if not self._settings.identity_configured:
                raise EnrichmentFailed("Identity provider credentials are not configured")

            try:
                response = self._session.post(
                    self.token_url,
                    data={
                        "client_id": self._settings.client_id,
                        "client_secret": self._settings.client_secret,
                        "scope": f"{self._settings.graph_base_url}/.default",
                        "grant_type": "client_credentials",
                    },
                    timeout=self._settings.http_timeout_seconds,
                )
            except requests.RequestException as e:
                raise EnrichmentFailed("Token request failed", detail=type(e).__name__) from e

            if response.status_code != 200:
                raise EnrichmentFailed("Token request rejected", detail=f"status={response.status_code}")

            payload = _json(response)
            token = payload.get("access_token")
            if not token:
                raise EnrichmentFailed("Token response carried no access token")

            expires_in = float(payload.get("expires_in") or 0)
            self._token = token
            self._expires_at = time.time() + max(0.0, expires_in - TOKEN_EXPIRY_MARGIN)
            logger.info("Access token obtained (expires_in=%s)", int(expires_in))
            return token

    def clear(self) -> None:
        with self._lock:
            self._token = None
            self._expires_at = 0.0


class GraphClient:
    """Meeting insights, meeting lookup and transcript content."""

    def __init__(
        self,
        settings: Settings,
        session: Optional[requests.Session] = None,
        token: Optional[ClientCredentialsToken] = None,
    ):
        self._settings = settings
        self._session = session or requests.Session()
        self._token = token or ClientCredentialsToken(settings, self._session)

    @property
    def configured(self) -> bool:
        return self._settings.identity_configured

    def _get(self, url: str, accept: str = "application/json", params: Optional[Dict[str, str]] = None) -> requests.Response:
        headers = {
            "Authorization": f"Bearer {self._token.get()}",
            "Accept": accept,
        }
        try:
            return self._session.get(
                url,
                headers=headers,
                params=params,
                timeout=self._settings.http_timeout_seconds,
            )
        except requests.RequestException as e:
            raise EnrichmentFailed("Request to meeting API failed", detail=type(e).__name__) from e

    def fetch_meeting_insights(self, user_id: str, meeting_id: str) -> Optional[Dict[str, Any]]:
        """
        Most recent generated insights for a meeting.

        Returns:
            The insight document, or None when none exist yet
        """
        base = f"{self._settings.graph_base_url}/beta/copilot/users/{user_id}/onlineMeetings/{meeting_id}/aiInsights"

        listing = self._get(base)
        if listing.status_code == 404:
            return None
        if listing.status_code != 200:
            raise EnrichmentFailed("Insights listing failed", detail=f"status={listing.status_code}")

        entries = _json(listing).get("value") or []
        if not entries:
            return None

        latest_id = entries[-1].get("id")
        if not latest_id:
            return None

        detail = self._get(f"{base}/{latest_id}")
        if detail.status_code == 404:
            return None
        if detail.status_code != 200:
            raise EnrichmentFailed("Insights detail fetch failed", detail=f"status={detail.status_code}")
        return _json(detail)

    def find_meeting_id(self, join_web_url: str) -> Optional[str]:
        """Resolve an online meeting id from its join URL."""
        response = self._get(
            f"{self._settings.graph_base_url}/v1.0/me/onlineMeetings",
            params={"$filter": f"joinWebUrl eq '{join_web_url}'"},
        )
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise EnrichmentFailed("Meeting lookup failed", detail=f"status={response.status_code}")

        meetings = _json(response).get("value") or []
        return meetings[0].get("id") if meetings else None

    def content_url(self, content_reference: str) -> str:
        ref = content_reference.strip()
        if not ref.endswith("/content"):
            ref = ref.rstrip("/") + "/content"
        if ref.startswith(("http://", "https://")):
            return ref
        return f"{self._settings.graph_base_url}/v1.0/{ref.lstrip('/')}"

    def fetch_transcript_content(self, content_reference: str) -> Optional[str]:
        """
        Transcript text for a content reference, caption format normalised.

        Returns:
            Plain text, or None when the content is not available
        """
        response = self._get(self.content_url(content_reference), accept="text/vtt")
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise EnrichmentFailed("Transcript content fetch failed", detail=f"status={response.status_code}")

        text = normalize_transcript(response.text or "")
        return text or None
