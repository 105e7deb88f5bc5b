"""
Configuration module for transcript_bridge.

Centralizes all configuration with environment variable support.
Values are read once into an immutable Settings object which is passed
to the components that need it.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple


# ============================================================
# Helpers
# ============================================================

def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw.strip() else default
    except ValueError:
        return default


def parse_password_list(raw: Optional[str]) -> Tuple[str, ...]:
    """
    Parse the fallback password list.

    Accepts a JSON array of strings or a comma-separated string. An unset
    value means "try the empty password only".
    """
    if raw is None:
        return ("",)
    raw = raw.strip()
    if raw.startswith("["):
        try:
            values = json.loads(raw)
        except json.JSONDecodeError:
            values = None
        if isinstance(values, list):
            return tuple(str(v) for v in values)
    return tuple(part.strip() for part in raw.split(","))


def _split_csv(raw: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


# ============================================================
# Settings
# ============================================================

@dataclass(frozen=True)
class Settings:
    """Runtime configuration. Build with Settings.from_env() or directly in tests."""

    # Certificate container
    cert_container_path: str = "certs/webhook.pfx"
    derived_key_path: Optional[str] = None
    cert_password: Optional[str] = None
    cert_password_fallbacks: Tuple[str, ...] = ("",)

    # Identity provider / Graph
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    default_user_object_id: str = ""
    graph_base_url: str = "https://graph.microsoft.com"
    identity_authority: str = "https://login.microsoftonline.com"

    # Issue tracker
    github_token: str = ""
    github_repo: str = ""
    github_api_url: str = "https://api.github.com"
    github_issue_labels: Tuple[str, ...] = ("meeting-transcript", "auto-generated")

    # Pipeline behaviour
    http_timeout_seconds: float = 10.0
    summary_history_size: int = 50
    enrichment_workers: int = 4
    transcript_max_chars: int = 60000
    verify_data_signature: bool = False
    manual_actions_rpm: int = 30

    # Logging
    log_level: str = "INFO"
    log_json: bool = True
    log_file: Optional[str] = None

    @property
    def resolved_derived_key_path(self) -> str:
        if self.derived_key_path:
            return self.derived_key_path
        return str(Path(self.cert_container_path).with_suffix(".pem"))

    @property
    def issue_tracker_configured(self) -> bool:
        return bool(self.github_token and self.github_repo)

    @property
    def identity_configured(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)

    @classmethod
    def from_env(cls) -> "Settings":
        labels = os.getenv("GITHUB_ISSUE_LABELS")
        return cls(
            cert_container_path=os.getenv("CERT_CONTAINER_PATH", "certs/webhook.pfx"),
            derived_key_path=os.getenv("DERIVED_KEY_PATH") or None,
            cert_password=os.getenv("CERT_PASSWORD"),
            cert_password_fallbacks=parse_password_list(os.getenv("CERT_PASSWORD_FALLBACKS")),
            tenant_id=os.getenv("AZURE_TENANT_ID", ""),
            client_id=os.getenv("AZURE_CLIENT_ID", ""),
            client_secret=os.getenv("AZURE_CLIENT_SECRET", ""),
            default_user_object_id=os.getenv("TEAMS_USER_OBJECT_ID", ""),
            graph_base_url=os.getenv("GRAPH_BASE_URL", "https://graph.microsoft.com").rstrip("/"),
            identity_authority=os.getenv("IDENTITY_AUTHORITY", "https://login.microsoftonline.com").rstrip("/"),
            github_token=os.getenv("GITHUB_TOKEN", ""),
            github_repo=os.getenv("GITHUB_REPO", ""),
            github_api_url=os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/"),
            github_issue_labels=_split_csv(labels) if labels is not None else ("meeting-transcript", "auto-generated"),
            http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 10.0),
            summary_history_size=max(1, _env_int("SUMMARY_HISTORY_SIZE", 50)),
            enrichment_workers=max(1, _env_int("ENRICHMENT_WORKERS", 4)),
            transcript_max_chars=max(1, _env_int("TRANSCRIPT_MAX_CHARS", 60000)),
            verify_data_signature=_env_bool("VERIFY_DATA_SIGNATURE", False),
            manual_actions_rpm=max(1, _env_int("MANUAL_ACTIONS_RPM", 30)),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=_env_bool("LOG_JSON", True),
            log_file=os.getenv("LOG_FILE") or None,
        )


# ============================================================
# Validation
# ============================================================

def validate_config(settings: Settings) -> Dict[str, bool]:
    """
    Report which parts of the configuration are present.
    Booleans only; never values.
    """
    return {
        "cert_container_present": Path(settings.cert_container_path).exists(),
        "derived_key_present": Path(settings.resolved_derived_key_path).exists(),
        "cert_password_configured": settings.cert_password is not None,
        "has_tenant_id": bool(settings.tenant_id),
        "has_client_id": bool(settings.client_id),
        "has_client_secret": bool(settings.client_secret),
        "has_github_token": bool(settings.github_token),
        "has_github_repo": bool(settings.github_repo),
    }


# ============================================================
# Feature Flags
# ============================================================

def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("TRANSCRIPT_BRIDGE_DEBUG", "").lower() in ("1", "true", "yes")
