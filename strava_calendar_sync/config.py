"""
Configuration for Strava Calendar Sync.

Configuration is read once at start-up into a Config value which is then
passed to every component.
"""

import base64
import binascii
import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .ics import DEFAULT_CALENDAR_NAME

DEFAULT_EVENTS_FILE = "output/events/events.json"
DEFAULT_CALENDAR_FILE = "output/calendar.ics"
DEFAULT_SAMPLE_FILE = "output/validation/events_raw.json"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


@dataclass
class Config:
    """Runtime configuration, see load_config for the environment variables."""
    club_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    refresh_token: str = ""
    calendar_id: str = ""
    service_account_info: Optional[Dict[str, Any]] = None
    service_account_file: str = "service-account.json"
    credentials_path: str = "credentials.json"
    token_path: str = "token.json"
    events_file: str = DEFAULT_EVENTS_FILE
    calendar_file: str = DEFAULT_CALENDAR_FILE
    sample_file: str = DEFAULT_SAMPLE_FILE
    calendar_name: str = DEFAULT_CALENDAR_NAME
    raw_newlines: bool = False
    html_description: bool = True
    sync_days: int = 60
    retain_days: int = 7
    lookback_days: int = 7
    lookahead_days: int = 90

    def require_strava(self) -> None:
        """
        Check that the Strava credentials are present.

        Raises:
            ConfigError: Naming every missing environment variable
        """
        missing = [
            name for name, value in (
                ("STRAVA_CLUB_ID", self.club_id),
                ("STRAVA_CLIENT_ID", self.client_id),
                ("CLIENT_SECRET", self.client_secret),
                ("REFRESH_TOKEN", self.refresh_token),
            )
            if not value
        ]
        if missing:
            raise ConfigError(
                f"missing required environment variables: {', '.join(missing)}"
            )

    def require_calendar(self) -> None:
        """Raise ConfigError if no Google Calendar ID is configured."""
        if not self.calendar_id:
            raise ConfigError("GOOGLE_CALENDAR_ID environment variable is not set")


def _get_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    value = environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


def _get_int(environ: Mapping[str, str], name: str, default: int) -> int:
    value = environ.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def parse_service_account(value: str) -> Dict[str, Any]:
    """
    Parse a service account key given as JSON or base64-encoded JSON.

    Raises:
        ConfigError: If the value is neither
    """
    value = value.strip()
    if not value.startswith("{"):
        try:
            value = base64.b64decode(value, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            raise ConfigError("GOOGLE_SERVICE_ACCOUNT is neither JSON nor base64 JSON")
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise ConfigError(f"GOOGLE_SERVICE_ACCOUNT is not valid JSON: {e}")


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """
    Build a Config from environment variables.

    Args:
        environ: Mapping to read from, defaults to os.environ

    Returns:
        The loaded configuration

    Raises:
        ConfigError: If a value is present but invalid
    """
    if environ is None:
        environ = os.environ

    service_account = environ.get("GOOGLE_SERVICE_ACCOUNT")

    return Config(
        club_id=environ.get("STRAVA_CLUB_ID", ""),
        client_id=environ.get("STRAVA_CLIENT_ID", ""),
        client_secret=environ.get("CLIENT_SECRET", ""),
        refresh_token=environ.get("REFRESH_TOKEN", ""),
        calendar_id=environ.get("GOOGLE_CALENDAR_ID", ""),
        service_account_info=(
            parse_service_account(service_account) if service_account else None
        ),
        service_account_file=environ.get(
            "GOOGLE_SERVICE_ACCOUNT_FILE", "service-account.json"
        ),
        credentials_path=environ.get("GOOGLE_CREDENTIALS_PATH", "credentials.json"),
        token_path=environ.get("GOOGLE_TOKEN_PATH", "token.json"),
        events_file=environ.get("EVENTS_FILE", DEFAULT_EVENTS_FILE),
        calendar_file=environ.get("CALENDAR_FILE", DEFAULT_CALENDAR_FILE),
        sample_file=environ.get("SAMPLE_EVENTS_FILE", DEFAULT_SAMPLE_FILE),
        calendar_name=environ.get("CALENDAR_NAME", DEFAULT_CALENDAR_NAME),
        raw_newlines=_get_bool(environ, "ICS_RAW_NEWLINES", False),
        html_description=_get_bool(environ, "ICS_HTML_DESCRIPTION", True),
        sync_days=_get_int(environ, "SYNC_DAYS", 60),
        retain_days=_get_int(environ, "RETAIN_DAYS", 7),
        lookback_days=_get_int(environ, "CALENDAR_LOOKBACK_DAYS", 7),
        lookahead_days=_get_int(environ, "CALENDAR_LOOKAHEAD_DAYS", 90),
    )
