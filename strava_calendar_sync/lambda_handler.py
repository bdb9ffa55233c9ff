"""
AWS Lambda handler for Strava Calendar Sync.

Runs the full sync on a schedule. Inside AWS the Strava credentials and the
Google service account key come from AWS Secrets Manager; when run locally
the environment variables are used as-is.
"""

import json
import os
import time
from typing import Any, Dict, Mapping, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .cli import FATAL_ERRORS, run_full_sync
from .config import ConfigError, load_config
from .core import LogLevel, Logger

DEFAULT_STRAVA_SECRET = "strava_credentials"
DEFAULT_GOOGLE_SECRET = "google_service_account"

# Secrets Manager failures abort the run like any other fatal error
LAMBDA_ERRORS = FATAL_ERRORS + (ClientError, BotoCoreError)


def is_running_locally(environ: Mapping[str, str]) -> bool:
    """Check if the function is running locally vs in AWS Lambda."""
    # AWS_LAMBDA_FUNCTION_NAME is always set inside Lambda
    return not environ.get("AWS_LAMBDA_FUNCTION_NAME")


def get_secret(secret_name: str, region_name: Optional[str] = None) -> str:
    """Fetch a secret string from AWS Secrets Manager."""
    client = boto3.session.Session().client(
        service_name="secretsmanager",
        region_name=region_name or os.environ.get("AWS_REGION", "us-east-1"),
    )
    response = client.get_secret_value(SecretId=secret_name)
    return response["SecretString"]


def load_lambda_environ(environ: Mapping[str, str], logger: Logger) -> Dict[str, str]:
    """
    Build the configuration mapping for a Lambda run.

    The Strava secret is a JSON object whose keys are environment variable
    names (STRAVA_CLUB_ID, STRAVA_CLIENT_ID, CLIENT_SECRET, REFRESH_TOKEN,
    GOOGLE_CALENDAR_ID). The Google secret is the service account key JSON.
    Output defaults to /tmp, the only writable path in Lambda.

    Raises:
        ConfigError: If the Strava secret is not a JSON object
        botocore.exceptions.ClientError: If a secret cannot be read
    """
    merged = dict(environ)
    merged.setdefault("EVENTS_FILE", "/tmp/output/events/events.json")
    merged.setdefault("CALENDAR_FILE", "/tmp/output/calendar.ics")

    if is_running_locally(environ):
        logger.normal("Running locally - using environment variables")
        return merged

    region = environ.get("AWS_REGION")
    strava_secret = environ.get("STRAVA_SECRET_NAME", DEFAULT_STRAVA_SECRET)
    google_secret = environ.get("GOOGLE_SECRET_NAME", DEFAULT_GOOGLE_SECRET)

    logger.normal("Using AWS Secrets Manager")
    try:
        strava_values = json.loads(get_secret(strava_secret, region))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Secret {strava_secret} is not valid JSON: {e}") from e
    if not isinstance(strava_values, dict):
        raise ConfigError(f"Secret {strava_secret} must be a JSON object")
    merged.update({key: str(value) for key, value in strava_values.items()})
    merged["GOOGLE_SERVICE_ACCOUNT"] = get_secret(google_secret, region)
    return merged


def lambda_handler(event: Dict[str, Any], context: Any, environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    AWS Lambda handler function.

    Args:
        event: EventBridge event payload
        context: Lambda context object
        environ: Environment mapping, defaults to os.environ

    Returns:
        Response dict with statusCode and summary statistics
    """
    if environ is None:
        environ = os.environ

    log_level = environ.get("LOG_LEVEL", "NORMAL").upper()
    try:
        logger = Logger(LogLevel[log_level])
    except KeyError:
        logger = Logger(LogLevel.NORMAL)
        logger.normal(f"WARN: Invalid LOG_LEVEL '{log_level}'. Defaulting to NORMAL.")

    start_time = time.time()
    try:
        config = load_config(load_lambda_environ(environ, logger))
        result = run_full_sync(config, logger)
    except LAMBDA_ERRORS as e:
        logger.error(f"Sync failed: {e}")
        return {
            "statusCode": 500,
            "body": json.dumps({
                "message": "Sync failed",
                "error": str(e),
                "error_type": type(e).__name__,
                "duration_seconds": round(time.time() - start_time, 2),
            }),
        }

    body = {
        "message": "Sync completed successfully",
        "duration_seconds": round(time.time() - start_time, 2),
    }
    if result is not None:
        body["statistics"] = {
            "events_created": result.created,
            "events_updated": result.updated,
            "events_deleted": result.deleted,
            "events_unchanged": result.unchanged,
            "events_skipped": result.skipped,
        }
        body["errors"] = result.errors

    return {"statusCode": 200, "body": json.dumps(body)}
